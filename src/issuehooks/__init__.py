"""issuehooks - reliable webhook delivery for the issue tracker."""

__version__ = "0.1.0"
