"""Webhook input validation and payload signing."""

import hashlib
import hmac
import json
from typing import Any

from pydantic import HttpUrl, TypeAdapter, ValidationError

from issuehooks.models import SUPPORTED_EVENTS, WebhookEvent

from .exceptions import WebhookValidationError

_http_url = TypeAdapter(HttpUrl)


def validate_url(url: str) -> str:
    """Validate webhook target URL.

    Args:
        url: Candidate delivery URL

    Returns:
        The URL, stripped of surrounding whitespace

    Raises:
        WebhookValidationError: If the URL is not an absolute http(s) URL
    """
    if not isinstance(url, str) or not url.strip():
        raise WebhookValidationError("URL must be a non-empty string")

    url = url.strip()
    if not url.lower().startswith(("http://", "https://")):
        raise WebhookValidationError("URL must use HTTP or HTTPS protocol")

    try:
        parsed = _http_url.validate_python(url)
    except ValidationError as e:
        raise WebhookValidationError(f"Malformed URL: {url}") from e

    if not parsed.host:
        raise WebhookValidationError(f"URL has no host: {url}")

    return url


def validate_events(events: list[str] | None) -> list[WebhookEvent]:
    """Validate and de-duplicate subscribed events, preserving order.

    Raises:
        WebhookValidationError: If the list is empty or holds unknown events
    """
    if not events:
        raise WebhookValidationError("At least one event must be specified")

    values = [getattr(e, "value", e) for e in events]
    unknown = [v for v in values if not isinstance(v, str) or v not in SUPPORTED_EVENTS]
    if unknown:
        raise WebhookValidationError(
            f"Unsupported events: {', '.join(map(str, unknown))}",
            errors=[f"Unsupported event: {v}" for v in unknown],
        )

    seen: list[WebhookEvent] = []
    for value in values:
        event = WebhookEvent(value)
        if event not in seen:
            seen.append(event)
    return seen


def validate_secret(secret: str | None) -> str | None:
    """Secrets are optional; an empty string counts as absent."""
    if secret is None:
        return None
    if not isinstance(secret, str):
        raise WebhookValidationError("Secret must be a string")
    return secret or None


def serialize_payload(payload: dict[str, Any]) -> bytes:
    """Serialize payload once to the exact bytes that are sent and signed."""
    return json.dumps(
        payload, sort_keys=True, separators=(",", ":"), default=str
    ).encode("utf-8")


def generate_signature(secret: str, body: bytes) -> str:
    """Hex-encoded HMAC-SHA256 of the raw request body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, provided_signature: str) -> bool:
    """Constant-time check of a received signature."""
    return hmac.compare_digest(generate_signature(secret, body), provided_signature)
