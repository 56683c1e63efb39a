"""HTTP routers for the webhook service."""

from issuehooks.routers import deliveries, events, health, webhooks

__all__ = ["deliveries", "events", "health", "webhooks"]
