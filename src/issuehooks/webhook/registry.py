"""Webhook registration and management."""

from __future__ import annotations

import structlog

from issuehooks.database import Database
from issuehooks.database.repositories import WebhookRepository
from issuehooks.models import Webhook

from .exceptions import WebhookNotFoundError
from .validator import validate_events, validate_secret, validate_url

logger = structlog.get_logger()


class WebhookRegistry:
    """Manages webhook registration, lookup and lifecycle.

    Subscriptions are persisted through the shared ``Database``; every
    operation runs in its own session.
    """

    def __init__(self, database: Database) -> None:
        """Initialize webhook registry.

        Args:
            database: Opened database used for storage
        """
        self.database = database

    async def register(
        self,
        url: str,
        events: list[str],
        secret: str | None = None,
    ) -> Webhook:
        """Register a new webhook.

        Args:
            url: Webhook endpoint URL (absolute http or https)
            events: Events to subscribe to
            secret: Signing secret; payloads are sent unsigned without one

        Returns:
            Webhook: Created webhook, active

        Raises:
            WebhookValidationError: If validation fails
        """
        url = validate_url(url)
        subscribed = validate_events(events)
        secret = validate_secret(secret)

        async with self.database.session() as session:
            webhook_db = await WebhookRepository.create(
                session, url=url, events=[e.value for e in subscribed], secret=secret
            )
            webhook = WebhookRepository.to_webhook(webhook_db)

        logger.info(
            "Webhook registered",
            webhook_id=webhook.id,
            url=webhook.url,
            events=[e.value for e in webhook.events],
            signed=webhook.secret is not None,
        )
        return webhook

    async def list(self) -> list[Webhook]:
        """All registered webhooks in insertion order."""
        async with self.database.session() as session:
            rows = await WebhookRepository.get_all(session)
            return [WebhookRepository.to_webhook(row) for row in rows]

    async def find(self, webhook_id: str) -> Webhook | None:
        """Get webhook by ID, or None when it does not exist."""
        async with self.database.session() as session:
            webhook_db = await WebhookRepository.get_by_id(session, webhook_id)
            return WebhookRepository.to_webhook(webhook_db) if webhook_db else None

    async def get(self, webhook_id: str) -> Webhook:
        """Get webhook by ID.

        Raises:
            WebhookNotFoundError: If webhook not found
        """
        webhook = await self.find(webhook_id)
        if webhook is None:
            raise WebhookNotFoundError(webhook_id)
        return webhook

    async def set_active(self, webhook_id: str, active: bool) -> Webhook:
        """Enable or disable dispatch to a webhook.

        Raises:
            WebhookNotFoundError: If webhook not found
        """
        async with self.database.session() as session:
            if not await WebhookRepository.set_active(session, webhook_id, active):
                raise WebhookNotFoundError(webhook_id)
            webhook_db = await WebhookRepository.get_by_id(session, webhook_id)
            webhook = WebhookRepository.to_webhook(webhook_db)

        logger.info("Webhook updated", webhook_id=webhook_id, active=active)
        return webhook

    async def delete(self, webhook_id: str) -> None:
        """Delete webhook.

        Tasks already queued for it are dropped when a worker leases them.

        Raises:
            WebhookNotFoundError: If webhook not found
        """
        async with self.database.session() as session:
            if not await WebhookRepository.delete(session, webhook_id):
                raise WebhookNotFoundError(webhook_id)

        logger.info("Webhook deleted", webhook_id=webhook_id)

    async def find_active_by_event(self, event_type: str) -> list[Webhook]:
        """Active webhooks subscribed to ``event_type``, in insertion order."""
        async with self.database.session() as session:
            rows = await WebhookRepository.get_active_by_event(session, event_type)
            return [WebhookRepository.to_webhook(row) for row in rows]
