"""Event fan-out to subscribed webhooks."""

import time
from typing import Any

import structlog

from issuehooks.models import SUPPORTED_EVENTS, WebhookEvent

from . import metrics
from .queue import DeliveryQueue
from .registry import WebhookRegistry

logger = structlog.get_logger()


class EventDispatcher:
    """Turns domain events into delivery tasks.

    Dispatch only enqueues; delivery happens later in the worker pool, so
    callers never wait on a subscriber's endpoint.
    """

    def __init__(self, registry: WebhookRegistry, queue: DeliveryQueue) -> None:
        """Initialize dispatcher.

        Args:
            registry: Source of active subscriptions
            queue: Queue that receives one task per matching webhook
        """
        self.registry = registry
        self.queue = queue

    async def dispatch(self, event_type: str | WebhookEvent, payload: dict[str, Any]) -> int:
        """Enqueue one task per active webhook subscribed to ``event_type``.

        Args:
            event_type: Event name, e.g. ``issue.created``
            payload: JSON-serializable event body

        Returns:
            Number of tasks enqueued (0 when nothing matches)
        """
        event_type = getattr(event_type, "value", event_type)
        if event_type not in SUPPORTED_EVENTS:
            logger.warning("Dispatch of unsupported event ignored", event_type=event_type)
            return 0

        webhooks = await self.registry.find_active_by_event(event_type)
        tasks = await self.queue.enqueue_many(
            [webhook.id for webhook in webhooks],
            event_type=event_type,
            payload=payload,
        )

        metrics.record_dispatch(event_type, len(tasks))
        logger.info("Event dispatched", event_type=event_type, enqueued=len(tasks))
        return len(tasks)

    async def publish_issue_event(
        self, event_type: str | WebhookEvent, issue: dict[str, Any]
    ) -> int:
        """Dispatch an issue change wrapped in the tracker's webhook envelope."""
        event_type = getattr(event_type, "value", event_type)
        envelope = {
            "timestamp": int(time.time() * 1000),
            "webhookEvent": event_type,
            "issue": issue,
        }
        return await self.dispatch(event_type, envelope)
