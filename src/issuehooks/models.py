"""Webhook, delivery task and dead-letter models.

This module defines the Pydantic models shared by the registry, the
delivery queue, the workers and the HTTP layer.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class WebhookEvent(str, Enum):
    """Event types a webhook can subscribe to."""

    ISSUE_CREATED = "issue.created"
    ISSUE_UPDATED = "issue.updated"
    ISSUE_DELETED = "issue.deleted"


SUPPORTED_EVENTS: frozenset[str] = frozenset(e.value for e in WebhookEvent)


class DeliveryState(str, Enum):
    """Delivery task state."""

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    DELIVERED = "delivered"
    DEAD_LETTERED = "dead_lettered"

    @property
    def is_terminal(self) -> bool:
        return self in (DeliveryState.DELIVERED, DeliveryState.DEAD_LETTERED)


class Webhook(BaseModel):
    """Registered webhook subscription."""

    id: str = Field(..., description="Unique webhook identifier")
    url: str = Field(..., description="Delivery target URL")
    events: list[WebhookEvent] = Field(..., min_length=1, description="Subscribed events")
    secret: str | None = Field(None, description="HMAC signing secret")
    active: bool = Field(default=True, description="Whether webhook receives dispatches")

    created_at: datetime
    updated_at: datetime

    def subscribes_to(self, event_type: str) -> bool:
        return any(e.value == event_type for e in self.events)


class DeliveryTask(BaseModel):
    """One event queued for delivery to one webhook."""

    id: str = Field(..., description="Unique task identifier")
    webhook_id: str = Field(..., description="Target webhook (looked up at delivery)")
    event_type: str
    payload: dict[str, Any] = Field(default_factory=dict)

    state: DeliveryState = Field(default=DeliveryState.PENDING)
    attempt_count: int = Field(default=0, ge=0, description="Completed delivery attempts")
    next_attempt_at: datetime

    lease_owner: str | None = None
    leased_at: datetime | None = None

    last_error: str | None = None
    last_status_code: int | None = None
    replay_of: str | None = Field(None, description="Task this one was replayed from")

    created_at: datetime
    updated_at: datetime


class DeadLetterEntry(BaseModel):
    """Task that exhausted its retries, kept for inspection and replay."""

    id: str
    task: DeliveryTask
    failure_reason: str
    dead_lettered_at: datetime
