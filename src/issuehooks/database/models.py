"""
Database Models

SQLAlchemy ORM models for webhooks, delivery tasks and dead-letter entries.
"""

from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
)

from issuehooks.database.connection import Base


def utcnow() -> datetime:
    """Naive UTC timestamp; SQLite drops tzinfo so all columns store naive UTC."""
    return datetime.now(UTC).replace(tzinfo=None)


class WebhookDB(Base):
    """Webhook subscription."""

    __tablename__ = "webhooks"

    id = Column(String(36), primary_key=True)
    # Monotonic insertion counter, used for stable listing order
    seq = Column(Integer, nullable=False, index=True)
    url = Column(String(2048), nullable=False)
    events = Column(JSON, nullable=False, default=list)
    secret = Column(String(512), nullable=True)
    active = Column(Boolean, nullable=False, default=True, index=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class DeliveryTaskDB(Base):
    """Pending or completed delivery of one event to one webhook.

    ``webhook_id`` is a weak reference: no foreign key, so deleting a
    webhook leaves its tasks in place to be dropped at lease time.
    """

    __tablename__ = "delivery_tasks"

    id = Column(String(36), primary_key=True)
    webhook_id = Column(String(36), nullable=False, index=True)
    event_type = Column(String(100), nullable=False)
    payload = Column(JSON, nullable=False)

    state = Column(String(20), nullable=False, default="pending")
    attempt_count = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime, nullable=False, default=utcnow)

    # Lease bookkeeping
    lease_owner = Column(String(255), nullable=True)
    leased_at = Column(DateTime, nullable=True)

    last_error = Column(Text, nullable=True)
    last_status_code = Column(Integer, nullable=True)
    replay_of = Column(String(36), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_delivery_state_next_attempt", "state", "next_attempt_at"),
        Index("idx_delivery_state_leased_at", "state", "leased_at"),
    )


class DeadLetterEntryDB(Base):
    """Task that exhausted its retry budget."""

    __tablename__ = "dead_letter_entries"

    id = Column(String(36), primary_key=True)
    task_id = Column(String(36), nullable=False, unique=True, index=True)
    # Full task snapshot at the time it was dead-lettered
    task = Column(JSON, nullable=False)
    failure_reason = Column(Text, nullable=False)
    dead_lettered_at = Column(DateTime, nullable=False, default=utcnow, index=True)
