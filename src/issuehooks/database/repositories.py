"""
Database Repositories

Repository pattern for webhook, delivery task and dead-letter operations.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from issuehooks.database.models import (
    DeadLetterEntryDB,
    DeliveryTaskDB,
    WebhookDB,
    utcnow,
)
from issuehooks.models import (
    DeadLetterEntry,
    DeliveryState,
    DeliveryTask,
    Webhook,
    WebhookEvent,
)


def _add_timezone(dt: datetime | None) -> datetime | None:
    """Add UTC timezone to naive datetime when loading from database."""
    if dt is None:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=UTC)


def _strip_timezone(dt: datetime | None) -> datetime | None:
    """Store datetimes as naive UTC."""
    if dt is None:
        return None
    return dt.astimezone(UTC).replace(tzinfo=None) if dt.tzinfo else dt


class WebhookRepository:
    """Repository for webhook subscription operations."""

    @staticmethod
    async def create(
        session: AsyncSession,
        url: str,
        events: list[str],
        secret: str | None,
    ) -> WebhookDB:
        """Create webhook, active on creation."""
        next_seq = await session.scalar(select(func.coalesce(func.max(WebhookDB.seq), 0)))
        now = utcnow()
        webhook_db = WebhookDB(
            id=str(uuid4()),
            seq=int(next_seq or 0) + 1,
            url=url,
            events=events,
            secret=secret,
            active=True,
            created_at=now,
            updated_at=now,
        )
        session.add(webhook_db)
        await session.flush()
        return webhook_db

    @staticmethod
    async def get_by_id(session: AsyncSession, webhook_id: str) -> WebhookDB | None:
        """Get webhook by ID."""
        result = await session.execute(select(WebhookDB).where(WebhookDB.id == webhook_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_all(session: AsyncSession, active_only: bool = False) -> list[WebhookDB]:
        """Get all webhooks in insertion order."""
        query = select(WebhookDB)
        if active_only:
            query = query.where(WebhookDB.active.is_(True))
        result = await session.execute(query.order_by(WebhookDB.seq))
        return list(result.scalars().all())

    @staticmethod
    async def get_active_by_event(session: AsyncSession, event_type: str) -> list[WebhookDB]:
        """Get active webhooks subscribed to ``event_type``.

        Event lists are JSON arrays; membership is checked in Python to stay
        portable across SQLite and PostgreSQL.
        """
        webhooks = await WebhookRepository.get_all(session, active_only=True)
        return [w for w in webhooks if event_type in (w.events or [])]

    @staticmethod
    async def set_active(session: AsyncSession, webhook_id: str, active: bool) -> bool:
        """Enable or disable webhook."""
        result = await session.execute(
            update(WebhookDB)
            .where(WebhookDB.id == webhook_id)
            .values(active=active, updated_at=utcnow())
        )
        return result.rowcount > 0

    @staticmethod
    async def delete(session: AsyncSession, webhook_id: str) -> bool:
        """Hard-delete webhook."""
        result = await session.execute(delete(WebhookDB).where(WebhookDB.id == webhook_id))
        return result.rowcount > 0

    @staticmethod
    def to_webhook(webhook_db: WebhookDB) -> Webhook:
        """Convert ORM row to domain model."""
        return Webhook(
            id=webhook_db.id,
            url=webhook_db.url,
            events=[WebhookEvent(e) for e in webhook_db.events],
            secret=webhook_db.secret,
            active=bool(webhook_db.active),
            created_at=_add_timezone(webhook_db.created_at),
            updated_at=_add_timezone(webhook_db.updated_at),
        )


class DeliveryTaskRepository:
    """Repository for delivery task operations."""

    @staticmethod
    async def create(
        session: AsyncSession,
        webhook_id: str,
        event_type: str,
        payload: dict[str, Any],
        next_attempt_at: datetime | None = None,
        replay_of: str | None = None,
    ) -> DeliveryTaskDB:
        """Create pending task."""
        now = utcnow()
        task_db = DeliveryTaskDB(
            id=str(uuid4()),
            webhook_id=webhook_id,
            event_type=event_type,
            payload=payload,
            state=DeliveryState.PENDING.value,
            attempt_count=0,
            next_attempt_at=_strip_timezone(next_attempt_at) or now,
            replay_of=replay_of,
            created_at=now,
            updated_at=now,
        )
        session.add(task_db)
        await session.flush()
        return task_db

    @staticmethod
    async def get_by_id(session: AsyncSession, task_id: str) -> DeliveryTaskDB | None:
        """Get task by ID."""
        result = await session.execute(
            select(DeliveryTaskDB)
            .where(DeliveryTaskDB.id == task_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_ready_ids(session: AsyncSession, now: datetime, limit: int) -> list[str]:
        """IDs of pending tasks due at ``now``, oldest ``next_attempt_at`` first."""
        result = await session.execute(
            select(DeliveryTaskDB.id)
            .where(
                DeliveryTaskDB.state == DeliveryState.PENDING.value,
                DeliveryTaskDB.next_attempt_at <= now,
            )
            .order_by(DeliveryTaskDB.next_attempt_at, DeliveryTaskDB.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    @staticmethod
    async def transition(
        session: AsyncSession,
        task_id: str,
        from_state: DeliveryState,
        to_state: DeliveryState,
        **values: Any,
    ) -> bool:
        """Compare-and-swap the task state.

        The update only applies while the row is still in ``from_state``,
        so two concurrent callers can never both win the same transition.
        """
        result = await session.execute(
            update(DeliveryTaskDB)
            .where(
                DeliveryTaskDB.id == task_id,
                DeliveryTaskDB.state == from_state.value,
            )
            .values(state=to_state.value, updated_at=utcnow(), **values)
        )
        return result.rowcount > 0

    @staticmethod
    async def get_expired_leases(session: AsyncSession, cutoff: datetime) -> list[DeliveryTaskDB]:
        """In-flight tasks leased before ``cutoff``."""
        result = await session.execute(
            select(DeliveryTaskDB).where(
                DeliveryTaskDB.state == DeliveryState.IN_FLIGHT.value,
                DeliveryTaskDB.leased_at < cutoff,
            )
        )
        return list(result.scalars().all())

    @staticmethod
    async def count_by_state(session: AsyncSession) -> dict[str, int]:
        """Count tasks per state."""
        result = await session.execute(
            select(DeliveryTaskDB.state, func.count()).group_by(DeliveryTaskDB.state)
        )
        counts = {state.value: 0 for state in DeliveryState}
        counts.update({state: int(count) for state, count in result.all()})
        return counts

    @staticmethod
    def to_task(task_db: DeliveryTaskDB) -> DeliveryTask:
        """Convert ORM row to domain model."""
        return DeliveryTask(
            id=task_db.id,
            webhook_id=task_db.webhook_id,
            event_type=task_db.event_type,
            payload=task_db.payload,
            state=DeliveryState(task_db.state),
            attempt_count=task_db.attempt_count,
            next_attempt_at=_add_timezone(task_db.next_attempt_at),
            lease_owner=task_db.lease_owner,
            leased_at=_add_timezone(task_db.leased_at),
            last_error=task_db.last_error,
            last_status_code=task_db.last_status_code,
            replay_of=task_db.replay_of,
            created_at=_add_timezone(task_db.created_at),
            updated_at=_add_timezone(task_db.updated_at),
        )


class DeadLetterRepository:
    """Repository for dead-letter entries."""

    @staticmethod
    async def create(session: AsyncSession, task: DeliveryTask, reason: str) -> DeadLetterEntryDB:
        """Record a dead-lettered task snapshot."""
        entry_db = DeadLetterEntryDB(
            id=str(uuid4()),
            task_id=task.id,
            task=task.model_dump(mode="json"),
            failure_reason=reason,
            dead_lettered_at=utcnow(),
        )
        session.add(entry_db)
        await session.flush()
        return entry_db

    @staticmethod
    async def get_by_task_id(session: AsyncSession, task_id: str) -> DeadLetterEntryDB | None:
        """Get entry for a dead-lettered task."""
        result = await session.execute(
            select(DeadLetterEntryDB).where(DeadLetterEntryDB.task_id == task_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_all(session: AsyncSession, limit: int = 100) -> list[DeadLetterEntryDB]:
        """Get entries, newest first."""
        result = await session.execute(
            select(DeadLetterEntryDB)
            .order_by(DeadLetterEntryDB.dead_lettered_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    @staticmethod
    async def count(session: AsyncSession) -> int:
        """Total number of entries."""
        return int(await session.scalar(select(func.count()).select_from(DeadLetterEntryDB)) or 0)

    @staticmethod
    def to_entry(entry_db: DeadLetterEntryDB) -> DeadLetterEntry:
        """Convert ORM row to domain model."""
        return DeadLetterEntry(
            id=entry_db.id,
            task=DeliveryTask.model_validate(entry_db.task),
            failure_reason=entry_db.failure_reason,
            dead_lettered_at=_add_timezone(entry_db.dead_lettered_at),
        )
