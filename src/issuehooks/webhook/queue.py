"""Durable delivery queue with leasing."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from issuehooks.database import Database
from issuehooks.database.models import DeliveryTaskDB, utcnow
from issuehooks.database.repositories import DeliveryTaskRepository
from issuehooks.models import DeadLetterEntry, DeliveryState, DeliveryTask

from . import metrics
from .dead_letters import DeadLetterStore
from .exceptions import DeliveryTaskNotFoundError, TaskStateError

logger = structlog.get_logger()


class DeliveryQueue(ABC):
    """Queue of delivery tasks.

    A task moves ``pending -> in_flight`` when leased and then to
    ``delivered``, back to ``pending`` (retry) or to ``dead_lettered``.
    A leased task is visible to exactly one worker.
    """

    @abstractmethod
    async def enqueue(
        self,
        webhook_id: str,
        event_type: str,
        payload: dict[str, Any],
        replay_of: str | None = None,
    ) -> DeliveryTask:
        """Insert a new pending task, due immediately."""

    @abstractmethod
    async def enqueue_many(
        self,
        webhook_ids: list[str],
        event_type: str,
        payload: dict[str, Any],
    ) -> list[DeliveryTask]:
        """Insert one pending task per webhook, all or none."""

    @abstractmethod
    async def lease(self, worker_id: str, max_count: int) -> list[DeliveryTask]:
        """Atomically claim up to ``max_count`` due tasks for ``worker_id``."""

    @abstractmethod
    async def acknowledge(self, task_id: str, attempted: bool = True) -> DeliveryTask:
        """Mark a leased task delivered.

        ``attempted`` is False when the task was settled without sending,
        in which case the attempt count is left unchanged.
        """

    @abstractmethod
    async def release(
        self,
        task_id: str,
        delay_seconds: float,
        error: str | None = None,
        status_code: int | None = None,
    ) -> DeliveryTask:
        """Return a leased task to pending after a failed attempt."""

    @abstractmethod
    async def dead_letter(
        self,
        task_id: str,
        reason: str,
        status_code: int | None = None,
    ) -> DeadLetterEntry:
        """Move a leased task to the dead-letter store."""


class SQLDeliveryQueue(DeliveryQueue):
    """Delivery queue stored in the ``delivery_tasks`` table.

    Every transition is a compare-and-swap on the state column executed
    inside a ``Database`` session, which serializes writers. Two workers
    leasing at the same time therefore never receive the same task.
    """

    def __init__(self, database: Database) -> None:
        """Initialize queue.

        Args:
            database: Opened database used for storage
        """
        self.database = database
        self.dead_letters = DeadLetterStore(database, queue=self)

    async def enqueue(
        self,
        webhook_id: str,
        event_type: str,
        payload: dict[str, Any],
        replay_of: str | None = None,
    ) -> DeliveryTask:
        async with self.database.session() as session:
            task_db = await DeliveryTaskRepository.create(
                session,
                webhook_id=webhook_id,
                event_type=event_type,
                payload=payload,
                replay_of=replay_of,
            )
            task = DeliveryTaskRepository.to_task(task_db)

        logger.debug(
            "Delivery task enqueued",
            task_id=task.id,
            webhook_id=webhook_id,
            event_type=event_type,
            replay_of=replay_of,
        )
        return task

    async def enqueue_many(
        self,
        webhook_ids: list[str],
        event_type: str,
        payload: dict[str, Any],
    ) -> list[DeliveryTask]:
        if not webhook_ids:
            return []

        # Single transaction: a failed insert leaves no task behind
        async with self.database.session() as session:
            tasks = []
            for webhook_id in webhook_ids:
                task_db = await DeliveryTaskRepository.create(
                    session,
                    webhook_id=webhook_id,
                    event_type=event_type,
                    payload=payload,
                )
                tasks.append(DeliveryTaskRepository.to_task(task_db))

        logger.debug("Delivery tasks enqueued", event_type=event_type, count=len(tasks))
        return tasks

    async def lease(self, worker_id: str, max_count: int) -> list[DeliveryTask]:
        if max_count <= 0:
            return []

        leased: list[DeliveryTask] = []
        async with self.database.session() as session:
            now = utcnow()
            for task_id in await DeliveryTaskRepository.get_ready_ids(session, now, max_count):
                claimed = await DeliveryTaskRepository.transition(
                    session,
                    task_id,
                    DeliveryState.PENDING,
                    DeliveryState.IN_FLIGHT,
                    lease_owner=worker_id,
                    leased_at=now,
                )
                if not claimed:
                    continue
                task_db = await DeliveryTaskRepository.get_by_id(session, task_id)
                leased.append(DeliveryTaskRepository.to_task(task_db))

        if leased:
            metrics.webhook_tasks_leased_total.inc(len(leased))
            logger.debug("Delivery tasks leased", worker_id=worker_id, count=len(leased))
        return leased

    async def acknowledge(self, task_id: str, attempted: bool = True) -> DeliveryTask:
        values: dict[str, Any] = {"lease_owner": None, "last_error": None}
        if attempted:
            values["attempt_count"] = DeliveryTaskDB.attempt_count + 1

        async with self.database.session() as session:
            await self._transition(
                session,
                task_id,
                DeliveryState.DELIVERED,
                operation="acknowledge",
                **values,
            )
            task_db = await DeliveryTaskRepository.get_by_id(session, task_id)
            return DeliveryTaskRepository.to_task(task_db)

    async def release(
        self,
        task_id: str,
        delay_seconds: float,
        error: str | None = None,
        status_code: int | None = None,
    ) -> DeliveryTask:
        next_attempt_at = utcnow() + timedelta(seconds=max(0.0, delay_seconds))
        async with self.database.session() as session:
            await self._transition(
                session,
                task_id,
                DeliveryState.PENDING,
                operation="release",
                attempt_count=DeliveryTaskDB.attempt_count + 1,
                next_attempt_at=next_attempt_at,
                lease_owner=None,
                leased_at=None,
                last_error=error,
                last_status_code=status_code,
            )
            task_db = await DeliveryTaskRepository.get_by_id(session, task_id)
            return DeliveryTaskRepository.to_task(task_db)

    async def dead_letter(
        self,
        task_id: str,
        reason: str,
        status_code: int | None = None,
    ) -> DeadLetterEntry:
        async with self.database.session() as session:
            await self._transition(
                session,
                task_id,
                DeliveryState.DEAD_LETTERED,
                operation="dead-letter",
                attempt_count=DeliveryTaskDB.attempt_count + 1,
                lease_owner=None,
                last_error=reason,
                last_status_code=status_code,
            )
            task_db = await DeliveryTaskRepository.get_by_id(session, task_id)
            task = DeliveryTaskRepository.to_task(task_db)
            # Same transaction as the state change
            entry = await self.dead_letters.add(task, reason, session=session)

        logger.warning(
            "Delivery task dead-lettered",
            task_id=task_id,
            webhook_id=task.webhook_id,
            attempts=task.attempt_count,
            reason=reason,
        )
        return entry

    async def get(self, task_id: str) -> DeliveryTask:
        """Get task by ID.

        Raises:
            DeliveryTaskNotFoundError: If task not found
        """
        async with self.database.session() as session:
            task_db = await DeliveryTaskRepository.get_by_id(session, task_id)
            if task_db is None:
                raise DeliveryTaskNotFoundError(task_id)
            return DeliveryTaskRepository.to_task(task_db)

    async def count_by_state(self) -> dict[str, int]:
        """Number of tasks in each state."""
        async with self.database.session() as session:
            return await DeliveryTaskRepository.count_by_state(session)

    async def reclaim_expired(
        self,
        lease_timeout_seconds: float,
        max_attempts: int | None = None,
    ) -> int:
        """Recover tasks whose worker died while holding the lease.

        The lost attempt is counted. A task whose budget is spent by it is
        dead-lettered instead of returned to pending.

        Args:
            lease_timeout_seconds: Age after which a lease is considered lost
            max_attempts: Retry budget, or None to always return to pending

        Returns:
            Number of tasks reclaimed
        """
        now = utcnow()
        cutoff = now - timedelta(seconds=lease_timeout_seconds)
        reclaimed = 0
        exhausted = 0

        async with self.database.session() as session:
            for task_db in await DeliveryTaskRepository.get_expired_leases(session, cutoff):
                reason = f"Lease expired (held by {task_db.lease_owner})"
                attempts = task_db.attempt_count + 1
                if max_attempts is not None and attempts >= max_attempts:
                    to_state = DeliveryState.DEAD_LETTERED
                    reason = f"Delivery exhausted after {attempts} attempts: {reason}"
                else:
                    to_state = DeliveryState.PENDING

                moved = await DeliveryTaskRepository.transition(
                    session,
                    task_db.id,
                    DeliveryState.IN_FLIGHT,
                    to_state,
                    attempt_count=attempts,
                    next_attempt_at=now,
                    lease_owner=None,
                    leased_at=None,
                    last_error=reason,
                )
                if not moved:
                    continue
                reclaimed += 1

                if to_state is DeliveryState.DEAD_LETTERED:
                    refreshed = await DeliveryTaskRepository.get_by_id(session, task_db.id)
                    task = DeliveryTaskRepository.to_task(refreshed)
                    await self.dead_letters.add(task, reason, session=session)
                    exhausted += 1

        if reclaimed:
            metrics.webhook_tasks_reclaimed_total.inc(reclaimed)
            logger.warning(
                "Expired leases reclaimed",
                count=reclaimed,
                dead_lettered=exhausted,
                lease_timeout_seconds=lease_timeout_seconds,
            )
        return reclaimed

    async def _transition(
        self,
        session: AsyncSession,
        task_id: str,
        to_state: DeliveryState,
        operation: str,
        **values: Any,
    ) -> None:
        """Move a leased task out of ``in_flight`` or raise."""
        moved = await DeliveryTaskRepository.transition(
            session, task_id, DeliveryState.IN_FLIGHT, to_state, **values
        )
        if moved:
            return

        task_db = await DeliveryTaskRepository.get_by_id(session, task_id)
        if task_db is None:
            raise DeliveryTaskNotFoundError(task_id)
        raise TaskStateError(task_id, task_db.state, operation)
