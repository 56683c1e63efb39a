"""Dead-letter store for deliveries that exhausted their retries."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from issuehooks.database import Database
from issuehooks.database.repositories import DeadLetterRepository
from issuehooks.models import DeadLetterEntry, DeliveryTask

from . import metrics
from .exceptions import DeadLetterNotFoundError

if TYPE_CHECKING:
    from .queue import DeliveryQueue

logger = structlog.get_logger()


class DeadLetterStore:
    """Keeps failed tasks for inspection and manual replay.

    Entries are written once and never modified; replaying an entry
    enqueues a fresh copy of its task and leaves the entry in place.
    """

    def __init__(self, database: Database, queue: DeliveryQueue) -> None:
        """Initialize store.

        Args:
            database: Opened database used for storage
            queue: Queue that receives replayed tasks
        """
        self.database = database
        self.queue = queue

    async def add(
        self,
        task: DeliveryTask,
        reason: str,
        session: AsyncSession | None = None,
    ) -> DeadLetterEntry:
        """Record a failed task.

        Args:
            task: Task snapshot, as of the moment it failed for good
            reason: Human-readable failure reason
            session: Open session to join; a new one is used when omitted
        """
        if session is not None:
            entry_db = await DeadLetterRepository.create(session, task, reason)
            return DeadLetterRepository.to_entry(entry_db)

        async with self.database.session() as own_session:
            entry_db = await DeadLetterRepository.create(own_session, task, reason)
            return DeadLetterRepository.to_entry(entry_db)

    async def list(self, limit: int = 100) -> list[DeadLetterEntry]:
        """Entries, newest first."""
        async with self.database.session() as session:
            rows = await DeadLetterRepository.get_all(session, limit=limit)
            return [DeadLetterRepository.to_entry(row) for row in rows]

    async def count(self) -> int:
        async with self.database.session() as session:
            return await DeadLetterRepository.count(session)

    async def get(self, task_id: str) -> DeadLetterEntry:
        """Get the entry recorded for ``task_id``.

        Raises:
            DeadLetterNotFoundError: If the task was never dead-lettered
        """
        async with self.database.session() as session:
            entry_db = await DeadLetterRepository.get_by_task_id(session, task_id)
            if entry_db is None:
                raise DeadLetterNotFoundError(task_id)
            return DeadLetterRepository.to_entry(entry_db)

    async def replay(self, task_id: str) -> DeliveryTask:
        """Enqueue a fresh copy of a dead-lettered task.

        The new task starts with no attempts and points back at the
        original through ``replay_of``.

        Raises:
            DeadLetterNotFoundError: If the task was never dead-lettered
        """
        entry = await self.get(task_id)
        original = entry.task

        task = await self.queue.enqueue(
            webhook_id=original.webhook_id,
            event_type=original.event_type,
            payload=original.payload,
            replay_of=original.id,
        )
        metrics.webhook_dead_letter_replays_total.inc()
        logger.info(
            "Dead-lettered task replayed",
            task_id=task.id,
            replay_of=original.id,
            webhook_id=original.webhook_id,
        )
        return task
