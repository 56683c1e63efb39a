"""
Service Container

Builds the webhook pipeline components with explicit dependencies and
owns their startup and shutdown order.
"""

from __future__ import annotations

import httpx
import structlog

from issuehooks.config import Settings
from issuehooks.database import Database
from issuehooks.webhook import (
    DeadLetterStore,
    DeliveryWorkerPool,
    EventDispatcher,
    SQLDeliveryQueue,
    WebhookConfig,
    WebhookRegistry,
)

logger = structlog.get_logger()


class ServiceContainer:
    """All pipeline components for one database.

    Usage:
        container = ServiceContainer.from_settings(settings)
        await container.start(run_workers=True)
        await container.dispatcher.dispatch("issue.created", payload)
        await container.stop()
    """

    def __init__(
        self,
        database_url: str,
        webhook_config: WebhookConfig | None = None,
        echo: bool = False,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.webhook_config = webhook_config or WebhookConfig()
        self.database = Database(database_url, echo=echo)
        self.registry = WebhookRegistry(self.database)
        self.queue = SQLDeliveryQueue(self.database)
        self.dead_letters: DeadLetterStore = self.queue.dead_letters
        self.dispatcher = EventDispatcher(self.registry, self.queue)
        self.pool = DeliveryWorkerPool(
            self.queue,
            self.registry,
            config=self.webhook_config,
            client=client,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        webhook_config: WebhookConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> ServiceContainer:
        return cls(
            settings.DATABASE_URL,
            webhook_config=webhook_config,
            echo=settings.DATABASE_ECHO,
            client=client,
        )

    async def start(self, run_workers: bool = True) -> None:
        """Open the database and, optionally, start delivery workers."""
        await self.database.open()
        if run_workers:
            await self.pool.start()
        logger.info("Service container started", workers=run_workers)

    async def stop(self) -> None:
        """Drain workers before closing the database."""
        await self.pool.stop()
        await self.database.close()
        logger.info("Service container stopped")
