"""Delivery worker pool with lease reclaim and graceful drain."""

from __future__ import annotations

import asyncio
import os
import socket

import httpx
import structlog

from .config import WebhookConfig
from .delivery import DeliveryWorker
from .queue import SQLDeliveryQueue
from .registry import WebhookRegistry

logger = structlog.get_logger()


class DeliveryWorkerPool:
    """Runs ``worker_count`` delivery workers plus a reclaim sweep.

    Lifecycle:
        pool = DeliveryWorkerPool(queue, registry, config)
        await pool.start()
        ...
        await pool.stop()  # drains in-flight batches, then cancels
    """

    def __init__(
        self,
        queue: SQLDeliveryQueue,
        registry: WebhookRegistry,
        config: WebhookConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize pool.

        Args:
            queue: Shared delivery queue
            registry: Webhook lookup
            config: Webhook configuration
            client: HTTP client shared by all workers; created on start if omitted
        """
        self.queue = queue
        self.registry = registry
        self.config = config or WebhookConfig()

        self._client = client
        self._owns_client = client is None
        self._stop_event = asyncio.Event()
        self._tasks: list[asyncio.Task[None]] = []
        self.workers: list[DeliveryWorker] = []

    @property
    def is_running(self) -> bool:
        return bool(self._tasks)

    def _worker_id(self, index: int) -> str:
        return f"{socket.gethostname()}-{os.getpid()}-worker-{index}"

    async def start(self) -> None:
        """Recover expired leases and start workers and the reclaim sweep."""
        if self.is_running:
            logger.warning("Delivery worker pool already running")
            return

        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.timeout_seconds)
            )

        await self.reclaim()

        self._stop_event = asyncio.Event()
        self.workers = [
            DeliveryWorker(
                self._worker_id(i),
                self.queue,
                self.registry,
                config=self.config,
                client=self._client,
            )
            for i in range(self.config.worker_count)
        ]
        self._tasks = [
            asyncio.create_task(worker.run(self._stop_event), name=worker.worker_id)
            for worker in self.workers
        ]
        self._tasks.append(asyncio.create_task(self._reclaim_loop(), name="lease-reclaim"))

        logger.info(
            "Delivery worker pool started",
            workers=self.config.worker_count,
            batch_size=self.config.lease_batch_size,
        )

    async def stop(self) -> None:
        """Signal workers to stop, wait up to the grace period, then cancel."""
        if not self.is_running:
            return

        self._stop_event.set()
        done, pending = await asyncio.wait(
            self._tasks, timeout=self.config.shutdown_grace_seconds
        )
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(
                "Delivery workers cancelled after grace period",
                cancelled=len(pending),
                grace_seconds=self.config.shutdown_grace_seconds,
            )

        self._tasks = []
        self.workers = []

        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

        logger.info("Delivery worker pool stopped", drained=len(done))

    async def reclaim(self) -> int:
        """Return expired leases to the queue."""
        return await self.queue.reclaim_expired(
            self.config.lease_timeout_seconds,
            max_attempts=self.config.max_attempts,
        )

    async def _reclaim_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self.config.reclaim_interval_seconds
                )
            except asyncio.TimeoutError:
                pass
            else:
                break

            try:
                await self.reclaim()
            except Exception:
                logger.exception("Lease reclaim sweep failed")
