"""Shared fixtures for webhook pipeline tests."""

from __future__ import annotations

from collections.abc import Callable

import httpx
import pytest

from issuehooks.database import Database
from issuehooks.webhook import (
    DeliveryWorker,
    EventDispatcher,
    SQLDeliveryQueue,
    WebhookConfig,
    WebhookRegistry,
)

MEMORY_URL = "sqlite+aiosqlite:///:memory:"


class RecordingEndpoint:
    """MockTransport handler that records requests and replays canned statuses.

    Statuses are consumed in order; the last one repeats. A status may be
    replaced by an exception instance, which is raised instead.
    """

    def __init__(self, *outcomes: int | Exception, body: str = "") -> None:
        self.outcomes = list(outcomes) or [200]
        self.body = body
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.outcomes[min(len(self.requests), len(self.outcomes)) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(outcome, text=self.body)


@pytest.fixture
def webhook_config():
    """Create test webhook configuration with immediate retries."""
    return WebhookConfig(
        max_attempts=4,
        base_delay_seconds=0.0,
        jitter_ratio=0.0,
        timeout_seconds=1.0,
        lease_timeout_seconds=30.0,
        poll_interval_seconds=0.01,
        reclaim_interval_seconds=0.05,
        shutdown_grace_seconds=1.0,
        worker_count=2,
        lease_batch_size=10,
    )


@pytest.fixture
async def database():
    """Create an in-memory database with the schema applied."""
    db = Database(MEMORY_URL)
    await db.open()
    yield db
    await db.close()


@pytest.fixture
def registry(database):
    return WebhookRegistry(database)


@pytest.fixture
def queue(database):
    return SQLDeliveryQueue(database)


@pytest.fixture
def dispatcher(registry, queue):
    return EventDispatcher(registry, queue)


@pytest.fixture
async def make_worker(queue, registry, webhook_config):
    """Factory building workers whose HTTP calls go to a RecordingEndpoint."""
    clients: list[httpx.AsyncClient] = []

    def factory(
        endpoint: Callable[[httpx.Request], httpx.Response],
        config: WebhookConfig | None = None,
        worker_id: str = "worker-test",
    ) -> DeliveryWorker:
        client = httpx.AsyncClient(transport=httpx.MockTransport(endpoint))
        clients.append(client)
        return DeliveryWorker(
            worker_id,
            queue,
            registry,
            config=config or webhook_config,
            client=client,
        )

    yield factory

    for client in clients:
        await client.aclose()


@pytest.fixture
def endpoint():
    """The RecordingEndpoint class, for building canned receivers."""
    return RecordingEndpoint
