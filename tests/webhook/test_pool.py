"""Tests for the delivery worker pool lifecycle."""

import asyncio
import time

import httpx
import pytest

from issuehooks.webhook import DeliveryState, DeliveryWorkerPool


async def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if await predicate():
            return True
        await asyncio.sleep(0.02)
    return False


@pytest.fixture
async def http_clients():
    clients = []

    def factory(handler):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        clients.append(client)
        return client

    yield factory

    for client in clients:
        await client.aclose()


class TestDeliveryWorkerPool:
    """Test pool start, drain and recovery."""

    @pytest.mark.asyncio
    async def test_pool_delivers_dispatched_events(
        self, queue, registry, dispatcher, webhook_config, endpoint, http_clients
    ):
        receiver = endpoint(200)
        pool = DeliveryWorkerPool(queue, registry, webhook_config, client=http_clients(receiver))
        for i in range(3):
            await registry.register(f"https://hooks{i}.example.com/h", ["issue.created"])

        await pool.start()
        try:
            assert pool.is_running
            assert len(pool.workers) == webhook_config.worker_count
            for n in range(5):
                await dispatcher.dispatch("issue.created", {"n": n})

            async def all_delivered():
                return (await queue.count_by_state())["delivered"] == 15

            assert await _wait_for(all_delivered)
        finally:
            await pool.stop()

        assert not pool.is_running
        assert len(receiver.requests) == 15
        delivery_ids = [r.headers["X-Delivery-ID"] for r in receiver.requests]
        assert len(set(delivery_ids)) == 15

    @pytest.mark.asyncio
    async def test_stop_is_bounded_by_grace_period(
        self, queue, registry, dispatcher, webhook_config, http_clients
    ):
        """Slow endpoints cannot hold shutdown past the grace period."""
        started = asyncio.Event()

        async def slow_receiver(request):
            started.set()
            await asyncio.sleep(30)
            return httpx.Response(200)

        config = webhook_config.model_copy(update={"shutdown_grace_seconds": 0.1})
        pool = DeliveryWorkerPool(queue, registry, config, client=http_clients(slow_receiver))
        await registry.register("https://slow.example.com/h", ["issue.created"])
        await dispatcher.dispatch("issue.created", {})

        await pool.start()
        await asyncio.wait_for(started.wait(), timeout=5)

        begin = time.monotonic()
        await pool.stop()

        assert time.monotonic() - begin < 5
        assert not pool.is_running
        # Left for lease reclaim on the next start
        assert (await queue.count_by_state())["in_flight"] == 1

    @pytest.mark.asyncio
    async def test_start_reclaims_expired_leases(
        self, queue, registry, dispatcher, webhook_config, endpoint, http_clients
    ):
        receiver = endpoint(200)
        config = webhook_config.model_copy(
            update={
                "timeout_seconds": 0.04,
                "lease_timeout_seconds": 0.05,
                "reclaim_interval_seconds": 60.0,
            }
        )
        pool = DeliveryWorkerPool(queue, registry, config, client=http_clients(receiver))
        await registry.register("https://a.example.com/h", ["issue.created"])
        await dispatcher.dispatch("issue.created", {})
        (orphan,) = await queue.lease("crashed-worker", 1)
        await asyncio.sleep(0.1)

        await pool.start()
        try:

            async def delivered():
                return (await queue.get(orphan.id)).state == DeliveryState.DELIVERED

            assert await _wait_for(delivered)
        finally:
            await pool.stop()

        task = await queue.get(orphan.id)
        # Lost attempt plus the successful one
        assert task.attempt_count == 2
        assert len(receiver.requests) == 1

    @pytest.mark.asyncio
    async def test_stop_when_not_started(self, queue, registry, webhook_config):
        pool = DeliveryWorkerPool(queue, registry, webhook_config)

        await pool.stop()

        assert not pool.is_running
