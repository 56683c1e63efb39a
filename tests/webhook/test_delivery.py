"""Tests for the delivery worker and retry policy."""

import asyncio
import json
import statistics
import time
from datetime import UTC, datetime, timedelta

import httpx
import pytest
from prometheus_client import REGISTRY

from issuehooks.webhook import (
    DeliveryState,
    WebhookConfig,
    calculate_backoff,
)
from issuehooks.webhook.validator import generate_signature


async def _single_task(registry, dispatcher, queue, secret=None, url="https://a.example.com/h"):
    webhook = await registry.register(url, ["issue.created"], secret=secret)
    await dispatcher.dispatch("issue.created", {"issue": {"key": "PROJ-1"}})
    counts = await queue.count_by_state()
    assert counts["pending"] == 1
    return webhook


class TestSuccessfulDelivery:
    """Test 2xx deliveries."""

    @pytest.mark.asyncio
    async def test_delivers_signed_payload(self, make_worker, endpoint, registry, dispatcher, queue):
        webhook = await _single_task(registry, dispatcher, queue, secret="topsecret")
        receiver = endpoint(200)
        worker = make_worker(receiver)

        assert await worker.run_once() == 1

        assert len(receiver.requests) == 1
        request = receiver.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://a.example.com/h"
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["X-Webhook-Signature"] == generate_signature(
            "topsecret", request.content
        )
        assert request.headers["X-Webhook-ID"] == webhook.id
        assert request.headers["X-Webhook-Event"] == "issue.created"
        assert request.headers["X-Delivery-Attempt"] == "1"
        assert json.loads(request.content) == {"issue": {"key": "PROJ-1"}}

        counts = await queue.count_by_state()
        assert counts["delivered"] == 1

    @pytest.mark.asyncio
    async def test_unsigned_without_secret(self, make_worker, endpoint, registry, dispatcher, queue):
        await _single_task(registry, dispatcher, queue)
        receiver = endpoint(204)

        await make_worker(receiver).run_once()

        assert "X-Webhook-Signature" not in receiver.requests[0].headers
        assert (await queue.count_by_state())["delivered"] == 1

    @pytest.mark.asyncio
    async def test_idle_worker(self, make_worker, endpoint):
        receiver = endpoint(200)

        assert await make_worker(receiver).run_once() == 0
        assert receiver.requests == []

    @pytest.mark.asyncio
    async def test_deleted_webhook_is_dropped(self, make_worker, endpoint, registry, dispatcher, queue):
        """Tasks for deleted webhooks are acknowledged without a request."""
        webhook = await _single_task(registry, dispatcher, queue)
        await registry.delete(webhook.id)
        receiver = endpoint(200)

        assert await make_worker(receiver).run_once() == 1

        assert receiver.requests == []
        counts = await queue.count_by_state()
        assert counts["delivered"] == 1
        assert counts["pending"] == 0

    @pytest.mark.asyncio
    async def test_records_delivered_metric(self, make_worker, endpoint, registry, dispatcher, queue):
        labels = {"outcome": "delivered"}
        before = REGISTRY.get_sample_value("webhook_delivery_attempts_total", labels) or 0.0
        await _single_task(registry, dispatcher, queue)

        await make_worker(endpoint(200)).run_once()

        assert REGISTRY.get_sample_value("webhook_delivery_attempts_total", labels) == before + 1


class TestFailedDelivery:
    """Test retry and dead-letter classification."""

    @pytest.mark.asyncio
    async def test_four_500s_dead_letter(self, make_worker, endpoint, registry, dispatcher, queue):
        """Exhaustion after exactly max_attempts attempts."""
        await _single_task(registry, dispatcher, queue)
        receiver = endpoint(500, body="internal error")
        worker = make_worker(receiver)

        for _ in range(4):
            assert await worker.run_once() == 1

        assert await worker.run_once() == 0
        assert len(receiver.requests) == 4
        assert [r.headers["X-Delivery-Attempt"] for r in receiver.requests] == ["1", "2", "3", "4"]

        (entry,) = await queue.dead_letters.list()
        assert "500" in entry.failure_reason
        assert entry.task.attempt_count == 4
        assert entry.task.state == DeliveryState.DEAD_LETTERED
        assert entry.task.last_status_code == 500

    @pytest.mark.asyncio
    async def test_retry_then_success(self, make_worker, endpoint, registry, dispatcher, queue):
        await _single_task(registry, dispatcher, queue)
        receiver = endpoint(503, 200)
        worker = make_worker(receiver)

        await worker.run_once()
        counts = await queue.count_by_state()
        assert counts["pending"] == 1

        await worker.run_once()
        counts = await queue.count_by_state()
        assert counts["delivered"] == 1
        assert await queue.dead_letters.list() == []

        task = await queue.get(receiver.requests[0].headers["X-Delivery-ID"])
        assert task.attempt_count == 2

    @pytest.mark.asyncio
    async def test_timeout_is_retried(self, make_worker, endpoint, registry, dispatcher, queue):
        await _single_task(registry, dispatcher, queue)
        receiver = endpoint(httpx.ReadTimeout("timed out"))

        await make_worker(receiver).run_once()

        task = await queue.get(receiver.requests[0].headers["X-Delivery-ID"])
        assert task.state == DeliveryState.PENDING
        assert task.attempt_count == 1
        assert "timeout" in task.last_error.lower()
        assert task.last_status_code is None

    @pytest.mark.asyncio
    async def test_slow_response_body_times_out(
        self, make_worker, registry, dispatcher, queue, webhook_config
    ):
        """The timeout bounds the whole attempt, not each read."""
        await _single_task(registry, dispatcher, queue)
        config = webhook_config.model_copy(update={"timeout_seconds": 0.2})
        requests: list[httpx.Request] = []

        async def drip():
            for _ in range(20):
                await asyncio.sleep(0.1)
                yield b"."

        def receiver(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, content=drip())

        started = time.perf_counter()
        await make_worker(receiver, config=config).run_once()
        elapsed = time.perf_counter() - started

        assert elapsed < 1.5
        task = await queue.get(requests[0].headers["X-Delivery-ID"])
        assert task.state == DeliveryState.PENDING
        assert task.attempt_count == 1
        assert "timeout" in task.last_error.lower()

    @pytest.mark.asyncio
    async def test_connection_error_is_retried(self, make_worker, endpoint, registry, dispatcher, queue):
        await _single_task(registry, dispatcher, queue)
        receiver = endpoint(httpx.ConnectError("connection refused"))

        await make_worker(receiver).run_once()

        counts = await queue.count_by_state()
        assert counts["pending"] == 1
        assert counts["dead_lettered"] == 0

    @pytest.mark.asyncio
    async def test_gone_dead_letters_immediately(self, make_worker, endpoint, registry, dispatcher, queue):
        await _single_task(registry, dispatcher, queue)

        await make_worker(endpoint(410)).run_once()

        (entry,) = await queue.dead_letters.list()
        assert entry.task.attempt_count == 1
        assert "410" in entry.failure_reason

    @pytest.mark.asyncio
    async def test_gone_retried_when_fast_path_disabled(
        self, make_worker, endpoint, registry, dispatcher, queue, webhook_config
    ):
        await _single_task(registry, dispatcher, queue)
        config = webhook_config.model_copy(update={"dead_letter_on_gone": False})

        await make_worker(endpoint(410), config=config).run_once()

        assert (await queue.count_by_state())["pending"] == 1

    @pytest.mark.asyncio
    async def test_release_uses_backoff_delay(
        self, make_worker, endpoint, registry, dispatcher, queue, webhook_config
    ):
        await _single_task(registry, dispatcher, queue)
        config = webhook_config.model_copy(update={"base_delay_seconds": 30.0})
        receiver = endpoint(500)
        started = datetime.now(UTC)

        await make_worker(receiver, config=config).run_once()

        task = await queue.get(receiver.requests[0].headers["X-Delivery-ID"])
        assert task.state == DeliveryState.PENDING
        assert task.attempt_count == 1
        # base * multiplier**0, no jitter
        delay = task.next_attempt_at - started
        assert timedelta(seconds=29) < delay < timedelta(seconds=31)
        assert await queue.lease("worker-b", 10) == []

    @pytest.mark.asyncio
    async def test_failure_isolated_within_batch(self, make_worker, registry, dispatcher, queue):
        """An unexpected error on one task leaves the others unaffected."""
        await registry.register("https://broken.example.com/h", ["issue.created"])
        await registry.register("https://ok.example.com/h", ["issue.created"])
        await registry.register("https://flaky.example.com/h", ["issue.created"])
        await dispatcher.dispatch("issue.created", {"key": "PROJ-3"})

        def receiver(request: httpx.Request) -> httpx.Response:
            if request.url.host == "broken.example.com":
                raise RuntimeError("receiver exploded")
            if request.url.host == "flaky.example.com":
                return httpx.Response(502)
            return httpx.Response(200)

        assert await make_worker(receiver).run_once() == 3

        counts = await queue.count_by_state()
        assert counts == {
            "pending": 1,
            "in_flight": 1,
            "delivered": 1,
            "dead_lettered": 0,
        }


class TestBackoff:
    """Test retry delay calculation."""

    def test_exponential_without_jitter(self):
        config = WebhookConfig(base_delay_seconds=1.0, backoff_multiplier=2.0, jitter_ratio=0.0)

        assert [calculate_backoff(a, config) for a in range(5)] == [1.0, 2.0, 4.0, 8.0, 16.0]

    def test_capped_at_max_delay(self):
        config = WebhookConfig(
            base_delay_seconds=1.0, max_delay_seconds=300.0, jitter_ratio=0.0
        )

        assert calculate_backoff(20, config) == 300.0

    def test_jitter_stays_in_envelope(self):
        config = WebhookConfig(base_delay_seconds=1.0, backoff_multiplier=2.0, jitter_ratio=0.2)

        for attempt in range(6):
            nominal = 2.0**attempt
            samples = [calculate_backoff(attempt, config) for _ in range(200)]
            assert all(0.8 * nominal <= s <= 1.2 * nominal for s in samples)
            assert len(set(samples)) > 1

    def test_delays_grow(self):
        config = WebhookConfig(jitter_ratio=0.2)

        means = [
            statistics.mean(calculate_backoff(a, config) for _ in range(100))
            for a in range(4)
        ]

        assert means == sorted(means)

    def test_never_negative(self):
        config = WebhookConfig(base_delay_seconds=0.0, jitter_ratio=1.0)

        assert calculate_backoff(3, config) == 0.0
