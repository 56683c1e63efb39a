"""Webhook delivery worker: signing, sending and retry classification."""

import asyncio
import random
import time

import httpx
import structlog

from issuehooks.models import DeliveryTask, Webhook

from . import metrics
from .config import WebhookConfig
from .exceptions import DeliveryError, ExhaustedRetriesError
from .queue import DeliveryQueue
from .registry import WebhookRegistry
from .validator import generate_signature, serialize_payload

logger = structlog.get_logger()


def calculate_backoff(attempt: int, config: WebhookConfig) -> float:
    """Calculate retry delay with exponential backoff and jitter.

    Args:
        attempt: Attempts already completed before the failed one (0-indexed)
        config: Retry policy

    Returns:
        Delay in seconds, never negative
    """
    # Exponential backoff: base * multiplier^attempt
    delay = config.base_delay_seconds * (config.backoff_multiplier**attempt)

    # Cap at maximum
    delay = min(delay, config.max_delay_seconds)

    if config.jitter_ratio:
        jitter = delay * config.jitter_ratio
        delay = delay + random.uniform(-jitter, jitter)

    return max(0.0, delay)


class DeliveryWorker:
    """Consumes the delivery queue.

    Each leased task ends in exactly one of three ways: acknowledged
    after a 2xx response (or when its webhook no longer exists), released
    with a backoff delay, or dead-lettered once its attempt budget is
    spent. A failure on one task never affects the rest of the batch.
    """

    def __init__(
        self,
        worker_id: str,
        queue: DeliveryQueue,
        registry: WebhookRegistry,
        config: WebhookConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize delivery worker.

        Args:
            worker_id: Lease owner name
            queue: Queue to lease from
            registry: Webhook lookup
            config: Webhook configuration
            client: Shared HTTP client; the worker creates and owns one if omitted
        """
        self.worker_id = worker_id
        self.queue = queue
        self.registry = registry
        self.config = config or WebhookConfig()

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.config.timeout_seconds)
        )

    async def close(self) -> None:
        """Close HTTP client if this worker created it."""
        if self._owns_client:
            await self._client.aclose()

    async def run(self, stop_event: asyncio.Event) -> None:
        """Lease and process batches until ``stop_event`` is set."""
        logger.info("Delivery worker started", worker_id=self.worker_id)

        while not stop_event.is_set():
            try:
                processed = await self.run_once()
            except Exception as e:
                logger.error(
                    "Delivery worker iteration failed",
                    worker_id=self.worker_id,
                    error=str(e),
                    exc_info=True,
                )
                processed = 0

            if processed == 0:
                try:
                    await asyncio.wait_for(
                        stop_event.wait(), timeout=self.config.poll_interval_seconds
                    )
                except asyncio.TimeoutError:
                    pass

        logger.info("Delivery worker stopped", worker_id=self.worker_id)

    async def run_once(self) -> int:
        """Lease one batch and process it.

        Returns:
            Number of tasks leased
        """
        tasks = await self.queue.lease(self.worker_id, self.config.lease_batch_size)
        if not tasks:
            return 0

        await asyncio.gather(*(self._process_safely(task) for task in tasks))
        return len(tasks)

    async def _process_safely(self, task: DeliveryTask) -> None:
        try:
            await self.process(task)
        except Exception as e:
            # Task stays in_flight and is recovered by lease reclaim
            logger.error(
                "Unexpected error processing delivery task",
                worker_id=self.worker_id,
                task_id=task.id,
                error=str(e),
                exc_info=True,
            )

    async def process(self, task: DeliveryTask) -> None:
        """Deliver one leased task and record the outcome on the queue."""
        webhook = await self.registry.find(task.webhook_id)
        if webhook is None:
            await self.queue.acknowledge(task.id, attempted=False)
            metrics.record_attempt("dropped")
            logger.info(
                "Webhook no longer exists, delivery dropped",
                task_id=task.id,
                webhook_id=task.webhook_id,
            )
            return

        start_time = time.perf_counter()
        try:
            status_code = await self._execute_delivery(webhook, task)
        except DeliveryError as e:
            await self._handle_failure(task, e, time.perf_counter() - start_time)
            return

        duration = time.perf_counter() - start_time
        await self.queue.acknowledge(task.id)
        metrics.record_attempt("delivered", duration)
        logger.info(
            "Webhook delivered",
            task_id=task.id,
            webhook_id=webhook.id,
            event_type=task.event_type,
            attempt=task.attempt_count + 1,
            status_code=status_code,
            latency_ms=round(duration * 1000, 1),
        )

    async def _execute_delivery(self, webhook: Webhook, task: DeliveryTask) -> int:
        """Send a single attempt.

        Returns:
            HTTP status code of a 2xx response

        Raises:
            DeliveryError: On non-2xx responses, timeouts and transport errors
        """
        body = serialize_payload(task.payload)
        headers = self._prepare_headers(webhook, task, body)

        try:
            # Bounds the whole attempt, including a slowly streamed body
            async with asyncio.timeout(self.config.timeout_seconds):
                response = await self._client.post(
                    webhook.url,
                    content=body,
                    headers=headers,
                    timeout=self.config.timeout_seconds,
                )
        except (httpx.TimeoutException, TimeoutError) as e:
            raise DeliveryError(
                webhook.id, f"Request timeout after {self.config.timeout_seconds}s"
            ) from e
        except httpx.RequestError as e:
            raise DeliveryError(webhook.id, f"Request error: {e!s}") from e

        if 200 <= response.status_code < 300:
            return response.status_code

        reason = f"HTTP {response.status_code}"
        excerpt = response.text[: self.config.response_excerpt_length].strip()
        if excerpt:
            reason = f"{reason}: {excerpt}"
        raise DeliveryError(webhook.id, reason, status_code=response.status_code)

    def _prepare_headers(
        self,
        webhook: Webhook,
        task: DeliveryTask,
        body: bytes,
    ) -> dict[str, str]:
        """Prepare HTTP headers for webhook request."""
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self.config.user_agent,
            "X-Webhook-ID": webhook.id,
            "X-Webhook-Event": task.event_type,
            "X-Delivery-ID": task.id,
            "X-Delivery-Attempt": str(task.attempt_count + 1),
        }

        # Unsigned when the webhook has no secret
        if webhook.secret:
            headers[self.config.signature_header] = generate_signature(webhook.secret, body)

        return headers

    async def _handle_failure(
        self,
        task: DeliveryTask,
        error: DeliveryError,
        duration: float,
    ) -> None:
        """Release with backoff, or dead-letter once the budget is spent."""
        attempts = task.attempt_count + 1

        if error.status_code == 410 and self.config.dead_letter_on_gone:
            reason = f"Endpoint gone: {error.reason}"
            await self.queue.dead_letter(task.id, reason, status_code=error.status_code)
            metrics.record_attempt("dead_lettered", duration)
            return

        if attempts >= self.config.max_attempts:
            exhausted = ExhaustedRetriesError(task.id, attempts, error.reason)
            await self.queue.dead_letter(task.id, str(exhausted), status_code=error.status_code)
            metrics.record_attempt("dead_lettered", duration)
            logger.error(
                "Delivery exhausted",
                task_id=task.id,
                webhook_id=task.webhook_id,
                attempts=attempts,
                error=error.reason,
            )
            return

        delay = calculate_backoff(task.attempt_count, self.config)
        await self.queue.release(
            task.id, delay, error=error.reason, status_code=error.status_code
        )
        metrics.record_attempt("retry", duration)
        logger.warning(
            "Delivery failed, retry scheduled",
            task_id=task.id,
            webhook_id=task.webhook_id,
            attempt=attempts,
            max_attempts=self.config.max_attempts,
            retry_in_seconds=round(delay, 3),
            error=error.reason,
        )
