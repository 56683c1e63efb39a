"""
Prometheus metrics for webhook dispatch and delivery.
"""

from __future__ import annotations

from typing import cast

from prometheus_client import REGISTRY, Counter, Histogram

# Module-level cache to prevent duplicate registration
_metrics_cache: dict[str, Counter | Histogram] = {}


def _find_registered(name: str) -> Counter | Histogram | None:
    # Counters are registered without their "_total" suffix
    names = {name, name.removesuffix("_total")}
    for collector in list(REGISTRY._collector_to_names.keys()):
        if getattr(collector, "_name", None) in names:
            return collector  # type: ignore[return-value]
    return None


def get_or_create_counter(
    name: str, description: str, labelnames: list[str] | None = None
) -> Counter:
    """Get existing counter or create new one, handling duplicates."""
    if name in _metrics_cache:
        return cast(Counter, _metrics_cache[name])

    try:
        counter = Counter(name, description, labelnames or [])
    except ValueError:
        # Metric already exists in registry, find and cache it
        existing = _find_registered(name)
        if existing is None:
            raise
        counter = cast(Counter, existing)
    _metrics_cache[name] = counter
    return counter


def get_or_create_histogram(
    name: str,
    description: str,
    buckets: list[float],
    labelnames: list[str] | None = None,
) -> Histogram:
    """Get existing histogram or create new one, handling duplicates."""
    if name in _metrics_cache:
        return cast(Histogram, _metrics_cache[name])

    try:
        histogram = Histogram(name, description, labelnames or [], buckets=buckets)
    except ValueError:
        existing = _find_registered(name)
        if existing is None:
            raise
        histogram = cast(Histogram, existing)
    _metrics_cache[name] = histogram
    return histogram


# Dispatch
webhook_tasks_dispatched_total = get_or_create_counter(
    "webhook_tasks_dispatched_total",
    "Delivery tasks enqueued by event dispatch",
    ["event_type"],
)

# Delivery attempts
webhook_delivery_attempts_total = get_or_create_counter(
    "webhook_delivery_attempts_total",
    "Webhook delivery attempts by outcome",
    ["outcome"],  # delivered, retry, dead_lettered, dropped
)

webhook_delivery_duration_seconds = get_or_create_histogram(
    "webhook_delivery_duration_seconds",
    "Duration of outbound webhook requests in seconds",
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

# Queue
webhook_tasks_leased_total = get_or_create_counter(
    "webhook_tasks_leased_total",
    "Delivery tasks leased by workers",
)

webhook_tasks_reclaimed_total = get_or_create_counter(
    "webhook_tasks_reclaimed_total",
    "In-flight tasks returned to pending after lease expiry",
)

webhook_dead_letter_replays_total = get_or_create_counter(
    "webhook_dead_letter_replays_total",
    "Dead-lettered tasks replayed",
)


def record_dispatch(event_type: str, count: int) -> None:
    if count:
        webhook_tasks_dispatched_total.labels(event_type=event_type).inc(count)


def record_attempt(outcome: str, duration_seconds: float | None = None) -> None:
    """Record one delivery attempt outcome and, when known, its latency."""
    webhook_delivery_attempts_total.labels(outcome=outcome).inc()
    if duration_seconds is not None:
        webhook_delivery_duration_seconds.observe(duration_seconds)
