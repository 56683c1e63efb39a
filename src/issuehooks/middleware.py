"""
Service Middleware

Cross-cutting concerns including logging, metrics, and request handling.
"""

import time
import uuid
from collections.abc import Callable

import structlog
from fastapi import FastAPI, Request, Response

from issuehooks.webhook.metrics import get_or_create_counter, get_or_create_histogram

# Prometheus metrics
REQUEST_COUNT = get_or_create_counter(
    "issuehooks_http_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = get_or_create_histogram(
    "issuehooks_http_request_duration_seconds",
    "HTTP request duration in seconds",
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
    labelnames=["method", "endpoint"],
)

logger = structlog.get_logger()


def _endpoint(request: Request) -> str:
    # Route template keeps label cardinality bounded
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)


def setup_middleware(app: FastAPI, enable_metrics: bool = True) -> None:
    """Setup all middleware for the application."""

    @app.middleware("http")
    async def logging_middleware(request: Request, call_next: Callable) -> Response:
        """Add structured logging and request tracing."""
        # Generate trace ID for request correlation
        trace_id = request.headers.get("X-Trace-ID") or str(uuid.uuid4())

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            trace_id=trace_id,
            method=request.method,
            path=request.url.path,
        )

        start_time = time.time()

        try:
            response = await call_next(request)

            logger.info(
                "Request completed",
                status_code=response.status_code,
                duration=round(time.time() - start_time, 4),
            )

            response.headers["X-Trace-ID"] = trace_id
            return response

        except Exception as exc:
            logger.error(
                "Request failed",
                error=str(exc),
                duration=round(time.time() - start_time, 4),
                exc_info=True,
            )
            raise

    if enable_metrics:

        @app.middleware("http")
        async def metrics_middleware(request: Request, call_next: Callable) -> Response:
            """Collect Prometheus metrics."""
            start_time = time.time()
            status_code = 500

            try:
                response = await call_next(request)
                status_code = response.status_code
                return response
            finally:
                endpoint = _endpoint(request)
                REQUEST_COUNT.labels(
                    method=request.method, endpoint=endpoint, status_code=status_code
                ).inc()
                REQUEST_DURATION.labels(method=request.method, endpoint=endpoint).observe(
                    time.time() - start_time
                )
