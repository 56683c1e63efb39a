"""
Issue Tracker Webhook Service - FastAPI Application

Webhook registration, event intake, delivery inspection and dead-letter
replay, with the delivery worker pool running in the same process.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from issuehooks import __version__
from issuehooks.config import Settings, settings
from issuehooks.container import ServiceContainer
from issuehooks.logging_config import configure_logging
from issuehooks.middleware import setup_middleware
from issuehooks.routers import deliveries, events, health, webhooks
from issuehooks.webhook import (
    NotFoundError,
    TaskStateError,
    WebhookConfig,
    WebhookValidationError,
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    app_settings: Settings = app.state.settings
    configure_logging(app_settings.LOG_LEVEL, json_output=app_settings.LOG_JSON)
    logger = structlog.get_logger()

    container = ServiceContainer.from_settings(
        app_settings,
        webhook_config=app.state.webhook_config,
        client=app.state.http_client,
    )

    try:
        logger.info("Starting issue tracker webhook service", version=__version__)
        await container.start(run_workers=app_settings.RUN_WORKERS)
        app.state.container = container
        yield
    finally:
        logger.info("Shutting down issue tracker webhook service")
        app.state.container = None
        await container.stop()


async def validation_error_handler(request: Request, exc: WebhookValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": str(exc), "errors": exc.errors},
    )


async def request_validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed bodies are client errors like any other invalid input."""
    errors = [
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "Invalid request", "errors": errors},
    )


async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


async def task_state_handler(request: Request, exc: TaskStateError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


def create_app(
    app_settings: Settings | None = None,
    webhook_config: WebhookConfig | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        app_settings: Service settings (read from the environment if omitted)
        webhook_config: Delivery pipeline settings
        http_client: Outbound client shared by the delivery workers
    """
    app_settings = app_settings or Settings()

    app = FastAPI(
        title="Issue Tracker Webhook Service",
        description="Reliable webhook delivery for issue events",
        version=__version__,
        docs_url="/docs" if app_settings.DEBUG else None,
        redoc_url="/redoc" if app_settings.DEBUG else None,
        lifespan=lifespan,
    )
    app.state.settings = app_settings
    app.state.webhook_config = webhook_config
    app.state.http_client = http_client
    app.state.container = None

    # Setup middleware
    setup_middleware(app, enable_metrics=app_settings.ENABLE_METRICS)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    app.add_exception_handler(WebhookValidationError, validation_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(NotFoundError, not_found_handler)
    app.add_exception_handler(TaskStateError, task_state_handler)

    # Include routers
    app.include_router(health.router, tags=["health"])
    app.include_router(webhooks.router)
    app.include_router(events.router)
    app.include_router(deliveries.router)

    # Prometheus instrumentation
    if app_settings.ENABLE_METRICS:
        Instrumentator().instrument(app).expose(app, endpoint="/metrics")

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "issuehooks.main:create_app",
        factory=True,
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info",
        access_log=True,
    )
