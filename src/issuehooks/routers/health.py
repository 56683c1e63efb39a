"""
Health Check Endpoints

Service health and readiness endpoints for monitoring and load balancing.
"""

from datetime import UTC, datetime
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from issuehooks import __version__
from issuehooks.container import ServiceContainer
from issuehooks.routers.dependencies import get_container

router = APIRouter()
logger = structlog.get_logger()


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    timestamp: str
    checks: dict[str, dict[str, Any]]


class ReadinessResponse(BaseModel):
    """Readiness check response model."""

    status: str
    ready: bool
    checks: dict[str, bool]


@router.get("/health", response_model=HealthResponse)
async def health_check(
    container: ServiceContainer = Depends(get_container),
) -> HealthResponse:
    """
    Basic health check endpoint.

    Returns the service status, version and worker pool state.
    """
    return HealthResponse(
        status="healthy",
        version=__version__,
        timestamp=datetime.now(UTC).isoformat(),
        checks={
            "application": {"status": "healthy", "details": "Application is running"},
            "workers": {
                "status": "running" if container.pool.is_running else "stopped",
                "count": len(container.pool.workers),
            },
        },
    )


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness_check(
    container: ServiceContainer = Depends(get_container),
) -> ReadinessResponse:
    """
    Readiness check endpoint.

    Verifies the database is reachable before traffic is accepted.
    """
    db_healthy = await container.database.check_health()
    if not db_healthy:
        logger.warning("Database health check failed")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not ready",
        )

    return ReadinessResponse(status="ready", ready=True, checks={"database": True})
