"""API endpoints for delivery inspection and dead-letter replay."""

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from issuehooks.container import ServiceContainer
from issuehooks.models import DeadLetterEntry, DeliveryTask
from issuehooks.routers.dependencies import get_container
from issuehooks.webhook import DeadLetterNotFoundError, DeliveryTaskNotFoundError

router = APIRouter(tags=["deliveries"])
logger = structlog.get_logger()


class DeliveryStatsResponse(BaseModel):
    """Task counts per state."""

    counts: dict[str, int]
    total: int


class DeadLetterListResponse(BaseModel):
    entries: list[DeadLetterEntry]
    total: int


@router.get("/deliveries/stats", response_model=DeliveryStatsResponse)
async def delivery_stats(
    container: ServiceContainer = Depends(get_container),
) -> DeliveryStatsResponse:
    counts = await container.queue.count_by_state()
    return DeliveryStatsResponse(counts=counts, total=sum(counts.values()))


@router.get("/deliveries/{task_id}", response_model=DeliveryTask)
async def get_delivery(
    task_id: str,
    container: ServiceContainer = Depends(get_container),
) -> DeliveryTask:
    """Current state of one delivery task."""
    try:
        return await container.queue.get(task_id)
    except DeliveryTaskNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e


@router.get("/dead-letters", response_model=DeadLetterListResponse)
async def list_dead_letters(
    limit: int = Query(default=100, ge=1, le=1000),
    container: ServiceContainer = Depends(get_container),
) -> DeadLetterListResponse:
    """Dead-lettered deliveries, newest first."""
    entries = await container.dead_letters.list(limit=limit)
    total = await container.dead_letters.count()
    return DeadLetterListResponse(entries=entries, total=total)


@router.post(
    "/dead-letters/{task_id}/replay",
    response_model=DeliveryTask,
    status_code=status.HTTP_201_CREATED,
)
async def replay_dead_letter(
    task_id: str,
    container: ServiceContainer = Depends(get_container),
) -> DeliveryTask:
    """
    Replay a dead-lettered delivery.

    Enqueues a fresh task with no attempts; the dead-letter entry stays.
    """
    try:
        return await container.dead_letters.replay(task_id)
    except DeadLetterNotFoundError as e:
        logger.warning("Replay of unknown dead letter", task_id=task_id)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
