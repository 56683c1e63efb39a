"""API endpoint for publishing domain events."""

from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from issuehooks.container import ServiceContainer
from issuehooks.models import SUPPORTED_EVENTS
from issuehooks.routers.dependencies import get_container
from issuehooks.webhook import WebhookValidationError

router = APIRouter(prefix="/events", tags=["events"])


class EventRequest(BaseModel):
    """Domain event to fan out."""

    event: str = Field(description="Event type, e.g. issue.created")
    payload: dict[str, Any] = Field(default_factory=dict)


class EventAcceptedResponse(BaseModel):
    event: str
    enqueued: int = Field(description="Delivery tasks created")


@router.post("", response_model=EventAcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
async def publish_event(
    request: EventRequest,
    container: ServiceContainer = Depends(get_container),
) -> EventAcceptedResponse:
    """
    Enqueue deliveries for every active webhook subscribed to the event.

    Returns as soon as the tasks are stored; delivery happens in the
    worker pool.
    """
    if request.event not in SUPPORTED_EVENTS:
        raise WebhookValidationError(f"Unsupported event: {request.event}")

    enqueued = await container.dispatcher.dispatch(request.event, request.payload)
    return EventAcceptedResponse(event=request.event, enqueued=enqueued)
