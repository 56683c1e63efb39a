"""API endpoints for webhook registration."""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field

from issuehooks.container import ServiceContainer
from issuehooks.models import Webhook
from issuehooks.routers.dependencies import get_container
from issuehooks.webhook import WebhookNotFoundError

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


class WebhookCreateRequest(BaseModel):
    """Request to register a webhook."""

    url: str = Field(description="Absolute http(s) delivery URL")
    events: list[str] = Field(description="Subscribed event types")
    secret: str | None = Field(default=None, description="HMAC signing secret")


class WebhookUpdateRequest(BaseModel):
    """Request to enable or disable a webhook."""

    active: bool


class WebhookResponse(BaseModel):
    """Registered webhook, with the secret masked."""

    id: str
    url: str
    events: list[str]
    active: bool
    signed: bool = Field(description="Whether deliveries carry a signature")
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_webhook(cls, webhook: Webhook) -> "WebhookResponse":
        return cls(
            id=webhook.id,
            url=webhook.url,
            events=[e.value for e in webhook.events],
            active=webhook.active,
            signed=webhook.secret is not None,
            created_at=webhook.created_at,
            updated_at=webhook.updated_at,
        )


class WebhookCreatedResponse(WebhookResponse):
    """Newly registered webhook. The only response that carries the secret."""

    secret: str | None = None

    @classmethod
    def from_webhook(cls, webhook: Webhook) -> "WebhookCreatedResponse":
        response = WebhookResponse.from_webhook(webhook)
        return cls(**response.model_dump(), secret=webhook.secret)


class WebhookListResponse(BaseModel):
    """All registered webhooks."""

    webhooks: list[WebhookResponse]
    total: int


@router.post("", response_model=WebhookCreatedResponse, status_code=status.HTTP_201_CREATED)
async def register_webhook(
    request: WebhookCreateRequest,
    container: ServiceContainer = Depends(get_container),
) -> WebhookCreatedResponse:
    """
    Register a webhook.

    Validation failures surface as 400 through the application's
    ``WebhookValidationError`` handler.
    """
    webhook = await container.registry.register(
        url=request.url,
        events=request.events,
        secret=request.secret,
    )
    return WebhookCreatedResponse.from_webhook(webhook)


@router.get("", response_model=WebhookListResponse)
async def list_webhooks(
    container: ServiceContainer = Depends(get_container),
) -> WebhookListResponse:
    """List webhooks in registration order."""
    webhooks = await container.registry.list()
    return WebhookListResponse(
        webhooks=[WebhookResponse.from_webhook(w) for w in webhooks],
        total=len(webhooks),
    )


@router.get("/{webhook_id}", response_model=WebhookResponse)
async def get_webhook(
    webhook_id: str,
    container: ServiceContainer = Depends(get_container),
) -> WebhookResponse:
    try:
        webhook = await container.registry.get(webhook_id)
    except WebhookNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    return WebhookResponse.from_webhook(webhook)


@router.patch("/{webhook_id}", response_model=WebhookResponse)
async def update_webhook(
    webhook_id: str,
    request: WebhookUpdateRequest,
    container: ServiceContainer = Depends(get_container),
) -> WebhookResponse:
    """Enable or disable dispatch to a webhook."""
    try:
        webhook = await container.registry.set_active(webhook_id, request.active)
    except WebhookNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    return WebhookResponse.from_webhook(webhook)


@router.delete("/{webhook_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_webhook(
    webhook_id: str,
    container: ServiceContainer = Depends(get_container),
) -> Response:
    """
    Delete a webhook.

    Deliveries already queued for it are dropped by the workers.
    """
    try:
        await container.registry.delete(webhook_id)
    except WebhookNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    return Response(status_code=status.HTTP_204_NO_CONTENT)
