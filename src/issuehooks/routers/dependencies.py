"""Request-scoped access to the service container."""

from fastapi import HTTPException, Request, status

from issuehooks.container import ServiceContainer


def get_container(request: Request) -> ServiceContainer:
    """Container built by the application lifespan."""
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Webhook services not initialized",
        )
    return container
