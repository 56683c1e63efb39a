"""Webhook dispatch and delivery pipeline.

Registration, event fan-out into durable delivery tasks, signed delivery
with retries and a dead-letter store for tasks that exhaust their budget.

Example usage:
    >>> from issuehooks.database import Database
    >>> from issuehooks.webhook import (
    ...     DeliveryWorker,
    ...     EventDispatcher,
    ...     SQLDeliveryQueue,
    ...     WebhookEvent,
    ...     WebhookRegistry,
    ... )
    >>>
    >>> database = Database("sqlite+aiosqlite:///./issuehooks.db")
    >>> await database.open()
    >>> registry = WebhookRegistry(database)
    >>> queue = SQLDeliveryQueue(database)
    >>> dispatcher = EventDispatcher(registry, queue)
    >>>
    >>> # Register webhook
    >>> webhook = await registry.register(
    ...     url="https://api.example.com/hooks",
    ...     events=[WebhookEvent.ISSUE_CREATED],
    ...     secret="s3cr3t",
    ... )
    >>>
    >>> # Fan out an event, then deliver one batch
    >>> await dispatcher.dispatch("issue.created", {"key": "PROJ-1"})
    1
    >>> await DeliveryWorker("worker-1", queue, registry).run_once()
    1
"""

from issuehooks.models import (
    DeadLetterEntry,
    DeliveryState,
    DeliveryTask,
    Webhook,
    WebhookEvent,
)

from .config import WebhookConfig
from .dead_letters import DeadLetterStore
from .delivery import DeliveryWorker, calculate_backoff
from .dispatcher import EventDispatcher
from .exceptions import (
    DeadLetterNotFoundError,
    DeliveryError,
    DeliveryTaskNotFoundError,
    ExhaustedRetriesError,
    NotFoundError,
    TaskStateError,
    WebhookError,
    WebhookNotFoundError,
    WebhookValidationError,
)
from .pool import DeliveryWorkerPool
from .queue import DeliveryQueue, SQLDeliveryQueue
from .registry import WebhookRegistry

__all__ = [
    # Core classes
    "WebhookRegistry",
    "EventDispatcher",
    "DeliveryQueue",
    "SQLDeliveryQueue",
    "DeliveryWorker",
    "DeliveryWorkerPool",
    "DeadLetterStore",
    "WebhookConfig",
    "calculate_backoff",
    # Models
    "Webhook",
    "DeliveryTask",
    "DeadLetterEntry",
    # Enums
    "WebhookEvent",
    "DeliveryState",
    # Exceptions
    "WebhookError",
    "WebhookValidationError",
    "NotFoundError",
    "WebhookNotFoundError",
    "DeliveryTaskNotFoundError",
    "DeadLetterNotFoundError",
    "TaskStateError",
    "DeliveryError",
    "ExhaustedRetriesError",
]
