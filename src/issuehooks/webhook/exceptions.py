"""Webhook pipeline exceptions."""


class WebhookError(Exception):
    """Base exception for webhook operations."""

    pass


class WebhookValidationError(WebhookError):
    """Registration input is malformed."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or [message]


class NotFoundError(WebhookError):
    """Operation referenced an unknown id."""

    pass


class WebhookNotFoundError(NotFoundError):
    """Webhook not found."""

    def __init__(self, webhook_id: str) -> None:
        super().__init__(f"Webhook not found: {webhook_id}")
        self.webhook_id = webhook_id


class DeliveryTaskNotFoundError(NotFoundError):
    """Delivery task not found."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Delivery task not found: {task_id}")
        self.task_id = task_id


class DeadLetterNotFoundError(NotFoundError):
    """No dead-letter entry for the task."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Dead-letter entry not found for task: {task_id}")
        self.task_id = task_id


class TaskStateError(WebhookError):
    """Queue transition attempted from the wrong state."""

    def __init__(self, task_id: str, state: str, operation: str) -> None:
        super().__init__(f"Cannot {operation} task {task_id} in state '{state}'")
        self.task_id = task_id
        self.state = state
        self.operation = operation


class DeliveryError(WebhookError):
    """A single delivery attempt failed (retryable)."""

    def __init__(self, webhook_id: str, reason: str, status_code: int | None = None) -> None:
        super().__init__(f"Webhook delivery failed for {webhook_id}: {reason}")
        self.webhook_id = webhook_id
        self.reason = reason
        self.status_code = status_code


class ExhaustedRetriesError(WebhookError):
    """Maximum delivery attempts exhausted."""

    def __init__(self, task_id: str, attempts: int, last_error: str) -> None:
        super().__init__(
            f"Delivery {task_id} exhausted after {attempts} attempts: {last_error}"
        )
        self.task_id = task_id
        self.attempts = attempts
        self.last_error = last_error
