"""Webhook delivery configuration."""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class WebhookConfig(BaseSettings):
    """Webhook delivery pipeline configuration."""

    # Retry policy
    max_attempts: int = Field(default=4, ge=1, le=50, description="Total delivery attempts")
    base_delay_seconds: float = Field(default=1.0, ge=0.0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    max_delay_seconds: float = Field(default=300.0, ge=0.0)
    jitter_ratio: float = Field(default=0.2, ge=0.0, le=1.0)
    dead_letter_on_gone: bool = Field(
        default=True, description="Dead-letter immediately on HTTP 410 Gone"
    )

    # Delivery
    timeout_seconds: float = Field(default=10.0, gt=0.0, le=300.0)
    signature_header: str = Field(default="X-Webhook-Signature")
    user_agent: str = Field(default="IssueTracker-Webhook/1.0")
    response_excerpt_length: int = Field(default=200, ge=0)

    # Workers
    worker_count: int = Field(default=4, ge=1, le=256)
    lease_batch_size: int = Field(default=10, ge=1, le=1000)
    poll_interval_seconds: float = Field(default=1.0, gt=0.0)
    lease_timeout_seconds: float = Field(
        default=120.0, gt=0.0, description="In-flight tasks older than this are reclaimed"
    )
    reclaim_interval_seconds: float = Field(default=30.0, gt=0.0)
    shutdown_grace_seconds: float = Field(default=15.0, ge=0.0)

    model_config = SettingsConfigDict(
        env_prefix="WEBHOOK_",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_lease_timeout(self) -> "WebhookConfig":
        """A lease must outlive one delivery attempt."""
        if self.lease_timeout_seconds <= self.timeout_seconds:
            raise ValueError("lease_timeout_seconds must exceed timeout_seconds")
        return self
