"""Tests for service and delivery configuration."""

import pytest
from pydantic import ValidationError

from issuehooks.config import Settings
from issuehooks.webhook import WebhookConfig


class TestWebhookConfig:
    """Test delivery pipeline settings."""

    def test_defaults(self, monkeypatch):
        for name in ("WEBHOOK_MAX_ATTEMPTS", "WEBHOOK_TIMEOUT_SECONDS"):
            monkeypatch.delenv(name, raising=False)

        config = WebhookConfig()

        assert config.max_attempts == 4
        assert config.timeout_seconds == 10.0
        assert config.base_delay_seconds == 1.0
        assert config.backoff_multiplier == 2.0
        assert config.jitter_ratio == 0.2
        assert config.dead_letter_on_gone is True
        assert config.signature_header == "X-Webhook-Signature"

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("WEBHOOK_MAX_ATTEMPTS", "6")
        monkeypatch.setenv("WEBHOOK_WORKER_COUNT", "2")

        config = WebhookConfig()

        assert config.max_attempts == 6
        assert config.worker_count == 2

    def test_lease_must_outlive_attempt(self):
        with pytest.raises(ValidationError):
            WebhookConfig(timeout_seconds=30.0, lease_timeout_seconds=10.0)

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValidationError):
            WebhookConfig(max_attempts=0)


class TestSettings:
    """Test service settings."""

    def test_sqlite_url_uses_async_driver(self):
        settings = Settings(DATABASE_URL="sqlite:///./hooks.db")

        assert settings.DATABASE_URL == "sqlite+aiosqlite:///./hooks.db"

    def test_log_level_normalized(self):
        assert Settings(LOG_LEVEL="debug").LOG_LEVEL == "DEBUG"

    def test_unknown_log_level(self):
        with pytest.raises(ValidationError):
            Settings(LOG_LEVEL="chatty")
