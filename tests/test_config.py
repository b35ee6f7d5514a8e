"""Tests for environment-driven settings."""
import pytest
from pydantic import ValidationError

from issueflow_core.config import load_settings


class TestLoadSettings:
    """Test reading ISSUEFLOW_* variables."""

    def test_defaults(self):
        settings = load_settings({})
        assert settings.database_url == "sqlite:///./issueflow.db"
        assert settings.cors_origins == ["*"]
        assert settings.log_level == "INFO"
        assert settings.sse_heartbeat_seconds == 30
        assert settings.subscriber_queue_size == 100

    def test_overrides(self):
        settings = load_settings({
            "ISSUEFLOW_DATABASE_URL": "postgresql://db/issueflow",
            "ISSUEFLOW_CORS_ORIGINS": "https://a.example, https://b.example",
            "ISSUEFLOW_LOG_LEVEL": "debug",
            "ISSUEFLOW_SSE_HEARTBEAT_SECONDS": "5",
            "ISSUEFLOW_SUBSCRIBER_QUEUE_SIZE": "10",
        })
        assert settings.database_url == "postgresql://db/issueflow"
        assert settings.cors_origins == ["https://a.example", "https://b.example"]
        assert settings.log_level == "DEBUG"
        assert settings.sse_heartbeat_seconds == 5
        assert settings.subscriber_queue_size == 10

    def test_legacy_postgres_scheme_normalized(self):
        settings = load_settings({"ISSUEFLOW_DATABASE_URL": "postgres://u:p@host/db"})
        assert settings.database_url == "postgresql://u:p@host/db"

    def test_invalid_heartbeat_rejected(self):
        with pytest.raises(ValidationError):
            load_settings({"ISSUEFLOW_SSE_HEARTBEAT_SECONDS": "0"})
