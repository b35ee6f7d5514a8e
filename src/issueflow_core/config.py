"""Application settings loaded from the environment."""
import os
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, Field


class Settings(BaseModel):
    """Runtime configuration for Issueflow Core.

    Every field can be overridden with an ``ISSUEFLOW_``-prefixed
    environment variable (e.g. ``ISSUEFLOW_DATABASE_URL``).
    """

    app_name: str = "Issueflow Core API"
    database_url: str = "sqlite:///./issueflow.db"
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    sse_heartbeat_seconds: int = Field(30, ge=1)
    subscriber_queue_size: int = Field(100, ge=1)


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def load_settings(environ: Optional[dict[str, str]] = None) -> Settings:
    """Build a Settings instance from an environment mapping."""
    env = os.environ if environ is None else environ
    values: dict = {}

    if env.get("ISSUEFLOW_DATABASE_URL"):
        # Heroku/Supabase style URLs still use the legacy scheme
        values["database_url"] = env["ISSUEFLOW_DATABASE_URL"].replace("postgres://", "postgresql://", 1)
    if env.get("ISSUEFLOW_CORS_ORIGINS"):
        values["cors_origins"] = _split_csv(env["ISSUEFLOW_CORS_ORIGINS"])
    if env.get("ISSUEFLOW_LOG_LEVEL"):
        values["log_level"] = env["ISSUEFLOW_LOG_LEVEL"].upper()
    if env.get("ISSUEFLOW_SSE_HEARTBEAT_SECONDS"):
        values["sse_heartbeat_seconds"] = int(env["ISSUEFLOW_SSE_HEARTBEAT_SECONDS"])
    if env.get("ISSUEFLOW_SUBSCRIBER_QUEUE_SIZE"):
        values["subscriber_queue_size"] = int(env["ISSUEFLOW_SUBSCRIBER_QUEUE_SIZE"])

    return Settings(**values)


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings (cached)."""
    return load_settings()
