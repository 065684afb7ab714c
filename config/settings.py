"""Application settings loaded from environment variables.

Uses pydantic-settings for validation and type coercion. App-specific
settings use the ``TUMAINI_`` prefix; infrastructure settings use their
canonical environment variable names via ``validation_alias``.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Central configuration for the Tumaini case-routing service.

    Environment variables are loaded from a ``.env`` file when present.
    App-specific keys are prefixed with ``TUMAINI_``; infra keys use their
    standard names (configured via ``validation_alias``).
    """

    model_config = SettingsConfigDict(
        env_prefix="TUMAINI_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # ── App ────────────────────────────────────────────────────────────
    env: Literal["development", "production"] = "development"
    timezone: str = "Africa/Nairobi"

    # ── Redis ──────────────────────────────────────────────────────────
    redis_url: str = Field(default="", validation_alias="REDIS_URL")
    store_namespace: str = "tumaini:"

    # ── Logging ────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_format: str = Field(default="json", validation_alias="LOG_FORMAT")

    # ── Routing ────────────────────────────────────────────────────────
    routing_max_per_type: int = Field(default=2, ge=1)
    pep_window_hours: int = Field(default=72, ge=1)  # post-exposure prophylaxis

    # ── Reminder engine ────────────────────────────────────────────────
    enable_reminder_engine: bool = True
    reminder_tick_interval_seconds: float = Field(default=60.0, ge=1, le=60)

    # ── Remote case API / outbox ───────────────────────────────────────
    remote_api_base_url: str = Field(default="", validation_alias="REMOTE_API_BASE_URL")
    remote_api_token: str = Field(default="", validation_alias="REMOTE_API_TOKEN")
    remote_api_timeout_seconds: float = 10.0
    outbox_max_attempts: int = Field(default=5, ge=1)
    outbox_base_delay_seconds: float = 1.0
    outbox_max_delay_seconds: float = 30.0
    outbox_backoff_multiplier: float = 2.0

    # ── Security ───────────────────────────────────────────────────────
    cors_origins: str = ""  # comma-separated

    # ── Seed data ──────────────────────────────────────────────────────
    seed_reference_providers: bool = True

    # ── Notifications ──────────────────────────────────────────────────
    notification_queue_limit: int = Field(default=10_000, ge=1)

    # ── Derived Properties ─────────────────────────────────────────────

    @property
    def is_production(self) -> bool:
        return self.env == Environment.PRODUCTION

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


# Module-level singleton; import ``settings`` everywhere.
settings = Settings()
