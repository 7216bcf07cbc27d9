"""Outbox relay settings."""

from __future__ import annotations

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class OutboxSettings(BaseSettings):
    """Relay scheduling, retry and retention settings.

    Environment variables use OUTBOX_ prefix.
    Example: OUTBOX_BATCH_SIZE=50, OUTBOX_RETRY_BASE_DELAY=0
    """

    # ─────────────────────────────────────────────────────
    # Relay
    # ─────────────────────────────────────────────────────
    enabled: bool = Field(
        default=True,
        description="Run the outbox relay in this process.",
    )
    batch_size: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Maximum records claimed per relay tick.",
    )
    poll_interval: float = Field(
        default=5.0,
        gt=0,
        le=3600.0,
        description="Seconds between relay ticks.",
    )

    # ─────────────────────────────────────────────────────
    # Retry
    # ─────────────────────────────────────────────────────
    max_retries: int = Field(
        default=5,
        ge=1,
        le=100,
        description="FAILED records at or above this retry count are no longer claimed.",
    )
    retry_base_delay: float = Field(
        default=5.0,
        ge=0,
        le=3600.0,
        description="Base backoff in seconds after the first failure (0 retries on the next tick).",
    )
    retry_max_delay: float = Field(
        default=300.0,
        ge=0,
        le=86400.0,
        description="Upper bound in seconds on the retry backoff.",
    )
    stale_claim_seconds: int = Field(
        default=300,
        ge=10,
        le=86400,
        description="PROCESSING claims older than this are released as FAILED.",
    )
    reaper_interval_seconds: int = Field(
        default=60,
        ge=5,
        le=3600,
        description="Seconds between stale-claim sweeps.",
    )

    # ─────────────────────────────────────────────────────
    # Retention and reporting
    # ─────────────────────────────────────────────────────
    retention_days: int = Field(
        default=7,
        ge=1,
        le=365,
        description="PROCESSED records older than this many days are deleted.",
    )
    cleanup_hour: int = Field(
        default=3,
        ge=0,
        le=23,
        description="UTC hour of the daily retention cleanup.",
    )
    cleanup_minute: int = Field(
        default=0,
        ge=0,
        le=59,
        description="UTC minute of the daily retention cleanup.",
    )
    stats_interval_minutes: int = Field(
        default=60,
        ge=1,
        le=1440,
        description="Minutes between outbox statistics log lines.",
    )

    model_config = SettingsConfigDict(
        env_prefix="OUTBOX_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    @model_validator(mode="after")
    def _check_delays(self) -> OutboxSettings:
        """Reject a base delay larger than the cap."""
        if self.retry_base_delay > self.retry_max_delay:
            msg = "retry_base_delay must not exceed retry_max_delay"
            raise ValueError(msg)
        return self
