"""Notification pipeline settings: queue, worker, health and rate limits."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class NotificationSettings(BaseSettings):
    """Queue, worker and health thresholds.

    Environment variables use NOTIFICATIONS_ prefix.
    Example: NOTIFICATIONS_MAX_ATTEMPTS=3, NOTIFICATIONS_POLL_INTERVAL=1.0
    """

    # ──────────────────────────────────────────────────────────────
    # Retry policy (per channel)
    # ──────────────────────────────────────────────────────────────

    max_attempts: int = Field(default=3, ge=1, le=20, description="Attempts per channel")
    backoff_base_seconds: float = Field(
        default=2.0, ge=0.0, description="Initial backoff delay; doubles per attempt",
    )
    backoff_max_seconds: float = Field(default=300.0, ge=0.0, description="Backoff ceiling")
    backoff_jitter: bool = Field(default=True, description="Randomize backoff delays")

    # ──────────────────────────────────────────────────────────────
    # Worker
    # ──────────────────────────────────────────────────────────────

    lease_seconds: int = Field(
        default=60, ge=5, description="How long a leased job stays invisible to other workers",
    )
    poll_interval: float = Field(default=1.0, gt=0.0, description="Idle poll delay in seconds")
    batch_size: int = Field(default=10, ge=1, le=500, description="Jobs leased per poll")
    fairness_interval: int = Field(
        default=5,
        ge=2,
        description="Every Nth lease takes the oldest job regardless of priority",
    )

    # ──────────────────────────────────────────────────────────────
    # Enqueue admission
    # ──────────────────────────────────────────────────────────────

    enqueue_rate_limit: int = Field(default=1000, ge=1, description="Jobs admitted per window")
    enqueue_rate_window: int = Field(default=60, ge=1, description="Admission window in seconds")

    # ──────────────────────────────────────────────────────────────
    # Maintenance and health
    # ──────────────────────────────────────────────────────────────

    clean_age_hours: int = Field(default=24, ge=1, description="Age of bookkeeping to purge")
    max_queue_depth: int = Field(
        default=10_000, ge=1, description="Queue depth at or above which health fails",
    )
    min_delivery_rate: float = Field(
        default=95.0, ge=0.0, le=100.0, description="Delivery rate (%) health must exceed",
    )
    latency_sample_size: int = Field(
        default=1000, ge=1, description="Delivered rows sampled for average latency",
    )

    model_config = SettingsConfigDict(
        env_prefix="NOTIFICATIONS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
    )


class RateLimitSettings(BaseSettings):
    """Rate limiter and local fallback tuning.

    Environment variables use RATE_LIMIT_ prefix.
    """

    default_limit: int = Field(default=100, ge=1, description="Requests allowed per window")
    default_window: int = Field(default=60, ge=1, description="Window length in seconds")
    failure_threshold: int = Field(
        default=1, ge=1, description="Consecutive store errors before degrading",
    )
    fallback_max_entries: int = Field(
        default=10_000, ge=10, description="Hard cap on in-process fallback counters",
    )
    fallback_sweep_interval: float = Field(
        default=30.0, gt=0.0, description="Seconds between expired-entry sweeps",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
    )
