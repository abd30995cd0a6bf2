"""Rate limit protection status types."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum


class RateLimitProtectionStatus(StrEnum):
    """Where limiter decisions are currently coming from.

    Values:
        AVAILABLE: Shared store is healthy and authoritative
        DEGRADED: Shared store unreachable; local fallback is enforcing limits
    """

    AVAILABLE = "available"
    DEGRADED = "degraded"


@dataclass
class RateLimitProtectionState:
    """Snapshot of limiter health.

    Attributes:
        status: Current protection status
        since: When this status began
        consecutive_failures: Number of consecutive store failures
        last_error: Most recent error message (if any)
    """

    status: RateLimitProtectionStatus
    since: datetime = field(default_factory=lambda: datetime.now(UTC))
    consecutive_failures: int = 0
    last_error: str | None = None


__all__ = [
    "RateLimitProtectionState",
    "RateLimitProtectionStatus",
]
