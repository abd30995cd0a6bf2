"""Degradation state machine for the rate limiter.

AVAILABLE --(store error)--> DEGRADED --(store success)--> AVAILABLE

Transitions are logged and exported as metrics; degradation never raises.
"""

from __future__ import annotations

from datetime import UTC, datetime
import logging
import threading

from notification_service.infra.metrics.tracking import (
    track_rate_limiter_state_transition,
    track_rate_limiter_store_error,
    update_rate_limiter_protection_status,
)
from notification_service.infra.ratelimit.status import (
    RateLimitProtectionState,
    RateLimitProtectionStatus,
)

logger = logging.getLogger(__name__)


def categorize_store_error(error: str) -> str:
    error_lower = error.lower()
    if "timeout" in error_lower or "timed out" in error_lower:
        return "timeout"
    if "connection" in error_lower or "refused" in error_lower:
        return "connection"
    if "auth" in error_lower:
        return "auth"
    return "other"


class RateLimitStateTracker:
    """Thread-safe tracker for rate limit protection status.

    Example:
        >>> tracker = RateLimitStateTracker(failure_threshold=1)
        >>> tracker.record_failure("Connection refused")
        >>> tracker.get_state().status
        <RateLimitProtectionStatus.DEGRADED: 'degraded'>
        >>> tracker.record_success()
        >>> tracker.get_state().status
        <RateLimitProtectionStatus.AVAILABLE: 'available'>
    """

    def __init__(self, failure_threshold: int = 1) -> None:
        """Initialize the state tracker.

        Args:
            failure_threshold: Consecutive store failures before moving from
                AVAILABLE to DEGRADED.
        """
        self._failure_threshold = failure_threshold
        self._lock = threading.Lock()
        self._state = RateLimitProtectionState(status=RateLimitProtectionStatus.AVAILABLE)
        update_rate_limiter_protection_status(RateLimitProtectionStatus.AVAILABLE.value)

    @property
    def is_degraded(self) -> bool:
        return self._state.status == RateLimitProtectionStatus.DEGRADED

    def get_state(self) -> RateLimitProtectionState:
        with self._lock:
            return RateLimitProtectionState(
                status=self._state.status,
                since=self._state.since,
                consecutive_failures=self._state.consecutive_failures,
                last_error=self._state.last_error,
            )

    def record_success(self) -> None:
        """Record a successful store round trip; recovers from DEGRADED."""
        with self._lock:
            self._state.consecutive_failures = 0
            self._state.last_error = None
            if self._state.status == RateLimitProtectionStatus.DEGRADED:
                self._transition(RateLimitProtectionStatus.AVAILABLE)

    def record_failure(self, error: str) -> None:
        """Record a failed store round trip."""
        with self._lock:
            self._state.consecutive_failures += 1
            self._state.last_error = error
            if (
                self._state.status == RateLimitProtectionStatus.AVAILABLE
                and self._state.consecutive_failures >= self._failure_threshold
            ):
                self._transition(RateLimitProtectionStatus.DEGRADED)
        track_rate_limiter_store_error(categorize_store_error(error))

    def _transition(self, to_status: RateLimitProtectionStatus) -> None:
        from_status = self._state.status
        self._state.status = to_status
        self._state.since = datetime.now(UTC)

        log_extra = {
            "from_status": from_status.value,
            "to_status": to_status.value,
            "consecutive_failures": self._state.consecutive_failures,
            "last_error": self._state.last_error,
        }
        if to_status == RateLimitProtectionStatus.DEGRADED:
            logger.warning("Rate limit store unavailable, enforcing limits locally", extra=log_extra)
        else:
            logger.info("Rate limit store recovered", extra=log_extra)

        update_rate_limiter_protection_status(to_status.value)
        track_rate_limiter_state_transition(from_status.value, to_status.value)


__all__ = ["RateLimitStateTracker", "categorize_store_error"]
