"""Helper functions that record business metrics."""

from __future__ import annotations

import logging
from typing import Any

from notification_service.infra.metrics import business

logger = logging.getLogger(__name__)


def track_error(
    error_type: str,
    endpoint: str,
    status_code: int,
    extra: dict[str, Any] | None = None,
) -> None:
    """Track an application error rendered to a client.

    Example:
        track_error("validation-error", "/api/v1/admin/notifications/test", 422)
    """
    business.errors_total.labels(
        error_type=error_type,
        endpoint=endpoint,
        status_code=str(status_code),
    ).inc()
    logger.debug(
        f"Tracked error: {error_type}",
        extra={"endpoint": endpoint, "status_code": status_code, **(extra or {})},
    )


def track_unhandled_exception(exception_type: str, endpoint: str) -> None:
    business.exceptions_unhandled_total.labels(
        exception_type=exception_type, endpoint=endpoint,
    ).inc()


def track_rate_limit_check(scope: str, allowed: bool, source: str = "store") -> None:
    """Record one limiter decision.

    Args:
        scope: First segment of the limited key (``user``, ``queue``...).
        allowed: Whether the call was admitted.
        source: Which path decided: ``store``, ``fallback`` or ``fail_closed``.
    """
    business.rate_limit_checks_total.labels(
        scope=scope, result="allowed" if allowed else "denied",
    ).inc()
    if not allowed:
        business.rate_limit_hits_total.labels(scope=scope, source=source).inc()


def update_rate_limiter_protection_status(status: str) -> None:
    status_map = {"available": 1.0, "degraded": 0.5}
    business.rate_limiter_protection_status.set(status_map.get(status, 0.0))


def track_rate_limiter_state_transition(from_state: str, to_state: str) -> None:
    business.rate_limiter_state_transitions_total.labels(
        from_state=from_state, to_state=to_state,
    ).inc()


def track_rate_limiter_store_error(error_type: str) -> None:
    business.rate_limiter_store_errors_total.labels(error_type=error_type).inc()


def update_fallback_entries(count: int) -> None:
    business.rate_limiter_fallback_entries.set(count)


def track_fallback_eviction(reason: str, count: int = 1) -> None:
    if count > 0:
        business.rate_limiter_fallback_evictions_total.labels(reason=reason).inc(count)
