"""Cross-cutting business metrics: API errors and rate limiting."""

from __future__ import annotations

from prometheus_client import Counter, Gauge

from notification_service.infra.metrics.prometheus import REGISTRY

# ============================================================================
# Error and Exception Metrics
# ============================================================================

errors_total = Counter(
    "errors_total",
    "Total number of errors by type and endpoint",
    ["error_type", "endpoint", "status_code"],
    registry=REGISTRY,
)

exceptions_unhandled_total = Counter(
    "exceptions_unhandled_total",
    "Total number of unhandled exceptions",
    ["exception_type", "endpoint"],
    registry=REGISTRY,
)

# ============================================================================
# Rate Limiting Metrics
# ============================================================================

rate_limit_hits_total = Counter(
    "rate_limit_hits_total",
    "Total number of times rate limit was hit",
    ["scope", "source"],  # source: store, fallback, fail_closed
    registry=REGISTRY,
)

rate_limit_checks_total = Counter(
    "rate_limit_checks_total",
    "Total number of rate limit checks performed",
    ["scope", "result"],  # result: allowed, denied
    registry=REGISTRY,
)

rate_limiter_protection_status = Gauge(
    "rate_limiter_protection_status",
    "Rate limiter protection status (1=available, 0.5=degraded)",
    registry=REGISTRY,
)

rate_limiter_state_transitions_total = Counter(
    "rate_limiter_state_transitions_total",
    "Total number of rate limiter state transitions",
    ["from_state", "to_state"],
    registry=REGISTRY,
)

rate_limiter_store_errors_total = Counter(
    "rate_limiter_store_errors_total",
    "Shared store errors seen by the rate limiter",
    ["error_type"],  # timeout, connection, auth, other
    registry=REGISTRY,
)

rate_limiter_fallback_entries = Gauge(
    "rate_limiter_fallback_entries",
    "Counters currently held by the in-process fallback limiter",
    registry=REGISTRY,
)

rate_limiter_fallback_evictions_total = Counter(
    "rate_limiter_fallback_evictions_total",
    "Fallback counters evicted",
    ["reason"],  # expired, capacity
    registry=REGISTRY,
)
