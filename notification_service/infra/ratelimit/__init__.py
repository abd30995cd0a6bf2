"""Rate limiting with shared-store counters and a local fallback."""

from .fallback import LocalFallbackLimiter
from .limiter import RateLimiter, check_rate_limit
from .status import RateLimitProtectionState, RateLimitProtectionStatus
from .tracker import RateLimitStateTracker

__all__ = [
    "LocalFallbackLimiter",
    "RateLimitProtectionState",
    "RateLimitProtectionStatus",
    "RateLimitStateTracker",
    "RateLimiter",
    "check_rate_limit",
]
