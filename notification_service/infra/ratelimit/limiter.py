"""Fixed-window rate limiter over the shared counter store.

Each call atomically increments ``<prefix>:<key>``; the first increment of
a window sets its expiry. A call is allowed iff the post-increment count is
within the limit.

When the store errors, the limiter degrades to :class:`LocalFallbackLimiter`
and keeps enforcing the same limit per process. If the fallback also fails
the call is denied: the limiter never fails open.
"""

from __future__ import annotations

import hashlib
import logging
import math
import time
from typing import TYPE_CHECKING

from notification_service.core.exceptions import RateLimitException
from notification_service.infra.metrics.tracking import track_rate_limit_check
from notification_service.infra.ratelimit.fallback import LocalFallbackLimiter
from notification_service.infra.ratelimit.tracker import RateLimitStateTracker

if TYPE_CHECKING:
    from notification_service.infra.cache import CounterStore

logger = logging.getLogger(__name__)


class RateLimiter:
    """Rate limiter with local fallback and fail-closed semantics.

    Attributes:
        store: Shared counter store, or None when Redis is not configured.
        fallback: In-process limiter used while the store is unavailable.
        tracker: Degradation state machine.
        key_prefix: Prefix for counter keys.
        default_limit: Default number of calls allowed per window.
        default_window: Default window length in seconds.

    Example:
        limiter = RateLimiter(store, default_limit=100, default_window=60)
        allowed, meta = await limiter.check_limit("user:42")
        if not allowed:
            print(f"Retry after {meta['retry_after']}s")
    """

    def __init__(
        self,
        store: CounterStore | None,
        *,
        fallback: LocalFallbackLimiter | None = None,
        tracker: RateLimitStateTracker | None = None,
        key_prefix: str = "ratelimit",
        default_limit: int = 100,
        default_window: int = 60,
    ) -> None:
        self.store = store
        self.fallback = fallback or LocalFallbackLimiter()
        self.tracker = tracker or RateLimitStateTracker()
        self.key_prefix = key_prefix
        self.default_limit = default_limit
        self.default_window = default_window

        if store is None:
            self.tracker.record_failure("shared store not configured")

    def _make_key(self, identifier: str) -> str:
        # Hash long identifiers to keep key size reasonable
        if len(identifier) > 50:
            identifier = hashlib.sha256(identifier.encode()).hexdigest()[:16]
        return f"{self.key_prefix}:{identifier}"

    async def check_limit(
        self,
        key: str,
        limit: int | None = None,
        window: int | None = None,
    ) -> tuple[bool, dict[str, int]]:
        """Count one call against ``key``.

        Args:
            key: Identifier such as ``user:<id>`` or ``queue:enqueue``.
            limit: Calls allowed per window (default_limit if None).
            window: Window length in seconds (default_window if None).

        Returns:
            Tuple of (allowed, metadata) where metadata contains ``limit``,
            ``remaining``, ``reset`` (unix seconds) and ``retry_after``.
        """
        limit = self.default_limit if limit is None else limit
        window = self.default_window if window is None else window
        counter_key = self._make_key(key)
        scope = key.split(":", 1)[0]
        now = time.time()

        source = "store"
        try:
            count, ttl_ms = await self._count_in_store(counter_key, window)
        except Exception as e:
            self.tracker.record_failure(str(e) or type(e).__name__)
            source = "fallback"
            try:
                count, ttl_ms = self.fallback.hit(counter_key, window)
            except Exception:
                logger.exception(
                    "Rate limit store and fallback both failed, denying request",
                    extra={"key": key, "store_error": str(e)},
                )
                track_rate_limit_check(scope, allowed=False, source="fail_closed")
                return False, {
                    "limit": limit,
                    "remaining": 0,
                    "reset": int(now + window),
                    "retry_after": window,
                }

        allowed = count <= limit
        ttl_seconds = ttl_ms / 1000
        metadata = {
            "limit": limit,
            "remaining": max(0, limit - count),
            "reset": int(now + ttl_seconds),
            "retry_after": 0 if allowed else max(1, math.ceil(ttl_seconds)),
        }

        track_rate_limit_check(scope, allowed=allowed, source=source)
        if not allowed:
            logger.warning(
                "Rate limit exceeded",
                extra={"key": key, "limit": limit, "window": window, "count": count, "source": source},
            )
        return allowed, metadata

    async def _count_in_store(self, counter_key: str, window: int) -> tuple[int, int]:
        if self.store is None:
            msg = "shared store not configured"
            raise ConnectionError(msg)
        result = await self.store.incr_with_expiry(counter_key, window * 1000)
        self.tracker.record_success()
        return result

    async def reset_limit(self, key: str) -> bool:
        """Clear the window for ``key`` in both the store and the fallback."""
        counter_key = self._make_key(key)
        self.fallback.reset(counter_key)
        if self.store is None:
            return True
        try:
            await self.store.delete(counter_key)
        except Exception:
            logger.exception("Failed to reset rate limit", extra={"key": key})
            return False
        logger.info("Rate limit reset", extra={"key": key})
        return True


async def check_rate_limit(
    limiter: RateLimiter,
    key: str,
    limit: int | None = None,
    window: int | None = None,
) -> dict[str, int]:
    """Check the limit and raise when it is exceeded.

    Raises:
        RateLimitException: If the limit is exceeded (or the limiter failed closed).
    """
    allowed, metadata = await limiter.check_limit(key, limit, window)
    if not allowed:
        raise RateLimitException(
            detail=f"Rate limit exceeded. Try again in {metadata['retry_after']} seconds",
            extra=metadata,
        )
    return metadata
