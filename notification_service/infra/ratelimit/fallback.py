"""In-process fixed-window counters used while the shared store is down.

Memory is bounded two ways: a periodic sweep drops expired windows, and a
hard cap evicts the oldest windows first when a new key would exceed it.
Counts are per process, so a fleet of N workers admits up to N times the
limit while degraded; that is the accepted cost of staying closed.
"""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Callable
import logging
import threading
import time

from notification_service.infra.metrics.tracking import track_fallback_eviction, update_fallback_entries

logger = logging.getLogger(__name__)


class LocalFallbackLimiter:
    """Fixed-window counter map with expiry sweep and oldest-first eviction.

    Args:
        max_entries: Hard cap on tracked keys.
        sweep_interval: Seconds between expired-entry sweeps.
        clock: Monotonic time source in seconds (injectable for tests).
    """

    def __init__(
        self,
        max_entries: int = 10_000,
        sweep_interval: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_entries = max_entries
        self._sweep_interval = sweep_interval
        self._clock = clock
        self._lock = threading.Lock()
        # key -> [count, expires_at]; insertion order == window start order
        self._entries: OrderedDict[str, list[float]] = OrderedDict()
        self._next_sweep = clock() + sweep_interval

    def __len__(self) -> int:
        return len(self._entries)

    def hit(self, key: str, window_seconds: int) -> tuple[int, int]:
        """Count one call against ``key`` and return ``(count, ttl_ms)``."""
        with self._lock:
            now = self._clock()
            if now >= self._next_sweep:
                self._sweep(now)

            entry = self._entries.get(key)
            if entry is None or entry[1] <= now:
                if entry is not None:
                    del self._entries[key]
                entry = [0, now + window_seconds]
                self._entries[key] = entry
                self._enforce_cap()

            entry[0] += 1
            update_fallback_entries(len(self._entries))
            return int(entry[0]), max(0, int((entry[1] - now) * 1000))

    def reset(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def sweep(self) -> int:
        """Drop expired entries now; returns how many were removed."""
        with self._lock:
            return self._sweep(self._clock())

    def _sweep(self, now: float) -> int:
        expired = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        self._next_sweep = now + self._sweep_interval
        track_fallback_eviction("expired", len(expired))
        if expired:
            logger.debug("Fallback limiter swept expired windows", extra={"evicted": len(expired)})
        return len(expired)

    def _enforce_cap(self) -> None:
        evicted = 0
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)
            evicted += 1
        if evicted:
            track_fallback_eviction("capacity", evicted)
            logger.warning(
                "Fallback limiter at capacity, evicted oldest windows",
                extra={"evicted": evicted, "max_entries": self._max_entries},
            )
