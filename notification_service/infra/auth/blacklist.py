"""Revoked-token registry.

A revoked token id is written to the shared store with a TTL equal to the
token's remaining lifetime, so entries disappear on their own once the
token could no longer be presented anyway and no session scan is needed.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
import logging
import math
import threading
import time
from typing import TYPE_CHECKING

from notification_service.core.exceptions import ServiceUnavailableException

if TYPE_CHECKING:
    from notification_service.infra.cache import CounterStore
    from notification_service.infra.ratelimit import RateLimitStateTracker

logger = logging.getLogger(__name__)


class TokenBlacklist:
    """Token revocation backed by the shared store.

    While the store is unreachable, revocations are kept in a local TTL map
    and lookups consult both. A lookup that cannot reach the store fails
    closed with :class:`ServiceUnavailableException` rather than accepting a
    token whose revocation it cannot see.

    Example:
        blacklist = TokenBlacklist(store)
        await blacklist.revoke(claims["jti"], expires_at=claims_exp)
        if await blacklist.is_revoked(claims["jti"]):
            raise UnauthorizedException("Token has been revoked")
    """

    def __init__(
        self,
        store: CounterStore | None,
        *,
        tracker: RateLimitStateTracker | None = None,
        key_prefix: str = "blacklist",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._tracker = tracker
        self._key_prefix = key_prefix
        self._clock = clock
        self._lock = threading.Lock()
        self._local: dict[str, float] = {}

    def _key(self, token_id: str) -> str:
        return f"{self._key_prefix}:{token_id}"

    def _remaining_seconds(self, expires_at: datetime | float) -> int:
        expiry = expires_at.timestamp() if isinstance(expires_at, datetime) else float(expires_at)
        return max(0, math.ceil(expiry - self._clock()))

    async def revoke(self, token_id: str, expires_at: datetime | float) -> bool:
        """Blacklist ``token_id`` until ``expires_at``.

        Returns:
            False when the token has already expired (nothing to store).
        """
        ttl = self._remaining_seconds(expires_at)
        if ttl <= 0:
            return False
        self._sweep_local()

        if self._store is not None:
            try:
                await self._store.set(self._key(token_id), "1", ttl_seconds=ttl)
            except Exception as e:
                self._record_store_failure(e)
            else:
                logger.info("Token revoked", extra={"token_id": token_id, "ttl_seconds": ttl})
                return True

        with self._lock:
            self._local[token_id] = self._clock() + ttl
        logger.warning(
            "Token revoked in local blacklist only",
            extra={"token_id": token_id, "ttl_seconds": ttl},
        )
        return True

    async def is_revoked(self, token_id: str) -> bool:
        """Check ``token_id`` against the local map, then the shared store.

        Raises:
            ServiceUnavailableException: The shared store could not be read.
        """
        if self._is_locally_revoked(token_id):
            return True
        if self._store is None:
            return False
        try:
            return await self._store.exists(self._key(token_id))
        except Exception as e:
            self._record_store_failure(e)
            raise ServiceUnavailableException("Token revocation status unavailable") from e

    def _is_locally_revoked(self, token_id: str) -> bool:
        with self._lock:
            expires_at = self._local.get(token_id)
            if expires_at is None:
                return False
            if expires_at <= self._clock():
                del self._local[token_id]
                return False
            return True

    def _sweep_local(self) -> None:
        now = self._clock()
        with self._lock:
            for token_id in [t for t, expires_at in self._local.items() if expires_at <= now]:
                del self._local[token_id]

    def _record_store_failure(self, error: Exception) -> None:
        logger.warning("Token blacklist store unavailable", extra={"error": str(error)})
        if self._tracker is not None:
            self._tracker.record_failure(str(error) or type(error).__name__)

