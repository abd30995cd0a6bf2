"""Shared counter store backed by Redis.

Provides the small key/value surface the pipeline needs:
- atomic increment-with-expiry (rate limits, daily budgets)
- GET / SET with TTL / DEL / EXISTS (blacklist, pause flag)
- pattern scan (admin inspection and resets)

Counter mutations run as a single Lua script so a crash can never leave a
key incremented without its TTL.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol, cast

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from notification_service.utils.retry import retry

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from notification_service.core.settings import RedisSettings

logger = logging.getLogger(__name__)

# INCR then PEXPIRE on the first hit of the window; returns [count, pttl]
_INCR_WITH_EXPIRY = """
local current = redis.call('INCR', KEYS[1])
if current == 1 then
    redis.call('PEXPIRE', KEYS[1], ARGV[1])
end
local ttl = redis.call('PTTL', KEYS[1])
if ttl < 0 then
    redis.call('PEXPIRE', KEYS[1], ARGV[1])
    ttl = tonumber(ARGV[1])
end
return {current, ttl}
"""


class CounterStore(Protocol):
    """Operations the rate limiter, blacklist and budgets rely on."""

    async def incr_with_expiry(self, key: str, window_ms: int) -> tuple[int, int]: ...

    async def decr(self, key: str) -> int: ...

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None: ...

    async def delete(self, *keys: str) -> int: ...

    async def exists(self, key: str) -> bool: ...

    async def scan(self, pattern: str) -> list[str]: ...


class RedisCounterStore:
    """Redis implementation of :class:`CounterStore`.

    Keys are namespaced with ``RedisSettings.key_prefix``; callers pass bare
    keys and get bare keys back from :meth:`scan`.

    Example:
        store = RedisCounterStore(get_redis_settings())
        await store.connect()
        count, ttl_ms = await store.incr_with_expiry("ratelimit:user:42", 60_000)
    """

    def __init__(self, settings: RedisSettings, client: Redis | None = None) -> None:
        self._settings = settings
        self._prefix = settings.key_prefix
        self._pool: ConnectionPool | None = None
        self._client: Redis | None = client

    @retry(
        max_attempts=3,
        initial_delay=0.5,
        max_delay=5.0,
        exceptions=(RedisConnectionError, RedisTimeoutError, OSError),
    )
    async def connect(self) -> None:
        """Create the pool and verify connectivity with PING."""
        logger.info(
            "Connecting to Redis",
            extra={
                "host": self._settings.host,
                "port": self._settings.port,
                "db": self._settings.db,
                "max_connections": self._settings.max_connections,
            },
        )
        self._pool = ConnectionPool.from_url(
            self._settings.url, **self._settings.connection_pool_kwargs(),
        )
        self._client = Redis(connection_pool=self._pool)
        await cast("Awaitable[bool]", self._client.ping())
        logger.info("Redis connection established")

    async def disconnect(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        if self._pool is not None:
            await self._pool.aclose()
            self._pool = None
        logger.info("Redis connection closed")

    @property
    def client(self) -> Redis:
        """The connected client.

        Raises:
            RuntimeError: If not connected.
        """
        if self._client is None:
            msg = "Redis client not connected. Call connect() first."
            raise RuntimeError(msg)
        return self._client

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def incr_with_expiry(self, key: str, window_ms: int) -> tuple[int, int]:
        """Atomically increment ``key`` and return ``(count, ttl_ms)``."""
        result: Any = await self.client.eval(_INCR_WITH_EXPIRY, 1, self._key(key), window_ms)
        count, ttl_ms = result
        return int(count), int(ttl_ms)

    async def decr(self, key: str) -> int:
        """Decrement ``key``, keeping its expiry."""
        return int(await self.client.decr(self._key(key)))

    async def get(self, key: str) -> str | None:
        return await self.client.get(self._key(key))

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        if ttl_seconds is not None and ttl_seconds > 0:
            await self.client.set(self._key(key), value, ex=ttl_seconds)
        else:
            await self.client.set(self._key(key), value)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self.client.delete(*(self._key(k) for k in keys)))

    async def exists(self, key: str) -> bool:
        return bool(await self.client.exists(self._key(key)))

    async def scan(self, pattern: str) -> list[str]:
        """Return bare keys matching ``pattern`` (SCAN, never KEYS)."""
        found: list[str] = []
        async for raw in self.client.scan_iter(match=self._key(pattern), count=200):
            key = raw.decode() if isinstance(raw, bytes) else raw
            found.append(key.removeprefix(self._prefix))
        return found

    async def ping(self) -> bool:
        try:
            return bool(await cast("Awaitable[bool]", self.client.ping()))
        except (RedisConnectionError, RedisTimeoutError, RuntimeError):
            return False
