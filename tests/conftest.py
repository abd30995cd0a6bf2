"""Pytest configuration and shared fixtures.

Organization:
    - Environment: settings that keep tests off external infrastructure
    - Database Fixtures: in-memory SQLite engine, session factory, session
    - Store Fixtures: in-memory CounterStore with failure injection
    - Pipeline Fixtures: settings, limiter, queue, fake dispatchers, router
    - Data Fixtures: user and preference factories
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from dataclasses import dataclass, field
import os
import time
from typing import TYPE_CHECKING, Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

# Keep tests off Redis, RabbitMQ and any on-disk database
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("DB_DSN", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APP_RUN_WORKER", "false")
os.environ.setdefault("APP_RUN_SCHEDULER", "false")
os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("LOG_JSON_LOGS", "false")

from notification_service.core.database import Base  # noqa: E402
from notification_service.core.settings import NotificationSettings  # noqa: E402
from notification_service.features.notifications.channels import (  # noqa: E402
    ChannelRouter,
    DeliveryResult,
    DeliveryTarget,
    MessageContent,
)
from notification_service.features.notifications.enums import Channel  # noqa: E402
from notification_service.features.notifications.models import NotificationPreference  # noqa: E402
from notification_service.features.notifications.queue import NotificationQueue  # noqa: E402
from notification_service.features.users.models import User  # noqa: E402
from notification_service.infra.database import create_session_factory  # noqa: E402
from notification_service.infra.ratelimit import RateLimiter  # noqa: E402

# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine]:
    """In-memory SQLite shared by every session of the test.

    StaticPool keeps a single connection so the queue, the worker and the
    test body all see the same database.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(db_engine)


@pytest.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession]:
    """Session for arranging and asserting; commit before handing off to the worker."""
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.rollback()


# ============================================================================
# Store Fixtures
# ============================================================================


class FakeCounterStore:
    """In-memory :class:`CounterStore`; set ``fail = True`` to simulate an outage."""

    def __init__(self) -> None:
        self.counters: dict[str, tuple[int, float]] = {}
        self.values: dict[str, str] = {}
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            msg = "Connection refused"
            raise ConnectionError(msg)

    async def incr_with_expiry(self, key: str, window_ms: int) -> tuple[int, int]:
        self._check()
        now = time.monotonic()
        count, expires_at = self.counters.get(key, (0, now + window_ms / 1000))
        if expires_at <= now:
            count, expires_at = 0, now + window_ms / 1000
        count += 1
        self.counters[key] = (count, expires_at)
        return count, int((expires_at - now) * 1000)

    async def decr(self, key: str) -> int:
        self._check()
        count, expires_at = self.counters.get(key, (0, time.monotonic()))
        self.counters[key] = (count - 1, expires_at)
        return count - 1

    async def get(self, key: str) -> str | None:
        self._check()
        if key in self.counters:
            return str(self.counters[key][0])
        return self.values.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        self._check()
        self.values[key] = value

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            removed += int(self.values.pop(key, None) is not None)
            removed += int(self.counters.pop(key, None) is not None)
        return removed

    async def exists(self, key: str) -> bool:
        self._check()
        return key in self.values or key in self.counters

    async def scan(self, pattern: str) -> list[str]:
        self._check()
        prefix = pattern.rstrip("*")
        return [key for key in [*self.values, *self.counters] if key.startswith(prefix)]


@pytest.fixture
def store() -> FakeCounterStore:
    return FakeCounterStore()


# ============================================================================
# Pipeline Fixtures
# ============================================================================


@dataclass
class FakeDispatcher:
    """Dispatcher returning scripted results and recording every call.

    ``results`` is consumed front to back; once empty, ``default`` is used.
    """

    channel: Channel
    default: DeliveryResult = field(default_factory=lambda: DeliveryResult.ok("msg-1", latency_ms=5))
    results: list[DeliveryResult | Exception] = field(default_factory=list)
    calls: list[tuple[DeliveryTarget, MessageContent]] = field(default_factory=list)
    available: bool = True

    def is_available(self) -> bool:
        return self.available

    async def send(self, target: DeliveryTarget, content: MessageContent) -> DeliveryResult:
        self.calls.append((target, content))
        outcome = self.results.pop(0) if self.results else self.default
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def notification_settings() -> NotificationSettings:
    return NotificationSettings(
        max_attempts=3,
        backoff_base_seconds=2.0,
        backoff_max_seconds=60.0,
        backoff_jitter=False,
        batch_size=10,
        fairness_interval=5,
        enqueue_rate_limit=1000,
        enqueue_rate_window=60,
    )


@pytest.fixture
def limiter(store: FakeCounterStore) -> RateLimiter:
    return RateLimiter(store, default_limit=100, default_window=60)


@pytest.fixture
def queue(notification_settings: NotificationSettings, limiter: RateLimiter, store: FakeCounterStore) -> NotificationQueue:
    return NotificationQueue(notification_settings, limiter, store)


@pytest.fixture
def dispatchers() -> dict[Channel, FakeDispatcher]:
    return {channel: FakeDispatcher(channel) for channel in Channel}


@pytest.fixture
def channel_router(dispatchers: dict[Channel, FakeDispatcher]) -> ChannelRouter:
    return ChannelRouter(
        push=dispatchers[Channel.PUSH],  # type: ignore[arg-type]
        email=dispatchers[Channel.EMAIL],  # type: ignore[arg-type]
        sms=dispatchers[Channel.SMS],  # type: ignore[arg-type]
        whatsapp=dispatchers[Channel.WHATSAPP],  # type: ignore[arg-type]
        in_app=dispatchers[Channel.IN_APP],  # type: ignore[arg-type]
    )


# ============================================================================
# Data Fixtures
# ============================================================================


@pytest.fixture
def make_user(session_factory: async_sessionmaker[AsyncSession]) -> Callable[..., Any]:
    """Factory committing a user (and optional preferences) in its own transaction.

    Example:
        user = await make_user("u-1", preference={"sms_enabled": True})
    """

    async def _make(
        user_id: str = "user-1",
        *,
        email: str | None = "user@example.com",
        first_name: str | None = "Ana",
        is_active: bool = True,
        preference: dict[str, Any] | None = None,
    ) -> User:
        async with session_factory() as session:
            user = User(id=user_id, email=email, first_name=first_name, is_active=is_active)
            session.add(user)
            if preference is not None:
                session.add(NotificationPreference(user_id=user_id, **preference))
            await session.commit()
            return user

    return _make
