"""Composition root wiring the notification pipeline together.

Every long-lived object (engine, Redis store, HTTP client, queue, worker,
orchestrator) is created here once per process and attached to
``app.state.container``. Nothing in the feature modules builds its own
singletons.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING

import httpx

from notification_service.core.settings import (
    get_db_settings,
    get_notification_settings,
    get_provider_settings,
    get_rate_limit_settings,
    get_redis_settings,
)
from notification_service.features.notifications.channels import (
    ChannelRouter,
    DailyBudget,
    EmailDispatcher,
    InAppDispatcher,
    PushDispatcher,
    SmsDispatcher,
    WhatsAppDispatcher,
)
from notification_service.features.notifications.monitoring import MetricsCollector
from notification_service.features.notifications.queue import NotificationQueue
from notification_service.features.notifications.service import NotificationOrchestrator
from notification_service.features.notifications.worker import NotificationWorker
from notification_service.infra.auth import TokenBlacklist
from notification_service.infra.cache import RedisCounterStore
from notification_service.infra.database import create_engine, create_session_factory
from notification_service.infra.ratelimit import LocalFallbackLimiter, RateLimiter, RateLimitStateTracker

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

    from notification_service.core.settings import (
        DatabaseSettings,
        NotificationSettings,
        ProviderSettings,
        RateLimitSettings,
        RedisSettings,
    )
    from notification_service.infra.cache import CounterStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ServiceContainer:
    """Process-wide services shared by routes, the worker and scheduled jobs."""

    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    store: CounterStore | None
    tracker: RateLimitStateTracker
    limiter: RateLimiter
    blacklist: TokenBlacklist
    http_client: httpx.AsyncClient
    router: ChannelRouter
    queue: NotificationQueue
    worker: NotificationWorker
    orchestrator: NotificationOrchestrator
    collector: MetricsCollector
    notification_settings: NotificationSettings
    redis_store: RedisCounterStore | None = None

    async def aclose(self) -> None:
        """Release resources in reverse order of creation."""
        await self.orchestrator.aclose()
        await self.http_client.aclose()
        if self.redis_store is not None:
            await self.redis_store.disconnect()
        await self.engine.dispose()
        logger.info("Service container closed")


def build_router(
    settings: ProviderSettings,
    client: httpx.AsyncClient,
    budget: DailyBudget,
) -> ChannelRouter:
    return ChannelRouter(
        push=PushDispatcher(settings, client),
        email=EmailDispatcher(settings),
        sms=SmsDispatcher(settings, client),
        whatsapp=WhatsAppDispatcher(settings, client, budget),
        in_app=InAppDispatcher(),
    )


async def connect_store(settings: RedisSettings, tracker: RateLimitStateTracker) -> RedisCounterStore | None:
    """Connect to Redis, or return None and mark the tracker degraded."""
    if not settings.enabled:
        logger.info("Redis disabled; counters run on in-process fallbacks")
        return None
    store = RedisCounterStore(settings)
    try:
        await store.connect()
    except Exception as exc:
        logger.warning("Redis unavailable at startup; using in-process fallbacks", exc_info=True)
        tracker.record_failure(str(exc))
        return None
    return store


async def create_container(
    *,
    db_settings: DatabaseSettings | None = None,
    redis_settings: RedisSettings | None = None,
    notification_settings: NotificationSettings | None = None,
    rate_limit_settings: RateLimitSettings | None = None,
    provider_settings: ProviderSettings | None = None,
    store: CounterStore | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> ServiceContainer:
    """Build every service from settings.

    ``store`` and ``http_client`` may be injected (tests); otherwise Redis
    is connected from ``redis_settings`` and a fresh HTTP client is created.
    """
    db_settings = db_settings or get_db_settings()
    notification_settings = notification_settings or get_notification_settings()
    rate_limit_settings = rate_limit_settings or get_rate_limit_settings()
    provider_settings = provider_settings or get_provider_settings()

    tracker = RateLimitStateTracker(failure_threshold=rate_limit_settings.failure_threshold)
    redis_store: RedisCounterStore | None = None
    if store is None:
        redis_store = await connect_store(redis_settings or get_redis_settings(), tracker)
        store = redis_store

    engine = create_engine(db_settings)
    session_factory = create_session_factory(engine)

    limiter = RateLimiter(
        store,
        fallback=LocalFallbackLimiter(
            max_entries=rate_limit_settings.fallback_max_entries,
            sweep_interval=rate_limit_settings.fallback_sweep_interval,
        ),
        tracker=tracker,
        default_limit=rate_limit_settings.default_limit,
        default_window=rate_limit_settings.default_window,
    )
    blacklist = TokenBlacklist(store, tracker=tracker)

    client = http_client or httpx.AsyncClient(timeout=provider_settings.request_timeout)
    budget = DailyBudget(store, provider_settings.whatsapp_max_messages_per_day, tracker=tracker)
    router = build_router(provider_settings, client, budget)

    queue = NotificationQueue(notification_settings, limiter, store)
    worker = NotificationWorker(session_factory, queue, router, notification_settings)
    orchestrator = NotificationOrchestrator(session_factory, queue)
    collector = MetricsCollector(queue, notification_settings)

    logger.info(
        "Service container ready",
        extra={
            "store": "redis" if store is not None else "local",
            "channels": {str(k): v for k, v in router.availability().items()},
        },
    )
    return ServiceContainer(
        engine=engine,
        session_factory=session_factory,
        store=store,
        tracker=tracker,
        limiter=limiter,
        blacklist=blacklist,
        http_client=client,
        router=router,
        queue=queue,
        worker=worker,
        orchestrator=orchestrator,
        collector=collector,
        notification_settings=notification_settings,
        redis_store=redis_store,
    )
