"""Async engine and session factory construction.

The engine is owned by the service container rather than created at import
time, so tests and workers can build their own against any DSN.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from notification_service.core.database import Base

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from notification_service.core.settings import DatabaseSettings

logger = logging.getLogger(__name__)


def create_engine(settings: DatabaseSettings) -> AsyncEngine:
    """Create the async engine described by ``settings``."""
    kwargs = settings.engine_kwargs()
    if settings.is_sqlite and ":memory:" in settings.dsn:
        # Every pooled connection would otherwise open its own empty database
        kwargs["poolclass"] = StaticPool
    engine = create_async_engine(settings.dsn, **kwargs)
    logger.info(
        "Database engine created",
        extra={"dialect": engine.dialect.name, "sqlite": settings.is_sqlite},
    )
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@asynccontextmanager
async def session_scope(factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    """Yield a session that commits on success and rolls back on error.

    Example:
        async with session_scope(container.session_factory) as session:
            await queue.clean(session, age_hours=24)
    """
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def create_tables(engine: AsyncEngine) -> None:
    """Create every mapped table that does not exist yet."""
    # Import models so they register on Base.metadata
    from notification_service.features.notifications import models as _notification_models  # noqa: F401
    from notification_service.features.users import models as _user_models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ensured")
