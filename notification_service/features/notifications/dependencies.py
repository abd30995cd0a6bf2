"""FastAPI dependencies for the notification routes.

Services come from the :class:`ServiceContainer` on ``app.state``; a
request never constructs its own.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from notification_service.core.exceptions import ServiceUnavailableException, UnauthorizedException
from notification_service.features.notifications.monitoring import MetricsCollector
from notification_service.features.notifications.queue import NotificationQueue
from notification_service.features.notifications.service import NotificationOrchestrator
from notification_service.infra.database import session_scope
from notification_service.infra.ratelimit import check_rate_limit

if TYPE_CHECKING:
    from notification_service.app.container import ServiceContainer


def get_container(request: Request) -> ServiceContainer:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise ServiceUnavailableException("Service is starting up")
    return container


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    """Request-scoped session; commits when the handler returns normally."""
    async with session_scope(get_container(request).session_factory) as session:
        yield session


def get_orchestrator(request: Request) -> NotificationOrchestrator:
    return get_container(request).orchestrator


def get_queue(request: Request) -> NotificationQueue:
    return get_container(request).queue


def get_collector(request: Request) -> MetricsCollector:
    return get_container(request).collector


async def get_current_user_id(
    request: Request,
    x_user_id: Annotated[str | None, Header()] = None,
    authorization: Annotated[str | None, Header()] = None,
) -> str:
    """Identify the caller from ``X-User-Id`` and reject revoked bearer tokens.

    Raises:
        UnauthorizedException: Missing user id or revoked token.
        ServiceUnavailableException: Revocation status could not be read.
    """
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
        if token and await get_container(request).blacklist.is_revoked(token):
            raise UnauthorizedException("Token has been revoked", type="token-revoked")
    if not x_user_id or not x_user_id.strip():
        raise UnauthorizedException("X-User-Id header is required")
    return x_user_id.strip()


async def enforce_user_rate_limit(
    request: Request,
    user_id: Annotated[str, Depends(get_current_user_id)],
) -> str:
    """Per-user request budget; raises RateLimitException when exceeded."""
    await check_rate_limit(get_container(request).limiter, f"user:{user_id}")
    return user_id


SessionDep = Annotated[AsyncSession, Depends(get_session)]
OrchestratorDep = Annotated[NotificationOrchestrator, Depends(get_orchestrator)]
QueueDep = Annotated[NotificationQueue, Depends(get_queue)]
CollectorDep = Annotated[MetricsCollector, Depends(get_collector)]
CurrentUserIdDep = Annotated[str, Depends(enforce_user_rate_limit)]
