"""HTTP API for notifications.

Two routers:
- ``router``: recipient endpoints under ``/notifications``
- ``admin_router``: operator endpoints under ``/admin/notifications``
"""

from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query, status
from fastapi.responses import JSONResponse

from notification_service.core.exceptions import BadRequestException
from notification_service.features.notifications.dependencies import (  # noqa: TC001
    CollectorDep,
    CurrentUserIdDep,
    OrchestratorDep,
    QueueDep,
    SessionDep,
)
from notification_service.features.notifications.enums import NotificationStatus
from notification_service.features.notifications.schemas import (
    BroadcastRequest,
    BroadcastResponse,
    CleanQueueRequest,
    CleanQueueResponse,
    DeviceRegisterRequest,
    DeviceTokenResponse,
    HealthStatus,
    MarkAllReadResponse,
    MetricsSnapshot,
    NotificationListResponse,
    NotificationResponse,
    NotificationStats,
    PreferenceResponse,
    PreferenceUpdate,
    QueueControlResponse,
    QueueStats,
    SendNotificationRequest,
    SendResult,
    UnreadCountResponse,
)
from notification_service.infra.logging import get_lazy_logger

router = APIRouter(prefix="/notifications", tags=["notifications"])
admin_router = APIRouter(prefix="/admin/notifications", tags=["notifications-admin"])

logger = logging.getLogger(__name__)
lazy_logger = get_lazy_logger(__name__)


# =============================================================================
# Devices
# =============================================================================


@router.post(
    "/devices",
    response_model=DeviceTokenResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a push device",
)
async def register_device(
    payload: DeviceRegisterRequest,
    user_id: CurrentUserIdDep,
    session: SessionDep,
    orchestrator: OrchestratorDep,
) -> DeviceTokenResponse:
    device = await orchestrator.register_device(session, user_id, payload.token, payload.platform)
    return DeviceTokenResponse.model_validate(device)


@router.delete(
    "/devices/{token}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Unregister a push device",
)
async def unregister_device(
    token: str,
    user_id: CurrentUserIdDep,
    session: SessionDep,
    orchestrator: OrchestratorDep,
) -> None:
    await orchestrator.unregister_device(session, user_id, token)


# =============================================================================
# Inbox
# =============================================================================


@router.get(
    "/",
    response_model=NotificationListResponse,
    summary="List the caller's notifications",
    description="Newest first. ``limit`` is capped at 100.",
)
async def list_notifications(
    user_id: CurrentUserIdDep,
    session: SessionDep,
    orchestrator: OrchestratorDep,
    limit: Annotated[int, Query(ge=1)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
    unread_only: bool = False,
    type: str | None = None,  # noqa: A002
    status_filter: Annotated[NotificationStatus | None, Query(alias="status")] = None,
) -> NotificationListResponse:
    lazy_logger.debug(lambda: f"list_notifications: user={user_id} limit={limit} offset={offset}")
    return await orchestrator.get_user_notifications(
        session,
        user_id,
        limit=limit,
        offset=offset,
        unread_only=unread_only,
        type_=type,
        status=status_filter,
    )


@router.get("/unread-count", response_model=UnreadCountResponse, summary="Count unread notifications")
async def unread_count(
    user_id: CurrentUserIdDep,
    session: SessionDep,
    orchestrator: OrchestratorDep,
) -> UnreadCountResponse:
    return UnreadCountResponse(count=await orchestrator.get_unread_count(session, user_id))


@router.get("/stats", response_model=NotificationStats, summary="Delivery statistics for the caller")
async def user_stats(
    user_id: CurrentUserIdDep,
    session: SessionDep,
    orchestrator: OrchestratorDep,
) -> NotificationStats:
    return await orchestrator.get_stats(session, user_id)


@router.get("/preferences", response_model=PreferenceResponse, summary="Get channel preferences")
async def get_preferences(
    user_id: CurrentUserIdDep,
    session: SessionDep,
    orchestrator: OrchestratorDep,
) -> PreferenceResponse:
    preference = await orchestrator.get_preferences(session, user_id)
    return PreferenceResponse.model_validate(preference)


@router.put("/preferences", response_model=PreferenceResponse, summary="Update channel preferences")
async def update_preferences(
    payload: PreferenceUpdate,
    user_id: CurrentUserIdDep,
    session: SessionDep,
    orchestrator: OrchestratorDep,
) -> PreferenceResponse:
    preference = await orchestrator.update_preferences(session, user_id, payload)
    return PreferenceResponse.model_validate(preference)


@router.put("/read-all", response_model=MarkAllReadResponse, summary="Mark every notification read")
async def mark_all_read(
    user_id: CurrentUserIdDep,
    session: SessionDep,
    orchestrator: OrchestratorDep,
) -> MarkAllReadResponse:
    return MarkAllReadResponse(updated=await orchestrator.mark_all_as_read(session, user_id))


@router.get(
    "/{notification_id}",
    response_model=NotificationResponse,
    summary="Get one notification",
    responses={403: {"description": "Owned by another user"}, 404: {"description": "Not found"}},
)
async def get_notification(
    notification_id: UUID,
    user_id: CurrentUserIdDep,
    session: SessionDep,
    orchestrator: OrchestratorDep,
) -> NotificationResponse:
    notification = await orchestrator.get_notification(session, user_id, notification_id)
    return NotificationResponse.model_validate(notification)


@router.put("/{notification_id}/read", response_model=NotificationResponse, summary="Mark as read")
async def mark_read(
    notification_id: UUID,
    user_id: CurrentUserIdDep,
    session: SessionDep,
    orchestrator: OrchestratorDep,
) -> NotificationResponse:
    notification = await orchestrator.mark_as_read(session, user_id, notification_id)
    return NotificationResponse.model_validate(notification)


@router.put("/{notification_id}/clicked", response_model=NotificationResponse, summary="Mark as clicked")
async def mark_clicked(
    notification_id: UUID,
    user_id: CurrentUserIdDep,
    session: SessionDep,
    orchestrator: OrchestratorDep,
) -> NotificationResponse:
    notification = await orchestrator.mark_as_clicked(session, user_id, notification_id)
    return NotificationResponse.model_validate(notification)


@router.delete(
    "/{notification_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a notification",
)
async def delete_notification(
    notification_id: UUID,
    user_id: CurrentUserIdDep,
    session: SessionDep,
    orchestrator: OrchestratorDep,
) -> None:
    await orchestrator.delete_notification(session, user_id, notification_id)


# =============================================================================
# Administration
# =============================================================================


@admin_router.post(
    "/test",
    response_model=SendResult,
    summary="Send a test notification",
    description="Runs the full send path; domain errors come back as 400 with ``success: false``.",
)
async def send_test_notification(
    payload: SendNotificationRequest,
    session: SessionDep,
    orchestrator: OrchestratorDep,
) -> SendResult | JSONResponse:
    result = await orchestrator.send_test(session, payload)
    if not result.success:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"success": False, "error": result.error},
        )
    return result


@admin_router.get("/queue/stats", response_model=QueueStats, summary="Job counts by state")
async def queue_stats(session: SessionDep, queue: QueueDep) -> QueueStats:
    return await queue.get_stats(session)


@admin_router.post("/queue/pause", response_model=QueueControlResponse, summary="Stop leasing jobs")
async def pause_queue(queue: QueueDep) -> QueueControlResponse:
    await queue.pause()
    return QueueControlResponse(paused=True)


@admin_router.post("/queue/resume", response_model=QueueControlResponse, summary="Resume leasing jobs")
async def resume_queue(queue: QueueDep) -> QueueControlResponse:
    await queue.resume()
    return QueueControlResponse(paused=False)


@admin_router.post("/queue/clean", response_model=CleanQueueResponse, summary="Purge finished jobs")
async def clean_queue(payload: CleanQueueRequest, session: SessionDep, queue: QueueDep) -> CleanQueueResponse:
    removed = await queue.clean(session, payload.age_hours)
    return CleanQueueResponse(removed=removed, age_hours=payload.age_hours)


@admin_router.post(
    "/broadcast",
    response_model=BroadcastResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Announce to every active user",
)
async def broadcast(payload: BroadcastRequest, orchestrator: OrchestratorDep) -> BroadcastResponse:
    if not payload.title or not payload.body:
        raise BadRequestException("title and body are required")
    orchestrator.send_system_announcement(payload.title, payload.body, payload.data)
    logger.info("System announcement scheduled", extra={"title": payload.title})
    return BroadcastResponse(accepted=True, message="Announcement is being delivered in the background")


@admin_router.get("/metrics", response_model=MetricsSnapshot, summary="Delivery metrics for a window")
async def delivery_metrics(
    session: SessionDep,
    collector: CollectorDep,
    period_hours: Annotated[int, Query(ge=1, le=24 * 30)] = 1,
) -> MetricsSnapshot:
    return await collector.collect_metrics(session, period_hours)


@admin_router.get("/health", response_model=HealthStatus, summary="Pipeline health")
async def pipeline_health(session: SessionDep, collector: CollectorDep) -> HealthStatus | JSONResponse:
    health = await collector.check_health(session)
    if not health.healthy:
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=health.model_dump())
    return health
