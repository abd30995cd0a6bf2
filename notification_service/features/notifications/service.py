"""Notification orchestrator: validation, channel selection and the read API.

The orchestrator never talks to a provider. It persists the notification,
hands delivery to the queue and answers the recipient-facing queries; the
worker does the rest.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any, assert_never
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from notification_service.core.database import NotFoundError, utcnow
from notification_service.core.exceptions import (
    AppException,
    ForbiddenException,
    InactiveAccountException,
    NoChannelsAvailableException,
    NotFoundException,
    ValidationException,
)
from notification_service.core.services import BaseService
from notification_service.features.notifications.enums import (
    Channel,
    NotificationStatus,
    NotificationType,
    Priority,
)
from notification_service.features.notifications.metrics import (
    notification_created_total,
    notification_rejected_total,
)
from notification_service.features.notifications.models import (
    DeviceToken,
    Notification,
    NotificationPreference,
)
from notification_service.features.notifications.repository import (
    DeviceTokenRepository,
    NotificationRepository,
    PreferenceRepository,
)
from notification_service.features.notifications.schemas import (
    BulkSendResult,
    NotificationListResponse,
    NotificationResponse,
    NotificationStats,
    PaginationMeta,
    PreferenceUpdate,
    SendNotificationRequest,
    SendResult,
)
from notification_service.features.users.repository import UserRepository
from notification_service.infra.database import session_scope

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from notification_service.features.notifications.enums import DevicePlatform
    from notification_service.features.notifications.queue import NotificationQueue

MAX_TITLE_LENGTH = 255
MAX_BODY_LENGTH = 5000
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50

_BATCH_STATUS_MESSAGES = {
    "IN_TRANSIT": "Your batch is in transit",
    "ARRIVED": "Your batch has arrived at its destination",
    "DELIVERED": "Your batch has been delivered",
    "REJECTED": "Your batch has been rejected",
}

_ORDER_STATUS_MESSAGES = {
    "CONFIRMED": "Your order has been confirmed",
    "SHIPPED": "Your order has been shipped",
    "DELIVERED": "Your order has been delivered",
    "CANCELLED": "Your order has been cancelled",
}


def validate_request(request: SendNotificationRequest) -> None:
    """Check a send request without touching any I/O.

    Raises:
        ValidationException: On the first failing rule.
    """
    if not request.user_id.strip():
        raise ValidationException("userId is required", extra={"field": "user_id"})
    if not request.type.strip():
        raise ValidationException("type is required", extra={"field": "type"})
    if not request.title.strip():
        raise ValidationException("title is required", extra={"field": "title"})
    if len(request.title) > MAX_TITLE_LENGTH:
        raise ValidationException(
            f"title must be less than {MAX_TITLE_LENGTH} characters",
            extra={"field": "title", "length": len(request.title)},
        )
    if not request.body.strip():
        raise ValidationException("body is required", extra={"field": "body"})
    if len(request.body) > MAX_BODY_LENGTH:
        raise ValidationException(
            f"body must be less than {MAX_BODY_LENGTH} characters",
            extra={"field": "body", "length": len(request.body)},
        )
    if not request.channels:
        raise ValidationException("At least one channel is required", extra={"field": "channels"})


def channel_enabled(preference: NotificationPreference, channel: Channel) -> bool:
    match channel:
        case Channel.PUSH:
            return preference.push_enabled
        case Channel.EMAIL:
            return preference.email_enabled
        case Channel.SMS:
            return preference.sms_enabled
        case Channel.WHATSAPP:
            return preference.whatsapp_enabled
        case Channel.IN_APP:
            # The inbox is always written; the flag only hides it client side
            return True
        case _:
            assert_never(channel)


def allowed_channels(
    preference: NotificationPreference | None,
    requested: Iterable[Channel],
) -> list[Channel]:
    """Requested channels the user accepts, in request order without duplicates."""
    ordered = list(dict.fromkeys(Channel(c) for c in requested))
    if preference is None:
        return ordered
    return [channel for channel in ordered if channel_enabled(preference, channel)]


def _rate(numerator: int, denominator: int) -> float:
    if denominator == 0:
        return 0.0
    return round(numerator / denominator * 100, 2)


class NotificationOrchestrator(BaseService):
    """Entry point for sending notifications and querying a user's inbox.

    Args:
        session_factory: Used by fan-out operations that need one
            transaction per recipient.
        queue: Delivery queue receiving a job per notification.
        clock: Current UTC time (injectable for tests).

    Example:
        result = await orchestrator.send_notification(
            session,
            SendNotificationRequest(
                user_id="u-1",
                type="ORDER_STATUS",
                title="Order #42",
                body="Your order has shipped",
                channels=[Channel.PUSH, Channel.IN_APP],
            ),
        )
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        queue: NotificationQueue,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        super().__init__()
        self._session_factory = session_factory
        self._queue = queue
        self._clock = clock
        self._users = UserRepository()
        self._notifications = NotificationRepository()
        self._preferences = PreferenceRepository()
        self._devices = DeviceTokenRepository()
        self._background: set[asyncio.Task[Any]] = set()

    # ──────────────────────────────────────────────────────────────
    # Sending
    # ──────────────────────────────────────────────────────────────

    async def send_notification(self, session: AsyncSession, request: SendNotificationRequest) -> SendResult:
        """Validate, filter channels, persist and enqueue one notification.

        Raises:
            ValidationException: The request breaks a field rule.
            NotFoundException: The user does not exist.
            InactiveAccountException: The user is deactivated.
            NoChannelsAvailableException: Preferences exclude every requested channel.
        """
        try:
            validate_request(request)
        except ValidationException:
            notification_rejected_total.labels(reason="validation").inc()
            raise

        user = await self._users.get(session, request.user_id)
        if user is None:
            notification_rejected_total.labels(reason="not_found").inc()
            raise NotFoundException("User not found", extra={"user_id": request.user_id})
        if not user.is_active:
            notification_rejected_total.labels(reason="inactive").inc()
            raise InactiveAccountException(request.user_id)

        preference = await self._preferences.get_for_user(session, request.user_id)
        channels = allowed_channels(preference, request.channels)
        if not channels:
            notification_rejected_total.labels(reason="no_channels").inc()
            raise NoChannelsAvailableException(request.user_id, [str(c) for c in request.channels])

        notification = Notification(
            user_id=request.user_id,
            type=request.type,
            title=request.title,
            body=request.body,
            data=request.data,
            channels=[str(c) for c in channels],
            priority=request.priority,
            status=NotificationStatus.PENDING,
            expires_at=request.expires_at,
        )
        await self._notifications.create(session, notification)
        notification_created_total.labels(type=request.type, priority=request.priority).inc()

        try:
            # Savepoint keeps a failed job flush from poisoning the notification insert
            async with session.begin_nested():
                await self._queue.enqueue(session, notification, channels, request.priority)
        except Exception:
            # The notification row stays PENDING and can be re-enqueued later
            self.logger.exception(
                "Failed to enqueue notification",
                extra={"notification_id": str(notification.id), "user_id": request.user_id},
            )

        self.logger.info(
            "Notification created",
            extra={
                "notification_id": str(notification.id),
                "user_id": request.user_id,
                "type": request.type,
                "channels": [str(c) for c in channels],
            },
        )
        return SendResult(success=True, notification_id=notification.id, channels=channels)

    async def send_to_users(self, user_ids: Sequence[str], request: SendNotificationRequest) -> BulkSendResult:
        """Send the same notification to many users, one transaction each.

        A failure for one user is logged and counted; it never affects the
        others.
        """
        succeeded = 0
        for user_id in user_ids:
            per_user = request.model_copy(update={"user_id": user_id})
            try:
                async with session_scope(self._session_factory) as session:
                    await self.send_notification(session, per_user)
                succeeded += 1
            except AppException as exc:
                self._lazy.debug(lambda: f"send_to_users: {user_id} skipped ({exc.detail})")
            except Exception:
                self.logger.exception("Bulk send failed for user", extra={"user_id": user_id})

        result = BulkSendResult(requested=len(user_ids), succeeded=succeeded, failed=len(user_ids) - succeeded)
        self.logger.info(
            "Bulk send finished",
            extra={"type": request.type, "requested": result.requested, "succeeded": result.succeeded},
        )
        return result

    def send_system_announcement(
        self,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> asyncio.Task[BulkSendResult]:
        """Broadcast to every active user in a background task.

        Returns immediately; the task is tracked so shutdown can wait for it.
        """
        task = asyncio.create_task(self._announce(title, body, data), name="system-announcement")
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _announce(self, title: str, body: str, data: dict[str, Any] | None) -> BulkSendResult:
        try:
            async with session_scope(self._session_factory) as session:
                user_ids = list(await self._users.list_active_ids(session))
            return await self.send_to_users(
                user_ids,
                SendNotificationRequest(
                    type=NotificationType.SYSTEM_ANNOUNCEMENT,
                    title=title,
                    body=body,
                    data=data,
                    channels=[Channel.PUSH, Channel.EMAIL],
                    priority=Priority.NORMAL,
                ),
            )
        except Exception:
            self.logger.exception("System announcement failed")
            return BulkSendResult(requested=0, succeeded=0, failed=0)

    async def wait_background(self) -> None:
        """Wait for every background fan-out started so far."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    async def aclose(self) -> None:
        await self.wait_background()

    async def send_test(self, session: AsyncSession, request: SendNotificationRequest) -> SendResult:
        """Like :meth:`send_notification`, but domain errors come back as a result."""
        try:
            return await self.send_notification(session, request)
        except AppException as exc:
            return SendResult(success=False, error=exc.detail)

    # ──────────────────────────────────────────────────────────────
    # Read API
    # ──────────────────────────────────────────────────────────────

    async def get_user_notifications(
        self,
        session: AsyncSession,
        user_id: str,
        *,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
        unread_only: bool = False,
        type_: str | None = None,
        status: str | None = None,
    ) -> NotificationListResponse:
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        offset = max(0, offset)
        page = await self._notifications.list_for_user(
            session, user_id, limit=limit, offset=offset, unread_only=unread_only, type_=type_, status=status,
        )
        unread = await self._notifications.count_unread(session, user_id)
        return NotificationListResponse(
            notifications=[NotificationResponse.model_validate(n) for n in page.items],
            unread_count=unread,
            pagination=PaginationMeta(limit=limit, offset=offset, total=page.total, has_more=page.has_next),
        )

    async def get_unread_count(self, session: AsyncSession, user_id: str) -> int:
        return await self._notifications.count_unread(session, user_id)

    async def get_notification(self, session: AsyncSession, user_id: str, notification_id: UUID) -> Notification:
        """Load a notification owned by ``user_id``.

        Raises:
            NotFoundException: No such notification.
            ForbiddenException: It belongs to another user.
        """
        try:
            notification = await self._notifications.get_or_raise(session, notification_id)
        except NotFoundError as exc:
            raise NotFoundException(
                "Notification not found", extra={"notification_id": str(notification_id)},
            ) from exc
        if notification.user_id != user_id:
            raise ForbiddenException(
                "Notification belongs to another user",
                extra={"notification_id": str(notification_id)},
            )
        return notification

    async def mark_as_read(self, session: AsyncSession, user_id: str, notification_id: UUID) -> Notification:
        notification = await self.get_notification(session, user_id, notification_id)
        if notification.read_at is None:
            notification.read_at = self._clock()
            await session.flush()
        return notification

    async def mark_as_clicked(self, session: AsyncSession, user_id: str, notification_id: UUID) -> Notification:
        notification = await self.get_notification(session, user_id, notification_id)
        if notification.clicked_at is None:
            notification.clicked_at = self._clock()
            await session.flush()
        return notification

    async def mark_all_as_read(self, session: AsyncSession, user_id: str) -> int:
        updated = await self._notifications.mark_all_read(session, user_id, self._clock())
        self.logger.info("Notifications marked read", extra={"user_id": user_id, "updated": updated})
        return updated

    async def delete_notification(self, session: AsyncSession, user_id: str, notification_id: UUID) -> None:
        notification = await self.get_notification(session, user_id, notification_id)
        await self._notifications.delete(session, notification)

    async def get_stats(self, session: AsyncSession, user_id: str | None = None) -> NotificationStats:
        """Status counts with delivery and read rates, for one user or everyone."""
        counts = await self._notifications.status_counts(session, user_id=user_id)
        read, clicked = await self._notifications.count_flagged(session, user_id=user_id)
        total = sum(counts.values())
        delivered = counts.get(NotificationStatus.DELIVERED, 0)
        return NotificationStats(
            total=total,
            pending=counts.get(NotificationStatus.PENDING, 0),
            sent=counts.get(NotificationStatus.SENT, 0),
            delivered=delivered,
            failed=counts.get(NotificationStatus.FAILED, 0),
            read=read,
            clicked=clicked,
            delivery_rate=_rate(delivered + read, total),
            read_rate=_rate(read, delivered),
        )

    # ──────────────────────────────────────────────────────────────
    # Preferences and devices
    # ──────────────────────────────────────────────────────────────

    async def get_preferences(self, session: AsyncSession, user_id: str) -> NotificationPreference:
        """Return the user's preferences, creating the defaults on first access."""
        preference = await self._preferences.get_for_user(session, user_id)
        if preference is None:
            preference = await self._preferences.create(session, NotificationPreference(user_id=user_id))
            self._lazy.debug(lambda: f"get_preferences: defaults created for {user_id}")
        return preference

    async def update_preferences(
        self,
        session: AsyncSession,
        user_id: str,
        update: PreferenceUpdate,
    ) -> NotificationPreference:
        changes = update.model_dump(exclude_unset=True)
        if changes.get("timezone"):
            try:
                ZoneInfo(changes["timezone"])
            except (ZoneInfoNotFoundError, ValueError) as exc:
                raise ValidationException(
                    "timezone is not a valid IANA zone", extra={"timezone": changes["timezone"]},
                ) from exc
        elif "timezone" in changes:
            changes.pop("timezone")

        preference = await self.get_preferences(session, user_id)
        for field, value in changes.items():
            setattr(preference, field, value)
        preference.updated_at = self._clock()
        await session.flush()
        self.logger.info("Preferences updated", extra={"user_id": user_id, "fields": sorted(changes)})
        return preference

    async def register_device(
        self,
        session: AsyncSession,
        user_id: str,
        token: str,
        platform: DevicePlatform,
    ) -> DeviceToken:
        """Register a push token, moving it to ``user_id`` if another user held it."""
        now = self._clock()
        device = await self._devices.get_by_token(session, token)
        if device is None:
            device = await self._devices.create(
                session,
                DeviceToken(user_id=user_id, token=token, platform=platform, is_active=True, last_used_at=now),
            )
        else:
            if device.user_id != user_id:
                self.logger.info(
                    "Device token reassigned",
                    extra={"device_id": str(device.id), "from_user": device.user_id, "to_user": user_id},
                )
            device.user_id = user_id
            device.platform = platform
            device.is_active = True
            device.last_used_at = now
            await session.flush()
        return device

    async def unregister_device(self, session: AsyncSession, user_id: str, token: str) -> None:
        device = await self._devices.get_by_token(session, token)
        if device is None or device.user_id != user_id:
            raise NotFoundException("Device token not found")
        device.is_active = False
        await session.flush()

    # ──────────────────────────────────────────────────────────────
    # Business event senders
    # ──────────────────────────────────────────────────────────────

    async def _notify(
        self,
        session: AsyncSession,
        user_id: str,
        type_: NotificationType,
        title: str,
        body: str,
        data: dict[str, Any],
        channels: list[Channel],
        priority: Priority,
    ) -> SendResult:
        request = SendNotificationRequest(
            user_id=user_id,
            type=type_,
            title=title,
            body=body,
            # Push payloads only carry strings
            data={key: str(value) for key, value in data.items() if value is not None},
            channels=channels,
            priority=priority,
        )
        return await self.send_notification(session, request)

    async def notify_batch_created(
        self,
        session: AsyncSession,
        user_id: str,
        batch_id: str,
        *,
        variety: str | None = None,
        origin: str | None = None,
    ) -> SendResult:
        return await self._notify(
            session,
            user_id,
            NotificationType.BATCH_CREATED,
            "Batch Registered",
            f"Your batch {batch_id} has been registered on the blockchain",
            {"batchId": batch_id, "deepLink": f"/batches/{batch_id}", "variety": variety, "origin": origin},
            [Channel.PUSH, Channel.IN_APP],
            Priority.HIGH,
        )

    async def notify_batch_status_changed(
        self,
        session: AsyncSession,
        user_id: str,
        batch_id: str,
        new_status: str,
    ) -> SendResult:
        return await self._notify(
            session,
            user_id,
            NotificationType.BATCH_STATUS_CHANGED,
            f"Batch {batch_id} Update",
            _BATCH_STATUS_MESSAGES.get(new_status, f"Status updated: {new_status}"),
            {"batchId": batch_id, "status": new_status, "deepLink": f"/batches/{batch_id}"},
            [Channel.PUSH, Channel.IN_APP],
            Priority.NORMAL,
        )

    async def notify_certificate_ready(
        self,
        session: AsyncSession,
        user_id: str,
        batch_id: str,
        *,
        certificate_url: str | None = None,
        blockchain_hash: str | None = None,
    ) -> SendResult:
        return await self._notify(
            session,
            user_id,
            NotificationType.CERTIFICATE_READY,
            "Blockchain Certificate Ready",
            f"The certificate for batch {batch_id} is ready to download",
            {
                "batchId": batch_id,
                "certificateUrl": certificate_url,
                "blockchainHash": blockchain_hash,
                "deepLink": f"/certificates/{batch_id}",
            },
            [Channel.PUSH, Channel.EMAIL, Channel.IN_APP],
            Priority.HIGH,
        )

    async def notify_sensor_alert(
        self,
        session: AsyncSession,
        user_id: str,
        *,
        sensor_type: str,
        current_value: float,
        threshold: float,
        unit: str,
        location: str | None = None,
        batch_id: str | None = None,
    ) -> SendResult:
        return await self._notify(
            session,
            user_id,
            NotificationType.SENSOR_ALERT,
            f"Alert: {sensor_type}",
            f"{sensor_type} exceeded its threshold ({current_value}{unit} > {threshold}{unit})",
            {
                "sensorType": sensor_type,
                "currentValue": current_value,
                "threshold": threshold,
                "unit": unit,
                "location": location,
                "batchId": batch_id,
                "deepLink": "/sensors",
            },
            [Channel.PUSH, Channel.SMS, Channel.IN_APP],
            Priority.CRITICAL,
        )

    async def notify_order_status(
        self,
        session: AsyncSession,
        user_id: str,
        order_id: str,
        status: str,
        *,
        total: float | None = None,
        tracking_url: str | None = None,
    ) -> SendResult:
        return await self._notify(
            session,
            user_id,
            NotificationType.ORDER_STATUS,
            f"Order #{order_id}",
            _ORDER_STATUS_MESSAGES.get(status, f"Status: {status}"),
            {
                "orderId": order_id,
                "status": status,
                "total": total,
                "trackingUrl": tracking_url,
                "deepLink": f"/orders/{order_id}",
            },
            [Channel.PUSH, Channel.EMAIL, Channel.IN_APP],
            Priority.NORMAL,
        )

    async def notify_payment_received(
        self,
        session: AsyncSession,
        user_id: str,
        order_id: str,
        amount: float,
        currency: str = "MXN",
    ) -> SendResult:
        return await self._notify(
            session,
            user_id,
            NotificationType.PAYMENT_RECEIVED,
            "Payment Received",
            f"We received your payment of {amount:,.2f} {currency} for order #{order_id}",
            {"orderId": order_id, "amount": amount, "currency": currency, "deepLink": f"/orders/{order_id}"},
            [Channel.PUSH, Channel.EMAIL, Channel.IN_APP],
            Priority.HIGH,
        )

    async def notify_producer_whitelisted(
        self,
        session: AsyncSession,
        user_id: str,
        producer_name: str,
    ) -> SendResult:
        return await self._notify(
            session,
            user_id,
            NotificationType.PRODUCER_WHITELISTED,
            "Account Verified",
            f"Congratulations! {producer_name} has been verified and can start registering batches",
            {"deepLink": "/dashboard"},
            [Channel.PUSH, Channel.EMAIL, Channel.IN_APP],
            Priority.HIGH,
        )

    async def notify_welcome(self, session: AsyncSession, user_id: str, user_name: str) -> SendResult:
        return await self._notify(
            session,
            user_id,
            NotificationType.WELCOME,
            f"Welcome, {user_name}!",
            "Thanks for joining. Start by registering your first batch.",
            {"deepLink": "/dashboard"},
            [Channel.EMAIL, Channel.IN_APP],
            Priority.NORMAL,
        )
