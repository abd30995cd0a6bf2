"""Tests for NotificationOrchestrator: send path, read API, preferences and devices."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from notification_service.core.exceptions import (
    ForbiddenException,
    InactiveAccountException,
    NoChannelsAvailableException,
    NotFoundException,
    ValidationException,
)
from notification_service.features.notifications.enums import (
    Channel,
    DevicePlatform,
    JobState,
    NotificationStatus,
    NotificationType,
    Priority,
)
from notification_service.features.notifications.models import (
    DeviceToken,
    Notification,
    NotificationJob,
    NotificationPreference,
)
from notification_service.features.notifications.schemas import PreferenceUpdate, SendNotificationRequest
from notification_service.features.notifications.service import (
    NotificationOrchestrator,
    allowed_channels,
    validate_request,
)
from notification_service.infra.database import session_scope
from notification_service.infra.metrics import REGISTRY

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


def make_request(**overrides) -> SendNotificationRequest:
    values = {
        "user_id": "user-1",
        "type": "ORDER_STATUS",
        "title": "Order #42",
        "body": "Your order has shipped",
        "channels": [Channel.PUSH, Channel.EMAIL],
    }
    values.update(overrides)
    return SendNotificationRequest(**values)


async def count(session, model) -> int:
    return (await session.execute(select(func.count()).select_from(model))).scalar_one()


@pytest.fixture
def orchestrator(session_factory, queue) -> NotificationOrchestrator:
    return NotificationOrchestrator(session_factory, queue, clock=lambda: NOW)


@pytest.mark.unit
class TestValidateRequest:
    @pytest.mark.parametrize(
        ("overrides", "message"),
        [
            ({"user_id": ""}, "userId is required"),
            ({"user_id": "   "}, "userId is required"),
            ({"type": ""}, "type is required"),
            ({"title": ""}, "title is required"),
            ({"title": "x" * 256}, "title must be less than 255 characters"),
            ({"body": " "}, "body is required"),
            ({"body": "x" * 5001}, "body must be less than 5000 characters"),
            ({"channels": []}, "At least one channel is required"),
        ],
    )
    def test_rejects(self, overrides: dict, message: str):
        with pytest.raises(ValidationException) as exc_info:
            validate_request(make_request(**overrides))

        assert exc_info.value.detail == message
        assert exc_info.value.status_code == 422

    def test_boundaries_are_accepted(self):
        validate_request(make_request(title="x" * 255, body="y" * 5000))

    def test_first_failing_rule_wins(self):
        with pytest.raises(ValidationException) as exc_info:
            validate_request(make_request(title="", body=""))

        assert exc_info.value.detail == "title is required"


@pytest.mark.unit
class TestAllowedChannels:
    def test_no_preference_accepts_everything(self):
        assert allowed_channels(None, [Channel.SMS, Channel.PUSH, Channel.SMS]) == [Channel.SMS, Channel.PUSH]

    def test_disabled_channels_are_dropped(self):
        preference = NotificationPreference(
            user_id="u",
            push_enabled=False,
            email_enabled=True,
            sms_enabled=False,
            whatsapp_enabled=True,
            in_app_enabled=True,
        )

        result = allowed_channels(preference, [Channel.PUSH, Channel.EMAIL, Channel.SMS, Channel.WHATSAPP])

        assert result == [Channel.EMAIL, Channel.WHATSAPP]

    def test_in_app_ignores_its_flag(self):
        preference = NotificationPreference(
            user_id="u",
            push_enabled=False,
            email_enabled=False,
            sms_enabled=False,
            whatsapp_enabled=False,
            in_app_enabled=False,
        )

        assert allowed_channels(preference, [Channel.IN_APP]) == [Channel.IN_APP]


@pytest.mark.unit
class TestSendNotification:
    async def test_creates_pending_notification_and_job(self, orchestrator, make_user, db_session):
        await make_user()

        result = await orchestrator.send_notification(db_session, make_request(priority=Priority.HIGH))

        assert result.success is True
        assert result.channels == [Channel.PUSH, Channel.EMAIL]
        notification = await db_session.get(Notification, result.notification_id)
        assert notification.status == NotificationStatus.PENDING

    async def test_failed_job_flush_still_commits_notification(
        self, session_factory, queue, make_user, monkeypatch
    ):
        await make_user()

        async def enqueue_without_notification_id(session, notification, channels=None, priority=None):
            session.add(
                NotificationJob(
                    notification_id=None,
                    channels=[str(c) for c in channels],
                    priority=Priority.NORMAL,
                    priority_weight=Priority.NORMAL.weight,
                    state=JobState.WAITING,
                    attempts={},
                    succeeded_channels=[],
                )
            )
            await session.flush()

        monkeypatch.setattr(queue, "enqueue", enqueue_without_notification_id)
        orchestrator = NotificationOrchestrator(session_factory, queue, clock=lambda: NOW)

        async with session_scope(session_factory) as session:
            result = await orchestrator.send_notification(session, make_request())

        assert result.success is True
        async with session_factory() as session:
            notification = await session.get(Notification, result.notification_id)
            assert notification is not None
            assert notification.status == NotificationStatus.PENDING
            assert await count(session, NotificationJob) == 0
        assert notification.channels == ["PUSH", "EMAIL"]
        job = (await db_session.execute(select(NotificationJob))).scalar_one()
        assert job.notification_id == result.notification_id
        assert job.state == JobState.WAITING
        assert job.priority_weight == Priority.HIGH.weight

    async def test_channels_are_filtered_by_preferences(self, orchestrator, make_user, db_session):
        await make_user(preference={"push_enabled": False})

        result = await orchestrator.send_notification(db_session, make_request())

        assert result.channels == [Channel.EMAIL]
        notification = await db_session.get(Notification, result.notification_id)
        assert notification.channels == ["EMAIL"]

    async def test_invalid_request_has_no_side_effects(self, orchestrator, make_user, db_session):
        await make_user()
        before = REGISTRY.get_sample_value("notification_rejected_total", {"reason": "validation"}) or 0

        with pytest.raises(ValidationException):
            await orchestrator.send_notification(db_session, make_request(title="x" * 256))

        assert await count(db_session, Notification) == 0
        assert await count(db_session, NotificationJob) == 0
        after = REGISTRY.get_sample_value("notification_rejected_total", {"reason": "validation"})
        assert after == before + 1

    async def test_unknown_user(self, orchestrator, db_session):
        with pytest.raises(NotFoundException) as exc_info:
            await orchestrator.send_notification(db_session, make_request(user_id="ghost"))

        assert exc_info.value.detail == "User not found"

    async def test_inactive_user(self, orchestrator, make_user, db_session):
        await make_user(is_active=False)

        with pytest.raises(InactiveAccountException):
            await orchestrator.send_notification(db_session, make_request())

        assert await count(db_session, Notification) == 0

    async def test_no_channel_left(self, orchestrator, make_user, db_session):
        await make_user(preference={"sms_enabled": False, "whatsapp_enabled": False})

        with pytest.raises(NoChannelsAvailableException):
            await orchestrator.send_notification(
                db_session, make_request(channels=[Channel.SMS, Channel.WHATSAPP])
            )

        assert await count(db_session, Notification) == 0
        assert await count(db_session, NotificationJob) == 0

    async def test_enqueue_failure_keeps_notification(self, session_factory, make_user, db_session):
        await make_user()
        queue = AsyncMock()
        queue.enqueue.side_effect = RuntimeError("queue down")
        orchestrator = NotificationOrchestrator(session_factory, queue)

        result = await orchestrator.send_notification(db_session, make_request())

        assert result.success is True
        queue.enqueue.assert_awaited_once()
        notification = await db_session.get(Notification, result.notification_id)
        assert notification.status == NotificationStatus.PENDING

    async def test_send_test_reports_domain_errors(self, orchestrator, db_session):
        result = await orchestrator.send_test(db_session, make_request(user_id="ghost"))

        assert result.success is False
        assert result.error == "User not found"


@pytest.mark.unit
class TestFanOut:
    async def test_send_to_users_isolates_failures(self, orchestrator, make_user, session_factory):
        await make_user("u-1")
        await make_user("u-2", is_active=False)
        await make_user("u-3")

        result = await orchestrator.send_to_users(["u-1", "u-2", "ghost", "u-3"], make_request())

        assert (result.requested, result.succeeded, result.failed) == (4, 2, 2)
        async with session_factory() as session:
            users = (await session.execute(select(Notification.user_id).order_by(Notification.user_id))).scalars()
            assert list(users) == ["u-1", "u-3"]

    async def test_system_announcement_reaches_active_users(self, orchestrator, make_user, session_factory):
        await make_user("u-1")
        await make_user("u-2")
        await make_user("u-3", is_active=False)

        task = orchestrator.send_system_announcement("Maintenance", "Tonight at 22:00", {"window": "2h"})
        result = await task

        assert result.succeeded == 2
        async with session_factory() as session:
            rows = (await session.execute(select(Notification))).scalars().all()
        assert {n.user_id for n in rows} == {"u-1", "u-2"}
        assert all(n.type == NotificationType.SYSTEM_ANNOUNCEMENT for n in rows)
        assert all(n.channels == ["PUSH", "EMAIL"] for n in rows)

    async def test_aclose_waits_for_background_work(self, orchestrator, make_user, session_factory):
        await make_user("u-1")

        orchestrator.send_system_announcement("Hello", "World")
        await orchestrator.aclose()

        async with session_factory() as session:
            assert await count(session, Notification) == 1


@pytest.mark.unit
class TestBusinessEvents:
    async def test_sensor_alert(self, orchestrator, make_user, db_session):
        await make_user()

        result = await orchestrator.notify_sensor_alert(
            db_session, "user-1", sensor_type="Temperature", current_value=31.5, threshold=30, unit="C", batch_id="B-1",
        )

        notification = await db_session.get(Notification, result.notification_id)
        assert notification.type == NotificationType.SENSOR_ALERT
        assert notification.priority == Priority.CRITICAL
        assert notification.title == "Alert: Temperature"
        assert notification.body == "Temperature exceeded its threshold (31.5C > 30C)"
        assert notification.channels == ["PUSH", "SMS", "IN_APP"]
        assert notification.data["currentValue"] == "31.5"
        assert "location" not in notification.data

    async def test_order_status_uses_known_message(self, orchestrator, make_user, db_session):
        await make_user()

        result = await orchestrator.notify_order_status(db_session, "user-1", "42", "SHIPPED")

        notification = await db_session.get(Notification, result.notification_id)
        assert notification.title == "Order #42"
        assert notification.body == "Your order has been shipped"

    async def test_welcome(self, orchestrator, make_user, db_session):
        await make_user()

        result = await orchestrator.notify_welcome(db_session, "user-1", "Ana")

        assert result.channels == [Channel.EMAIL, Channel.IN_APP]


def add_notification(session, user_id="user-1", **overrides) -> Notification:
    values = {
        "user_id": user_id,
        "type": "TEST",
        "title": "Title",
        "body": "Body",
        "channels": ["IN_APP"],
        "status": NotificationStatus.DELIVERED,
    }
    values.update(overrides)
    notification = Notification(**values)
    session.add(notification)
    return notification


@pytest.mark.unit
class TestReadApi:
    async def test_list_is_newest_first_with_unread_count(self, orchestrator, db_session):
        base = NOW - timedelta(hours=1)
        for i in range(3):
            add_notification(db_session, title=f"n{i}", created_at=base + timedelta(minutes=i))
        add_notification(db_session, title="read", read_at=NOW, created_at=base)
        add_notification(db_session, title="pending", status=NotificationStatus.PENDING, created_at=base)
        add_notification(db_session, user_id="someone-else")
        await db_session.flush()

        page = await orchestrator.get_user_notifications(db_session, "user-1", limit=2)

        assert [n.title for n in page.notifications] == ["n2", "n1"]
        assert page.unread_count == 3
        assert page.pagination.total == 5
        assert page.pagination.has_more is True

    async def test_limit_is_capped(self, orchestrator, db_session):
        page = await orchestrator.get_user_notifications(db_session, "user-1", limit=500)

        assert page.pagination.limit == 100

    async def test_filters(self, orchestrator, db_session):
        add_notification(db_session, type="ORDER_STATUS")
        add_notification(db_session, type="WELCOME", read_at=NOW)
        add_notification(db_session, type="WELCOME", status=NotificationStatus.FAILED)
        await db_session.flush()

        unread = await orchestrator.get_user_notifications(db_session, "user-1", unread_only=True)
        welcome = await orchestrator.get_user_notifications(db_session, "user-1", type_="WELCOME")
        failed = await orchestrator.get_user_notifications(db_session, "user-1", status=NotificationStatus.FAILED)

        assert unread.pagination.total == 2
        assert welcome.pagination.total == 2
        assert failed.pagination.total == 1

    async def test_ownership(self, orchestrator, db_session):
        notification = add_notification(db_session, user_id="owner")
        await db_session.flush()

        with pytest.raises(ForbiddenException):
            await orchestrator.get_notification(db_session, "intruder", notification.id)
        with pytest.raises(NotFoundException):
            await orchestrator.get_notification(db_session, "owner", uuid4())

    async def test_mark_as_read_is_idempotent(self, session_factory, queue, db_session):
        times = iter([NOW, NOW + timedelta(hours=1)])
        orchestrator = NotificationOrchestrator(session_factory, queue, clock=lambda: next(times))
        notification = add_notification(db_session)
        await db_session.flush()

        first = await orchestrator.mark_as_read(db_session, "user-1", notification.id)
        second = await orchestrator.mark_as_read(db_session, "user-1", notification.id)

        assert first.read_at == NOW
        assert second.read_at == NOW
        assert await orchestrator.get_unread_count(db_session, "user-1") == 0

    async def test_mark_as_clicked(self, orchestrator, db_session):
        notification = add_notification(db_session)
        await db_session.flush()

        clicked = await orchestrator.mark_as_clicked(db_session, "user-1", notification.id)

        assert clicked.clicked_at == NOW
        assert clicked.read_at is None

    async def test_mark_all_as_read(self, orchestrator, db_session):
        add_notification(db_session)
        add_notification(db_session)
        add_notification(db_session, read_at=NOW)
        await db_session.flush()

        assert await orchestrator.mark_all_as_read(db_session, "user-1") == 2
        assert await orchestrator.get_unread_count(db_session, "user-1") == 0

    async def test_delete_checks_owner(self, orchestrator, db_session):
        notification = add_notification(db_session)
        await db_session.flush()

        with pytest.raises(ForbiddenException):
            await orchestrator.delete_notification(db_session, "intruder", notification.id)
        await orchestrator.delete_notification(db_session, "user-1", notification.id)

        assert await count(db_session, Notification) == 0

    async def test_stats(self, orchestrator, db_session):
        add_notification(db_session, read_at=NOW, clicked_at=NOW)
        add_notification(db_session)
        add_notification(db_session, status=NotificationStatus.FAILED)
        add_notification(db_session, status=NotificationStatus.PENDING)
        add_notification(db_session, user_id="someone-else")
        await db_session.flush()

        stats = await orchestrator.get_stats(db_session, "user-1")

        assert (stats.total, stats.delivered, stats.failed, stats.pending) == (4, 2, 1, 1)
        assert (stats.read, stats.clicked) == (1, 1)
        assert stats.delivery_rate == 75.0
        assert stats.read_rate == 50.0

    async def test_stats_with_nothing_sent(self, orchestrator, db_session):
        stats = await orchestrator.get_stats(db_session, "user-1")

        assert stats.total == 0
        assert stats.delivery_rate == 0.0
        assert stats.read_rate == 0.0


@pytest.mark.unit
class TestPreferencesAndDevices:
    async def test_defaults_created_on_first_read(self, orchestrator, db_session):
        preference = await orchestrator.get_preferences(db_session, "user-1")

        assert preference.push_enabled is True
        assert preference.sms_enabled is False
        assert preference.timezone == "UTC"
        assert await count(db_session, NotificationPreference) == 1

    async def test_partial_update(self, orchestrator, db_session):
        update = PreferenceUpdate(sms_enabled=True, phone_number="+521234567890", timezone="America/Mexico_City")

        preference = await orchestrator.update_preferences(db_session, "user-1", update)

        assert preference.sms_enabled is True
        assert preference.push_enabled is True
        assert preference.phone_number == "+521234567890"
        assert preference.timezone == "America/Mexico_City"

    async def test_rejects_unknown_timezone(self, orchestrator, db_session):
        with pytest.raises(ValidationException):
            await orchestrator.update_preferences(db_session, "user-1", PreferenceUpdate(timezone="Mars/Olympus"))

    async def test_register_device_reassigns_token(self, orchestrator, db_session):
        await orchestrator.register_device(db_session, "u-1", "tok-1", DevicePlatform.ANDROID)

        device = await orchestrator.register_device(db_session, "u-2", "tok-1", DevicePlatform.IOS)

        assert device.user_id == "u-2"
        assert device.platform == DevicePlatform.IOS
        assert await count(db_session, DeviceToken) == 1

    async def test_unregister_device(self, orchestrator, db_session):
        device = await orchestrator.register_device(db_session, "u-1", "tok-1", DevicePlatform.WEB)

        with pytest.raises(NotFoundException):
            await orchestrator.unregister_device(db_session, "u-2", "tok-1")
        await orchestrator.unregister_device(db_session, "u-1", "tok-1")

        assert device.is_active is False
