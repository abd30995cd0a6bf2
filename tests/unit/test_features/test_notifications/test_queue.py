"""Tests for the database-backed NotificationQueue."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from notification_service.features.notifications.enums import JobState, Priority
from notification_service.features.notifications.models import Notification, NotificationJob
from notification_service.features.notifications.queue import PAUSED_KEY, NotificationQueue

T0 = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


def add_job(session, priority: Priority, created_at: datetime, **overrides) -> NotificationJob:
    values = {
        "notification_id": uuid4(),
        "channels": ["IN_APP"],
        "priority": priority,
        "priority_weight": priority.weight,
        "state": JobState.WAITING,
        "attempts": {},
        "succeeded_channels": [],
        "created_at": created_at,
    }
    values.update(overrides)
    job = NotificationJob(**values)
    session.add(job)
    return job


async def add_notification(session, priority: Priority = Priority.NORMAL) -> Notification:
    notification = Notification(
        user_id="user-1", type="TEST", title="Title", body="Body", channels=["PUSH", "IN_APP"], priority=priority,
    )
    session.add(notification)
    await session.flush()
    return notification


@pytest.fixture
def clocked_queue(notification_settings, limiter, store):
    def _make(now: datetime, **settings_overrides) -> NotificationQueue:
        settings = notification_settings.model_copy(update=settings_overrides)
        return NotificationQueue(settings, limiter, store, clock=lambda: now)

    return _make


@pytest.mark.unit
class TestEnqueue:
    async def test_creates_waiting_job(self, queue, db_session):
        notification = await add_notification(db_session, Priority.HIGH)

        job = await queue.enqueue(db_session, notification)

        assert job.state == JobState.WAITING
        assert job.channels == ["PUSH", "IN_APP"]
        assert job.priority == Priority.HIGH
        assert job.priority_weight == 5
        assert job.attempts == {}

    async def test_explicit_channels_and_priority(self, queue, db_session):
        notification = await add_notification(db_session)

        job = await queue.enqueue(db_session, notification, ["IN_APP"], Priority.CRITICAL)

        assert job.channels == ["IN_APP"]
        assert job.priority_weight == 1

    async def test_over_admission_limit_is_delayed(self, clocked_queue, db_session):
        queue = clocked_queue(T0, enqueue_rate_limit=1, enqueue_rate_window=60)
        first = await queue.enqueue(db_session, await add_notification(db_session))

        second = await queue.enqueue(db_session, await add_notification(db_session))

        assert first.state == JobState.WAITING
        assert second.state == JobState.DELAYED
        assert T0 < second.next_run_at <= T0 + timedelta(seconds=60)
        leased = await queue.lease(db_session, "w-1")
        assert [job.id for job in leased] == [first.id]


@pytest.mark.unit
class TestLease:
    async def test_serves_lanes_by_priority(self, clocked_queue, db_session):
        for i, priority in enumerate([Priority.LOW, Priority.NORMAL, Priority.CRITICAL, Priority.HIGH]):
            add_job(db_session, priority, T0 - timedelta(minutes=10 - i))
        await db_session.flush()
        queue = clocked_queue(T0)

        leased = await queue.lease(db_session, "w-1", batch_size=4)

        assert [job.priority for job in leased] == ["CRITICAL", "HIGH", "NORMAL", "LOW"]
        assert all(job.state == JobState.ACTIVE and job.locked_by == "w-1" for job in leased)

    async def test_fairness_slot_takes_oldest_job(self, clocked_queue, db_session):
        add_job(db_session, Priority.LOW, T0 - timedelta(hours=1))
        for i in range(6):
            add_job(db_session, Priority.CRITICAL, T0 - timedelta(minutes=30 - i))
        await db_session.flush()
        queue = clocked_queue(T0, fairness_interval=5)

        leased = await queue.lease(db_session, "w-1", batch_size=5)

        assert [job.priority for job in leased] == ["CRITICAL"] * 4 + ["LOW"]

    async def test_leased_job_is_not_leased_again(self, clocked_queue, db_session):
        add_job(db_session, Priority.NORMAL, T0 - timedelta(minutes=1))
        await db_session.flush()
        queue = clocked_queue(T0)

        assert len(await queue.lease(db_session, "w-1")) == 1
        assert await queue.lease(db_session, "w-2") == []

    async def test_expired_lease_is_runnable_again(self, clocked_queue, notification_settings, db_session):
        job = add_job(db_session, Priority.NORMAL, T0 - timedelta(minutes=1))
        await db_session.flush()
        await clocked_queue(T0).lease(db_session, "w-1")

        later = T0 + timedelta(seconds=notification_settings.lease_seconds + 1)
        leased = await clocked_queue(later).lease(db_session, "w-2")

        assert [j.id for j in leased] == [job.id]
        assert leased[0].locked_by == "w-2"

    async def test_delayed_job_waits_for_next_run(self, clocked_queue, db_session):
        add_job(db_session, Priority.CRITICAL, T0 - timedelta(minutes=5), state=JobState.DELAYED, next_run_at=T0 + timedelta(seconds=30))
        await db_session.flush()

        assert await clocked_queue(T0).lease(db_session, "w-1") == []
        assert len(await clocked_queue(T0 + timedelta(seconds=30)).lease(db_session, "w-1")) == 1

    async def test_paused_queue_leases_nothing(self, queue, db_session, store):
        add_job(db_session, Priority.CRITICAL, T0)
        await db_session.flush()

        await queue.pause()
        assert await queue.lease(db_session, "w-1") == []
        assert PAUSED_KEY in store.values

        await queue.resume()
        assert len(await queue.lease(db_session, "w-1")) == 1

    async def test_pause_survives_store_outage(self, queue, store):
        store.fail = True

        await queue.pause()

        assert await queue.is_paused() is True
        await queue.resume()
        assert await queue.is_paused() is False


@pytest.mark.unit
class TestJobTransitions:
    async def test_complete_fail_and_defer(self, clocked_queue, db_session):
        queue = clocked_queue(T0)
        for i in range(3):
            add_job(db_session, Priority.NORMAL, T0 - timedelta(minutes=3 - i))
        await db_session.flush()
        first, second, third = await queue.lease(db_session, "w-1", batch_size=3)

        await queue.complete(db_session, first)
        await queue.fail(db_session, second, "SMS: Twilio API timeout")
        await queue.defer(db_session, third, T0 + timedelta(seconds=8), {"SMS": 1}, error="retry")

        assert (first.state, first.finished_at, first.locked_by) == (JobState.COMPLETED, T0, None)
        assert (second.state, second.last_error) == (JobState.FAILED, "SMS: Twilio API timeout")
        assert third.state == JobState.DELAYED
        assert third.next_run_at == T0 + timedelta(seconds=8)
        assert third.attempts == {"SMS": 1}
        assert third.leased_until is None


@pytest.mark.unit
class TestAdministration:
    async def test_stats_and_depth(self, queue, db_session):
        add_job(db_session, Priority.NORMAL, T0)
        add_job(db_session, Priority.NORMAL, T0, state=JobState.ACTIVE, leased_until=T0)
        add_job(db_session, Priority.NORMAL, T0, state=JobState.DELAYED, next_run_at=T0)
        add_job(db_session, Priority.NORMAL, T0, state=JobState.COMPLETED, finished_at=T0)
        add_job(db_session, Priority.NORMAL, T0, state=JobState.FAILED, finished_at=T0)
        await db_session.flush()

        stats = await queue.get_stats(db_session)

        assert (stats.waiting, stats.active, stats.delayed, stats.completed, stats.failed) == (1, 1, 1, 1, 1)
        assert stats.paused is False
        assert await queue.get_queue_depth(db_session) == 2

    async def test_clean_removes_old_finished_jobs_only(self, clocked_queue, db_session):
        old = T0 - timedelta(hours=48)
        notification = await add_notification(db_session)
        add_job(db_session, Priority.NORMAL, old, state=JobState.COMPLETED, finished_at=old, notification_id=notification.id)
        add_job(db_session, Priority.NORMAL, old, state=JobState.FAILED, finished_at=old)
        add_job(db_session, Priority.NORMAL, T0, state=JobState.COMPLETED, finished_at=T0 - timedelta(hours=1))
        add_job(db_session, Priority.NORMAL, old)
        await db_session.flush()

        removed = await clocked_queue(T0).clean(db_session, 24)

        assert removed == 2
        remaining = (await db_session.execute(select(func.count()).select_from(NotificationJob))).scalar_one()
        assert remaining == 2
        assert await db_session.get(Notification, notification.id) is not None
