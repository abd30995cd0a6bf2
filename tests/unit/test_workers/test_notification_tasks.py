"""Tests for the maintenance task coroutines and the APScheduler wiring."""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import timedelta
from typing import Any

import httpx
import pytest
from sqlalchemy import select

from notification_service.app.container import ServiceContainer, create_container
from notification_service.core.settings import DatabaseSettings, RateLimitSettings, TaskSettings
from notification_service.features.notifications.enums import Channel, JobState, Priority
from notification_service.features.notifications.models import NotificationJob
from notification_service.features.notifications.schemas import SendNotificationRequest
from notification_service.features.users.models import User
from notification_service.infra.database import create_tables, session_scope
from notification_service.infra.tasks.scheduler import create_scheduler
from notification_service.workers.notifications import (
    clean_finished_jobs,
    refresh_metrics,
    run_delivery_pass,
    sweep_fallback_counters,
)


@pytest.fixture
async def container(store, notification_settings) -> AsyncIterator[ServiceContainer]:
    container = await create_container(
        db_settings=DatabaseSettings(dsn="sqlite+aiosqlite:///:memory:"),
        notification_settings=notification_settings,
        rate_limit_settings=RateLimitSettings(),
        store=store,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500))),
    )
    await create_tables(container.engine)
    async with container.session_factory() as session:
        session.add(User(id="user-1", email="user@example.com", first_name="Ana"))
        await session.commit()
    try:
        yield container
    finally:
        await container.aclose()


async def send(container: ServiceContainer, **overrides: Any) -> None:
    request = SendNotificationRequest(
        user_id="user-1",
        type="TEST",
        title="Hello",
        body="World",
        channels=[Channel.IN_APP],
        priority=Priority.NORMAL,
        **overrides,
    )
    async with session_scope(container.session_factory) as session:
        await container.orchestrator.send_notification(session, request)


@pytest.mark.unit
class TestMaintenanceTasks:
    async def test_delivery_pass_processes_waiting_jobs(self, container):
        await send(container)
        await send(container, title="Again")

        assert await run_delivery_pass(container) == 2
        assert await run_delivery_pass(container) == 0

    async def test_delivery_pass_respects_batch_size(self, container):
        await send(container)
        await send(container, title="Again")

        assert await run_delivery_pass(container, batch_size=1) == 1

    async def test_clean_removes_old_finished_jobs(self, container):
        await send(container)
        await run_delivery_pass(container)
        async with session_scope(container.session_factory) as session:
            job = (await session.execute(select(NotificationJob))).scalar_one()
            assert job.state == JobState.COMPLETED
            job.finished_at = job.finished_at - timedelta(hours=48)

        assert await clean_finished_jobs(container, age_hours=24) == 1
        assert await clean_finished_jobs(container, age_hours=24) == 0

    async def test_clean_keeps_recent_jobs(self, container):
        await send(container)
        await run_delivery_pass(container)

        assert await clean_finished_jobs(container, age_hours=24) == 0

    async def test_refresh_metrics_reports_queue_depth(self, container):
        await send(container)

        snapshot = await refresh_metrics(container)

        assert snapshot.queue_depth == 1
        assert snapshot.period_hours == 1

    async def test_sweep_with_nothing_expired(self, container):
        assert sweep_fallback_counters(container) == 0


@pytest.mark.unit
class TestScheduler:
    def test_registers_maintenance_jobs(self, container):
        settings = TaskSettings(clean_interval_minutes=15, metrics_interval_seconds=30, sweep_interval_seconds=10)

        scheduler = create_scheduler(container, settings)

        jobs = {job.id: job for job in scheduler.get_jobs()}
        assert set(jobs) == {"clean_finished_jobs", "refresh_metrics", "sweep_fallback_counters"}
        assert jobs["clean_finished_jobs"].trigger.interval == timedelta(minutes=15)
        assert jobs["refresh_metrics"].trigger.interval == timedelta(seconds=30)
        assert jobs["sweep_fallback_counters"].args == (container,)
        assert not scheduler.running
