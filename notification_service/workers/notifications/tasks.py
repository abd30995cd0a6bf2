"""Notification tasks.

The plain coroutines take a :class:`ServiceContainer` and are used by the
in-process APScheduler jobs. When a Taskiq broker is configured the same
work is also registered as broker tasks for dedicated worker processes.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from notification_service.infra.database import session_scope
from notification_service.infra.tasks.broker import broker, get_worker_container

if TYPE_CHECKING:
    from notification_service.app.container import ServiceContainer
    from notification_service.features.notifications.schemas import MetricsSnapshot

logger = logging.getLogger(__name__)


async def run_delivery_pass(container: ServiceContainer, batch_size: int | None = None) -> int:
    """Lease and process one batch; returns the number of jobs handled."""
    return await container.worker.run_once(batch_size)


async def clean_finished_jobs(container: ServiceContainer, age_hours: int | None = None) -> int:
    async with session_scope(container.session_factory) as session:
        return await container.queue.clean(session, age_hours)


async def refresh_metrics(container: ServiceContainer) -> MetricsSnapshot:
    """Recompute the last-hour snapshot so the gauges stay current between API calls."""
    async with session_scope(container.session_factory) as session:
        snapshot = await container.collector.collect_metrics(session, period_hours=1)
    logger.debug(
        "Notification metrics refreshed",
        extra={"delivery_rate": snapshot.delivery_rate, "queue_depth": snapshot.queue_depth},
    )
    return snapshot


def sweep_fallback_counters(container: ServiceContainer) -> int:
    return container.limiter.fallback.sweep()


if broker is not None:

    @broker.task(task_name="notifications.process_jobs", retry_on_error=True)
    async def process_jobs_task(batch_size: int | None = None) -> dict:
        """Run one delivery pass on a dedicated worker process."""
        processed = await run_delivery_pass(get_worker_container(), batch_size)
        return {"processed": processed}

    @broker.task(task_name="notifications.clean_queue")
    async def clean_queue_task(age_hours: int | None = None) -> dict:
        removed = await clean_finished_jobs(get_worker_container(), age_hours)
        return {"removed": removed}

    @broker.task(task_name="notifications.refresh_metrics")
    async def refresh_metrics_task() -> dict:
        snapshot = await refresh_metrics(get_worker_container())
        return {"delivery_rate": snapshot.delivery_rate, "queue_depth": snapshot.queue_depth}
