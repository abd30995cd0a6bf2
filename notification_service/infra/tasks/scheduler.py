"""APScheduler maintenance jobs run inside the API process.

Jobs:
    - clean_finished_jobs: purge finished queue bookkeeping
    - refresh_metrics: keep the snapshot gauges current
    - sweep_fallback_counters: drop expired in-process rate-limit windows
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore[import-untyped]
from apscheduler.triggers.interval import IntervalTrigger  # type: ignore[import-untyped]

from notification_service.workers.notifications import (
    clean_finished_jobs,
    refresh_metrics,
    sweep_fallback_counters,
)

if TYPE_CHECKING:
    from notification_service.app.container import ServiceContainer
    from notification_service.core.settings import TaskSettings

logger = logging.getLogger(__name__)


def create_scheduler(container: ServiceContainer, settings: TaskSettings) -> AsyncIOScheduler:
    """Build a scheduler with the maintenance jobs registered (not started)."""
    scheduler = AsyncIOScheduler(
        timezone="UTC",
        job_defaults={
            "coalesce": True,
            "max_instances": 1,
            "misfire_grace_time": 60,
        },
    )
    scheduler.add_job(
        clean_finished_jobs,
        trigger=IntervalTrigger(minutes=settings.clean_interval_minutes),
        args=[container],
        id="clean_finished_jobs",
        name="Purge finished notification jobs",
        replace_existing=True,
    )
    scheduler.add_job(
        refresh_metrics,
        trigger=IntervalTrigger(seconds=settings.metrics_interval_seconds),
        args=[container],
        id="refresh_metrics",
        name="Refresh notification gauges",
        replace_existing=True,
    )
    scheduler.add_job(
        sweep_fallback_counters,
        trigger=IntervalTrigger(seconds=settings.sweep_interval_seconds),
        args=[container],
        id="sweep_fallback_counters",
        name="Sweep expired fallback counters",
        replace_existing=True,
    )
    logger.info("Scheduled maintenance jobs", extra={"jobs": [job.id for job in scheduler.get_jobs()]})
    return scheduler
