"""Application lifespan management.

Startup order:
1. Logging and application metadata
2. Service container (Redis, database engine, HTTP client, pipeline services)
3. Optional table creation (development and tests)
4. In-process queue worker
5. Optional APScheduler maintenance jobs

Shutdown runs in reverse: scheduler, worker, background fan-outs, container.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
import logging
from typing import TYPE_CHECKING

from notification_service.app.container import create_container
from notification_service.core.settings import (
    get_app_settings,
    get_db_settings,
    get_logging_settings,
    get_task_settings,
)
from notification_service.infra.database import create_tables
from notification_service.infra.logging import setup_logging
from notification_service.infra.metrics.prometheus import application_info

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI

logger = logging.getLogger(__name__)

# Bound on how long shutdown waits for the worker to finish its current pass
WORKER_STOP_TIMEOUT = 30.0


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    app_settings = get_app_settings()
    setup_logging(get_logging_settings())
    application_info.labels(
        service=app_settings.service_name,
        version=app_settings.version,
        environment=app_settings.environment,
    ).set(1)
    logger.info(
        "Starting application",
        extra={"service": app_settings.service_name, "environment": app_settings.environment},
    )

    container = await create_container()
    app.state.container = container

    if get_db_settings().create_tables:
        await create_tables(container.engine)

    stop_event = asyncio.Event()
    worker_task: asyncio.Task[None] | None = None
    if app_settings.run_worker:
        worker_task = asyncio.create_task(container.worker.run_forever(stop_event), name="notification-worker")

    scheduler = None
    if app_settings.run_scheduler:
        from notification_service.infra.tasks.scheduler import create_scheduler

        scheduler = create_scheduler(container, get_task_settings())
        scheduler.start()

    try:
        yield
    finally:
        logger.info("Shutting down application")
        if scheduler is not None:
            scheduler.shutdown(wait=False)
        stop_event.set()
        if worker_task is not None:
            try:
                await asyncio.wait_for(worker_task, timeout=WORKER_STOP_TIMEOUT)
            except TimeoutError:
                logger.warning("Worker did not stop in time; cancelling")
                worker_task.cancel()
        await container.aclose()
        app.state.container = None
