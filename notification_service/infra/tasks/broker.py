"""Taskiq broker for out-of-process notification workers.

Run a worker with:
    taskiq worker notification_service.infra.tasks.broker:broker

The broker exists only when ``TASKS_BROKER_URL`` points at RabbitMQ; the
API process then still runs its own in-process worker unless
``APP_RUN_WORKER=false``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from taskiq import TaskiqEvents, TaskiqState
from taskiq.middlewares import SimpleRetryMiddleware
from taskiq_aio_pika import AioPikaBroker

from notification_service.core.settings import get_logging_settings, get_task_settings
from notification_service.infra.logging import setup_logging

if TYPE_CHECKING:
    from notification_service.app.container import ServiceContainer

logger = logging.getLogger(__name__)

task_settings = get_task_settings()

broker: AioPikaBroker | None = None

if task_settings.broker_configured:
    broker = AioPikaBroker(
        url=task_settings.broker_url,
        queue_name=task_settings.queue_name,
        declare_exchange=True,
        declare_queues=True,
    ).with_middlewares(SimpleRetryMiddleware(default_retry_count=task_settings.retry_count))

    @broker.on_event(TaskiqEvents.WORKER_STARTUP)
    async def _startup(state: TaskiqState) -> None:
        # Imported here: the container pulls in every feature module
        from notification_service.app.container import create_container

        setup_logging(get_logging_settings())
        state.container = await create_container()
        logger.info("Taskiq worker container ready", extra={"queue": task_settings.queue_name})

    @broker.on_event(TaskiqEvents.WORKER_SHUTDOWN)
    async def _shutdown(state: TaskiqState) -> None:
        container = getattr(state, "container", None)
        if container is not None:
            await container.aclose()

    logger.info("Taskiq broker configured", extra={"queue": task_settings.queue_name})


def get_worker_container() -> ServiceContainer:
    """Container built by the worker startup hook.

    Raises:
        RuntimeError: Outside a started Taskiq worker.
    """
    container = getattr(broker.state, "container", None) if broker is not None else None
    if container is None:
        msg = "Taskiq worker container not initialised"
        raise RuntimeError(msg)
    return container


# Register task modules with the broker
from notification_service.workers.notifications import tasks as _notification_tasks  # noqa: E402, F401
