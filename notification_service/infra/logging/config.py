"""Logging configuration via dictConfig.

All handlers hang off the root logger; module loggers propagate. The
context filter is attached to the handlers so fields bound through
``set_log_context`` reach every formatter.
"""

from __future__ import annotations

import logging
import logging.config
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from notification_service.core.settings.logs import LoggingSettings

logger = logging.getLogger(__name__)
_LOGGING_INITIALIZED = False


def setup_logging(log_settings: LoggingSettings | None = None, *, force: bool = False) -> None:
    """Configure logging once per process.

    Args:
        log_settings: Settings to apply. Loaded from the environment when omitted.
        force: Reconfigure even if logging was already set up.
    """
    global _LOGGING_INITIALIZED

    if _LOGGING_INITIALIZED and not force:
        return

    if log_settings is None:
        from notification_service.core.settings import get_logging_settings

        log_settings = get_logging_settings()

    configure_logging(
        log_level=log_settings.level,
        json_logs=log_settings.json_logs,
        service_name=log_settings.service_name,
        include_uvicorn=log_settings.include_uvicorn,
    )
    _LOGGING_INITIALIZED = True


def configure_logging(
    log_level: str = "INFO",
    *,
    json_logs: bool = True,
    service_name: str = "notification-service",
    include_uvicorn: bool = True,
) -> None:
    """Apply a dictConfig with a single console handler on the root logger."""
    formatter: dict[str, Any]
    if json_logs:
        formatter = {
            "()": "notification_service.infra.logging.formatters.JSONFormatter",
            "static": {"service": service_name},
        }
    else:
        formatter = {"format": "%(asctime)s %(levelname)-8s %(name)s: %(message)s"}

    config: dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "context": {"()": "notification_service.infra.logging.context.ContextInjectingFilter"},
        },
        "formatters": {"default": formatter},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stderr",
                "formatter": "default",
                "filters": ["context"],
            },
        },
        "root": {"level": log_level, "handlers": ["console"]},
        "loggers": {},
    }

    if include_uvicorn:
        for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
            config["loggers"][name] = {"level": log_level, "handlers": [], "propagate": True}

    logging.config.dictConfig(config)
    logging.captureWarnings(True)
    logger.debug("Logging configured", extra={"level": log_level, "json": json_logs})
