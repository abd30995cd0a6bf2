"""Modular Pydantic Settings v2 configuration.

Import settings via the cached loaders:
    from notification_service.core.settings import get_notification_settings

Configuration precedence (highest to lowest):
    1. init kwargs (testing/overrides)
    2. Environment variables
    3. .env file
"""

from __future__ import annotations

from .app import AppSettings
from .database import DatabaseSettings
from .loader import (
    clear_all_settings_caches,
    get_app_settings,
    get_db_settings,
    get_logging_settings,
    get_notification_settings,
    get_provider_settings,
    get_rate_limit_settings,
    get_redis_settings,
    get_task_settings,
)
from .logs import LoggingSettings
from .notifications import NotificationSettings, RateLimitSettings
from .providers import ProviderSettings
from .redis import RedisSettings
from .tasks import TaskSettings

__all__ = [
    "AppSettings",
    "DatabaseSettings",
    "LoggingSettings",
    "NotificationSettings",
    "ProviderSettings",
    "RateLimitSettings",
    "RedisSettings",
    "TaskSettings",
    "clear_all_settings_caches",
    "get_app_settings",
    "get_db_settings",
    "get_logging_settings",
    "get_notification_settings",
    "get_provider_settings",
    "get_rate_limit_settings",
    "get_redis_settings",
    "get_task_settings",
]
