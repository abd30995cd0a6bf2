"""LRU-cached settings loaders.

Settings are validated once and cached for the lifetime of the process.

Testing:
    Clear the cache to force a reload after changing the environment:
    get_notification_settings.cache_clear()

    Or construct settings directly:
    settings = NotificationSettings(max_attempts=1)
"""

from __future__ import annotations

from functools import lru_cache

from .app import AppSettings
from .database import DatabaseSettings
from .logs import LoggingSettings
from .notifications import NotificationSettings, RateLimitSettings
from .providers import ProviderSettings
from .redis import RedisSettings
from .tasks import TaskSettings


@lru_cache(maxsize=1)
def get_app_settings() -> AppSettings:
    """Get cached application settings."""
    return AppSettings()


@lru_cache(maxsize=1)
def get_db_settings() -> DatabaseSettings:
    """Get cached database settings."""
    return DatabaseSettings()


@lru_cache(maxsize=1)
def get_redis_settings() -> RedisSettings:
    """Get cached Redis settings."""
    return RedisSettings()


@lru_cache(maxsize=1)
def get_logging_settings() -> LoggingSettings:
    """Get cached logging settings."""
    return LoggingSettings()


@lru_cache(maxsize=1)
def get_notification_settings() -> NotificationSettings:
    """Get cached queue/worker/health settings."""
    return NotificationSettings()


@lru_cache(maxsize=1)
def get_rate_limit_settings() -> RateLimitSettings:
    """Get cached rate limiter settings."""
    return RateLimitSettings()


@lru_cache(maxsize=1)
def get_provider_settings() -> ProviderSettings:
    """Get cached provider credentials."""
    return ProviderSettings()


@lru_cache(maxsize=1)
def get_task_settings() -> TaskSettings:
    """Get cached background task settings."""
    return TaskSettings()


def clear_all_settings_caches() -> None:
    """Reset every cached loader (tests)."""
    for loader in (
        get_app_settings,
        get_db_settings,
        get_redis_settings,
        get_logging_settings,
        get_notification_settings,
        get_rate_limit_settings,
        get_provider_settings,
        get_task_settings,
    ):
        loader.cache_clear()
