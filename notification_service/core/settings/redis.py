"""Redis settings for the shared counter store."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

from pydantic import Field, SecretStr, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RedisSettings(BaseSettings):
    """Redis connection settings.

    Environment variables use REDIS_ prefix.
    Example: REDIS_HOST=redis, REDIS_PORT=6379

    Redis backs rate-limit counters, the token blacklist, the WhatsApp daily
    budget and the queue pause flag. When it is not configured those
    features run on their in-process fallbacks.
    """

    enabled: bool = Field(default=True, description="Connect to Redis at startup")
    host: str = Field(default="localhost", description="Redis server hostname or IP address")
    port: int = Field(default=6379, ge=1, le=65535, description="Redis server port")
    db: int = Field(default=0, ge=0, le=15, description="Redis database number (0-15)")
    username: str | None = Field(default=None, description="Redis username (Redis 6+ ACL)")
    password: SecretStr | None = Field(default=None, description="Redis password")
    ssl_enabled: bool = Field(default=False, description="Use rediss:// scheme")

    max_connections: int = Field(default=50, ge=1, le=1000, description="Pool size")
    socket_timeout: float = Field(default=2.0, ge=0.1, le=30.0, description="Operation timeout")
    socket_connect_timeout: float = Field(
        default=2.0, ge=0.1, le=30.0, description="Connection timeout",
    )

    key_prefix: str = Field(
        default="notifications:",
        min_length=1,
        max_length=100,
        pattern=r"^[a-zA-Z0-9_-]+:?$",
        description="Prefix for every key written by the service",
    )

    @computed_field
    @property
    def url(self) -> str:
        """Build Redis URL: redis[s]://[username:password@]host:port/db."""
        scheme = "rediss" if self.ssl_enabled else "redis"
        auth = ""
        if self.password:
            secret = quote(self.password.get_secret_value())
            user = quote(self.username) if self.username else ""
            auth = f"{user}:{secret}@"
        return f"{scheme}://{auth}{self.host}:{self.port}/{self.db}"

    def connection_pool_kwargs(self) -> dict[str, Any]:
        """Return kwargs for ``redis.asyncio.ConnectionPool.from_url``."""
        return {
            "max_connections": self.max_connections,
            "socket_timeout": self.socket_timeout,
            "socket_connect_timeout": self.socket_connect_timeout,
            "decode_responses": True,
            "encoding": "utf-8",
        }

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )
