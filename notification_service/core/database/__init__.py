"""Database foundations: declarative base, column types and repositories."""

from .base import (
    Base,
    TimestampMixin,
    UUIDv7PKMixin,
    UUIDv7TimestampedBase,
    generate_uuid7,
    utcnow,
)
from .exceptions import NotFoundError, RepositoryError
from .repository import BaseRepository, SearchResult
from .types import StringArray, UTCDateTime

__all__ = [
    "Base",
    "BaseRepository",
    "NotFoundError",
    "RepositoryError",
    "SearchResult",
    "StringArray",
    "TimestampMixin",
    "UTCDateTime",
    "UUIDv7PKMixin",
    "UUIDv7TimestampedBase",
    "generate_uuid7",
    "utcnow",
]
