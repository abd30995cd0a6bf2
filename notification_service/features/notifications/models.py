"""SQLAlchemy models for the notifications feature."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from notification_service.core.database import (
    Base,
    StringArray,
    UTCDateTime,
    UUIDv7PKMixin,
    UUIDv7TimestampedBase,
    utcnow,
)
from notification_service.features.notifications.enums import (
    DevicePlatform,
    JobState,
    NotificationStatus,
    Priority,
)

JSONType = JSONB().with_variant(JSON(), "sqlite")


class Notification(UUIDv7TimestampedBase):
    """Record of truth for one notification sent to one user.

    Status moves PENDING -> SENT -> DELIVERED | FAILED and never backwards.
    ``read_at`` and ``clicked_at`` are orthogonal flags set by the recipient.

    Indexes:
        - (user_id, status) for inbox listings and unread counts
        - (status, created_at) for windowed metrics
    """

    __tablename__ = "notifications"

    user_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
        comment="Recipient user id",
    )
    type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
        comment="Business event type (e.g. BATCH_CREATED)",
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False, comment="Notification title")
    body: Mapped[str] = mapped_column(Text(), nullable=False, comment="Plain text body")
    data: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType,
        nullable=True,
        comment="Opaque payload forwarded to clients",
    )
    channels: Mapped[list[str]] = mapped_column(
        StringArray(),
        nullable=False,
        default=list,
        comment="Effective channels after preference filtering",
    )
    priority: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=Priority.NORMAL,
        comment="CRITICAL, HIGH, NORMAL or LOW",
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=NotificationStatus.PENDING,
        comment="PENDING, SENT, DELIVERED or FAILED",
    )
    sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    read_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    clicked_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
        comment="Deliveries are skipped once this passes",
    )

    __table_args__ = (
        Index("idx_notification_user_status", "user_id", "status"),
        Index("idx_notification_status_created", "status", "created_at"),
    )

    @property
    def is_read(self) -> bool:
        return self.read_at is not None


class DeliveryLog(Base, UUIDv7PKMixin):
    """Outcome of one channel attempt. Rows are written once, never updated.

    The (notification_id, channel, attempt) key makes replayed writes a
    no-op so aggregates computed from this table never double count.
    There is deliberately no foreign key: the audit trail outlives a
    notification deleted by its recipient.
    """

    __tablename__ = "notification_delivery_logs"

    notification_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    channel: Mapped[str] = mapped_column(String(20), nullable=False)
    attempt: Mapped[int] = mapped_column(Integer(), nullable=False, comment="1-based attempt number")
    status: Mapped[str] = mapped_column(String(20), nullable=False, comment="SUCCESS or FAILED")
    provider_error: Mapped[str | None] = mapped_column(Text(), nullable=True)
    error_category: Mapped[str | None] = mapped_column(String(32), nullable=True)
    provider_message_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    latency_ms: Mapped[int | None] = mapped_column(Integer(), nullable=True)
    attempted_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("notification_id", "channel", "attempt", name="uq_delivery_log_attempt"),
        Index("idx_delivery_log_channel_attempted", "channel", "attempted_at"),
    )


class NotificationPreference(UUIDv7TimestampedBase):
    """Per-user channel switches, quiet hours and contact details.

    IN_APP is always deliverable; its flag only controls client display.
    Quiet hours are "HH:MM" strings in the user's ``timezone``; a window
    may wrap midnight (22:00-07:00).
    """

    __tablename__ = "notification_preferences"

    user_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    push_enabled: Mapped[bool] = mapped_column(Boolean(), default=True, nullable=False)
    email_enabled: Mapped[bool] = mapped_column(Boolean(), default=True, nullable=False)
    sms_enabled: Mapped[bool] = mapped_column(Boolean(), default=False, nullable=False)
    whatsapp_enabled: Mapped[bool] = mapped_column(Boolean(), default=False, nullable=False)
    in_app_enabled: Mapped[bool] = mapped_column(Boolean(), default=True, nullable=False)
    quiet_hours_start: Mapped[str | None] = mapped_column(String(5), nullable=True)
    quiet_hours_end: Mapped[str | None] = mapped_column(String(5), nullable=True)
    phone_number: Mapped[str | None] = mapped_column(
        String(32),
        nullable=True,
        comment="Destination for SMS and WhatsApp",
    )
    timezone: Mapped[str] = mapped_column(String(64), default="UTC", nullable=False)


class DeviceToken(UUIDv7TimestampedBase):
    """Push registration for one device."""

    __tablename__ = "device_tokens"

    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    token: Mapped[str] = mapped_column(String(512), nullable=False, unique=True)
    platform: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=DevicePlatform.ANDROID,
        comment="IOS routes through APNs, ANDROID/WEB through FCM",
    )
    is_active: Mapped[bool] = mapped_column(Boolean(), default=True, nullable=False)
    last_used_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)


class NotificationJob(UUIDv7TimestampedBase):
    """Durable queue entry driving delivery of one notification.

    Separate from :class:`Notification` so queue bookkeeping can be purged
    without touching the record of truth.

    Indexes:
        - (state, priority_weight, created_at) for lane ordering
        - (state, next_run_at) for delayed retries
    """

    __tablename__ = "notification_jobs"

    notification_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    channels: Mapped[list[str]] = mapped_column(StringArray(), nullable=False, default=list)
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default=Priority.NORMAL)
    priority_weight: Mapped[int] = mapped_column(Integer(), nullable=False, default=10)
    state: Mapped[str] = mapped_column(String(20), nullable=False, default=JobState.WAITING)
    attempts: Mapped[dict[str, int]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        comment="Attempts made per channel",
    )
    succeeded_channels: Mapped[list[str]] = mapped_column(
        StringArray(),
        nullable=False,
        default=list,
        comment="Channels with a confirmed delivery",
    )
    next_run_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    leased_until: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    locked_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text(), nullable=True)

    __table_args__ = (
        Index("idx_job_state_lane", "state", "priority_weight", "created_at"),
        Index("idx_job_state_next_run", "state", "next_run_at"),
    )
