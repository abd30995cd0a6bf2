"""Pydantic schemas for the notifications feature."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from notification_service.features.notifications.enums import (
    Channel,
    DevicePlatform,
    ErrorCategory,
    Priority,
)

# ============================================================================
# Sending
# ============================================================================


class SendNotificationRequest(BaseModel):
    """Request to notify one user.

    Field limits are checked by the orchestrator, not by pydantic, so that
    programmatic callers and the HTTP test endpoint get the same messages.
    """

    user_id: str = Field(default="", description="Recipient user id")
    type: str = Field(default="", description="Business event type")
    title: str = Field(default="", description="Title, at most 255 characters")
    body: str = Field(default="", description="Body, at most 5000 characters")
    data: dict[str, Any] | None = Field(default=None, description="Opaque client payload")
    channels: list[Channel] = Field(default_factory=list, description="Requested channels")
    priority: Priority = Field(default=Priority.NORMAL, description="Queue priority")
    expires_at: datetime | None = Field(default=None, description="Skip delivery after this time")


class SendResult(BaseModel):
    """Outcome of a send request."""

    success: bool
    notification_id: UUID | None = None
    channels: list[Channel] = Field(default_factory=list)
    error: str | None = None


class BulkSendResult(BaseModel):
    requested: int
    succeeded: int
    failed: int


class BroadcastRequest(BaseModel):
    title: str | None = None
    body: str | None = None
    data: dict[str, Any] | None = None


class BroadcastResponse(BaseModel):
    accepted: bool
    message: str


# ============================================================================
# Read API
# ============================================================================


class NotificationResponse(BaseModel):
    """Representation of a notification returned from the API."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: str
    type: str
    title: str
    body: str
    data: dict[str, Any] | None = None
    channels: list[str]
    priority: str
    status: str
    created_at: datetime
    sent_at: datetime | None = None
    delivered_at: datetime | None = None
    read_at: datetime | None = None
    clicked_at: datetime | None = None
    expires_at: datetime | None = None


class PaginationMeta(BaseModel):
    limit: int
    offset: int
    total: int
    has_more: bool


class NotificationListResponse(BaseModel):
    notifications: list[NotificationResponse]
    unread_count: int
    pagination: PaginationMeta


class UnreadCountResponse(BaseModel):
    count: int


class MarkAllReadResponse(BaseModel):
    updated: int


class NotificationStats(BaseModel):
    """Counts and rates for one user or the whole system.

    ``delivery_rate`` is (delivered + read) / total and ``read_rate`` is
    read / delivered, both as percentages and 0 when undefined.
    """

    total: int
    pending: int
    sent: int
    delivered: int
    failed: int
    read: int
    clicked: int
    delivery_rate: float
    read_rate: float


# ============================================================================
# Preferences and devices
# ============================================================================


class PreferenceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    push_enabled: bool
    email_enabled: bool
    sms_enabled: bool
    whatsapp_enabled: bool
    in_app_enabled: bool
    quiet_hours_start: str | None = None
    quiet_hours_end: str | None = None
    phone_number: str | None = None
    timezone: str


class PreferenceUpdate(BaseModel):
    """Partial preference update; omitted fields are left unchanged."""

    push_enabled: bool | None = None
    email_enabled: bool | None = None
    sms_enabled: bool | None = None
    whatsapp_enabled: bool | None = None
    in_app_enabled: bool | None = None
    quiet_hours_start: str | None = Field(default=None, pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    quiet_hours_end: str | None = Field(default=None, pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    phone_number: str | None = Field(default=None, max_length=32)
    timezone: str | None = Field(default=None, max_length=64)


class DeviceRegisterRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=512)
    platform: DevicePlatform = DevicePlatform.ANDROID


class DeviceTokenResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    token: str
    platform: str
    is_active: bool


# ============================================================================
# Queue administration
# ============================================================================


class QueueStats(BaseModel):
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0
    paused: bool = False


class CleanQueueRequest(BaseModel):
    age_hours: int = Field(default=24, ge=1, le=24 * 365)


class CleanQueueResponse(BaseModel):
    removed: int
    age_hours: int


class QueueControlResponse(BaseModel):
    paused: bool


# ============================================================================
# Metrics and health
# ============================================================================


class ChannelMetrics(BaseModel):
    channel: Channel
    total: int
    delivered: int
    rate: float
    avg_latency_ms: int


class ErrorMetric(BaseModel):
    category: ErrorCategory
    count: int
    percentage: float


class MetricsSnapshot(BaseModel):
    period_hours: int
    since: datetime
    sent: int
    delivered: int
    failed: int
    delivery_rate: float
    avg_latency_ms: int
    queue_depth: int
    channels: list[ChannelMetrics]
    errors: list[ErrorMetric]


class HealthStatus(BaseModel):
    healthy: bool
    delivery_rate: float
    queue_depth: int
    checks: dict[str, bool]


class TypeCount(BaseModel):
    type: str
    count: int


class VolumeBucket(BaseModel):
    start: datetime
    count: int
