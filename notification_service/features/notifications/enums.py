"""Enumerations shared by the notification pipeline."""

from __future__ import annotations

from enum import StrEnum


class Channel(StrEnum):
    PUSH = "PUSH"
    EMAIL = "EMAIL"
    SMS = "SMS"
    WHATSAPP = "WHATSAPP"
    IN_APP = "IN_APP"


# Channels that reach an external provider and show up in per-channel metrics
EXTERNAL_CHANNELS = (Channel.PUSH, Channel.EMAIL, Channel.SMS, Channel.WHATSAPP)


class Priority(StrEnum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    NORMAL = "NORMAL"
    LOW = "LOW"

    @property
    def weight(self) -> int:
        """Queue ordering weight; lower is served first."""
        return _PRIORITY_WEIGHTS[self]


_PRIORITY_WEIGHTS = {
    Priority.CRITICAL: 1,
    Priority.HIGH: 5,
    Priority.NORMAL: 10,
    Priority.LOW: 15,
}


class NotificationStatus(StrEnum):
    """Lifecycle: PENDING -> SENT -> DELIVERED | FAILED."""

    PENDING = "PENDING"
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"


class DeliveryStatus(StrEnum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class JobState(StrEnum):
    WAITING = "WAITING"
    ACTIVE = "ACTIVE"
    DELAYED = "DELAYED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class DevicePlatform(StrEnum):
    IOS = "IOS"
    ANDROID = "ANDROID"
    WEB = "WEB"


class ErrorCategory(StrEnum):
    """Coarse provider failure taxonomy used for dashboards."""

    INVALID_TOKEN = "INVALID_TOKEN"
    UNREGISTERED_DEVICE = "UNREGISTERED_DEVICE"
    TIMEOUT = "TIMEOUT"
    RATE_LIMIT = "RATE_LIMIT"
    NETWORK_ERROR = "NETWORK_ERROR"
    AUTH_ERROR = "AUTH_ERROR"
    NOT_FOUND = "NOT_FOUND"
    OTHER = "OTHER"
    UNKNOWN = "UNKNOWN"


class NotificationType(StrEnum):
    """Well-known notification types emitted by business events."""

    BATCH_CREATED = "BATCH_CREATED"
    BATCH_STATUS_CHANGED = "BATCH_STATUS_CHANGED"
    CERTIFICATE_READY = "CERTIFICATE_READY"
    SENSOR_ALERT = "SENSOR_ALERT"
    ORDER_STATUS = "ORDER_STATUS"
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
    PRODUCER_WHITELISTED = "PRODUCER_WHITELISTED"
    WELCOME = "WELCOME"
    SYSTEM_ANNOUNCEMENT = "SYSTEM_ANNOUNCEMENT"
    TEST = "TEST"
