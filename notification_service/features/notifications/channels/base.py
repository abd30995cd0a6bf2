"""Base protocol and types for channel dispatchers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from notification_service.features.notifications.channels.errors import classify_error
from notification_service.features.notifications.enums import DevicePlatform, ErrorCategory, Priority

if TYPE_CHECKING:
    from uuid import UUID

    from notification_service.features.notifications.enums import Channel


class ProviderError(Exception):
    """A provider rejected or failed a request.

    Raised inside dispatchers only; ``send`` converts it to a failed
    :class:`DeliveryResult`.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


@dataclass
class DeliveryResult:
    """Result of a channel delivery attempt.

    Attributes:
        success: Whether the provider accepted the message
        message_id: Provider message id, when one is returned
        error: Provider error text if failed
        error_category: Classification of ``error``
        latency_ms: Time spent on the provider call
        exhausted: A budget or rate limit refused the send; do not retry
        invalid_tokens: Push tokens the provider reported as dead
        metadata: Channel-specific details
    """

    success: bool
    message_id: str | None = None
    error: str | None = None
    error_category: ErrorCategory | None = None
    latency_ms: int | None = None
    exhausted: bool = False
    invalid_tokens: list[str] = field(default_factory=list)
    metadata: dict[str, Any] | None = None

    @classmethod
    def ok(cls, message_id: str | None = None, **kwargs: Any) -> DeliveryResult:
        return cls(success=True, message_id=message_id, **kwargs)

    @classmethod
    def failure(cls, error: str | None, **kwargs: Any) -> DeliveryResult:
        """Failed result with ``error_category`` derived from the text."""
        return cls(success=False, error=error, error_category=classify_error(error), **kwargs)


@dataclass(frozen=True, slots=True)
class Device:
    token: str
    platform: DevicePlatform


@dataclass(frozen=True, slots=True)
class DeliveryTarget:
    """Where a notification goes: the recipient's resolved addresses."""

    user_id: str
    email: str | None = None
    first_name: str | None = None
    phone_number: str | None = None
    devices: tuple[Device, ...] = ()


@dataclass(frozen=True, slots=True)
class MessageContent:
    """What is delivered; identical across channels."""

    notification_id: UUID
    type: str
    title: str
    body: str
    data: dict[str, Any] | None = None
    priority: Priority = Priority.NORMAL


class ChannelDispatcher(Protocol):
    """Protocol for channel-specific notification dispatchers.

    Implementations never raise for provider failures; they return a
    failed :class:`DeliveryResult` instead.
    """

    channel: Channel

    def is_available(self) -> bool:
        """Whether the provider is configured."""
        ...

    async def send(self, target: DeliveryTarget, content: MessageContent) -> DeliveryResult:
        """Deliver ``content`` to ``target`` through this channel."""
        ...
