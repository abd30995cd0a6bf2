"""Custom exception classes for the application."""

from __future__ import annotations

from typing import Any


class AppException(Exception):
    """Base application exception.

    Follows RFC 7807 Problem Details for HTTP APIs; the exception handlers
    render every subclass as ``application/problem+json``.

    Attributes:
        status_code: HTTP status code for the error.
        detail: Human-readable error message.
        type: Error type identifier (used in RFC 7807 problem details).
        title: Short, human-readable summary of the problem type.
        instance: URI reference that identifies the specific occurrence.
        extra: Additional context-specific information about the error.

    Example:
        raise AppException(
            status_code=404,
            detail="Notification not found",
            type="notification-not-found",
            extra={"notification_id": "0192..."},
        )
    """

    def __init__(
        self,
        status_code: int,
        detail: str,
        type: str = "about:blank",
        title: str | None = None,
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        self.status_code = status_code
        self.detail = detail
        self.type = type
        self.title = title or self._default_title(status_code)
        self.instance = instance
        self.extra = extra or {}
        super().__init__(detail)

    @staticmethod
    def _default_title(status_code: int) -> str:
        titles = {
            400: "Bad Request",
            401: "Unauthorized",
            403: "Forbidden",
            404: "Not Found",
            409: "Conflict",
            422: "Unprocessable Entity",
            429: "Too Many Requests",
            500: "Internal Server Error",
            503: "Service Unavailable",
        }
        return titles.get(status_code, "Error")


class NotFoundException(AppException):
    """Exception raised when a resource is not found."""

    def __init__(
        self,
        detail: str,
        type: str = "not-found",
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            status_code=404, detail=detail, type=type, title="Not Found",
            instance=instance, extra=extra,
        )


class ValidationException(AppException):
    """Exception raised for invalid notification requests.

    Raised before any I/O happens, so nothing is persisted or queued.

    Example:
        raise ValidationException(
            detail="title must be less than 255 characters",
            extra={"field": "title", "length": 256},
        )
    """

    def __init__(
        self,
        detail: str,
        type: str = "validation-error",
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            status_code=422, detail=detail, type=type, title="Validation Error",
            instance=instance, extra=extra,
        )


class UnauthorizedException(AppException):
    """Exception raised when the caller cannot be identified."""

    def __init__(
        self,
        detail: str,
        type: str = "unauthorized",
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            status_code=401, detail=detail, type=type, title="Unauthorized",
            instance=instance, extra=extra,
        )


class ForbiddenException(AppException):
    """Exception raised when the caller does not own the resource.

    Example:
        raise ForbiddenException(
            detail="Notification belongs to another user",
            extra={"notification_id": str(notification.id)},
        )
    """

    def __init__(
        self,
        detail: str,
        type: str = "forbidden",
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            status_code=403, detail=detail, type=type, title="Forbidden",
            instance=instance, extra=extra,
        )


class InactiveAccountException(ForbiddenException):
    """Raised when notifying a user whose account is deactivated."""

    def __init__(self, user_id: str) -> None:
        super().__init__(
            detail="User account is inactive",
            type="inactive-account",
            extra={"user_id": user_id},
        )


class BadRequestException(AppException):
    """Exception raised for malformed requests."""

    def __init__(
        self,
        detail: str,
        type: str = "bad-request",
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            status_code=400, detail=detail, type=type, title="Bad Request",
            instance=instance, extra=extra,
        )


class NoChannelsAvailableException(AppException):
    """Raised when user preferences leave no channel to deliver on."""

    def __init__(self, user_id: str, requested: list[str]) -> None:
        super().__init__(
            status_code=422,
            detail="No channels available for user",
            type="no-channels-available",
            title="No Channels Available",
            extra={"user_id": user_id, "requested_channels": requested},
        )


class RateLimitException(AppException):
    """Exception raised when rate limit is exceeded.

    Example:
        raise RateLimitException(
            detail="Too many requests",
            extra={"retry_after": 60, "limit": 100, "window": 60},
        )
    """

    def __init__(
        self,
        detail: str,
        type: str = "rate-limit-exceeded",
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
        *,
        status_code: int = 429,
    ) -> None:
        super().__init__(
            status_code=status_code, detail=detail, type=type, title="Too Many Requests",
            instance=instance, extra=extra,
        )


class ResourceExhaustedException(RateLimitException):
    """A fixed budget such as a provider's daily message quota is used up.

    Not retried automatically; the budget resets at a calendar boundary.
    """

    def __init__(self, detail: str, extra: dict[str, Any] | None = None) -> None:
        super().__init__(detail=detail, type="resource-exhausted", extra=extra)


class ServiceUnavailableException(AppException):
    """Exception raised when a service is temporarily unavailable."""

    def __init__(
        self,
        detail: str,
        type: str = "service-unavailable",
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            status_code=503, detail=detail, type=type, title="Service Unavailable",
            instance=instance, extra=extra,
        )
