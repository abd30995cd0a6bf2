"""Push channel dispatcher: APNs for iOS devices, FCM for Android and Web.

Every active device of the recipient is attempted concurrently. The send
succeeds when at least one device accepts; tokens the provider reports as
dead are returned in ``DeliveryResult.invalid_tokens`` so the worker can
deactivate them.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import time
from typing import TYPE_CHECKING, Any

import httpx

from notification_service.features.notifications.channels.base import (
    DeliveryResult,
    ProviderError,
)
from notification_service.features.notifications.enums import Channel, DevicePlatform, Priority

if TYPE_CHECKING:
    from notification_service.core.settings import ProviderSettings
    from notification_service.features.notifications.channels.base import (
        DeliveryTarget,
        Device,
        MessageContent,
    )

logger = logging.getLogger(__name__)

# APNs reasons and FCM error codes meaning the token will never work again
APNS_INVALID_REASONS = frozenset(
    {
        "BadDeviceToken",
        "Unregistered",
        "DeviceTokenNotForTopic",
    }
)
FCM_INVALID_CODES = frozenset({"UNREGISTERED", "INVALID_ARGUMENT", "NOT_FOUND"})


@dataclass(slots=True)
class _DeviceOutcome:
    token: str
    message_id: str | None = None
    error: str | None = None
    invalid: bool = False


class _InvalidToken(ProviderError):
    """The provider will never accept this token again."""


def mask_token(token: str) -> str:
    if len(token) <= 12:
        return "***"
    return f"{token[:6]}...{token[-4:]}"


class PushDispatcher:
    """Dispatcher for mobile and web push notifications."""

    channel = Channel.PUSH

    def __init__(self, settings: ProviderSettings, client: httpx.AsyncClient) -> None:
        self._settings = settings
        self._client = client

    def is_available(self) -> bool:
        return self._settings.fcm_configured or self._settings.apns_configured

    async def send(self, target: DeliveryTarget, content: MessageContent) -> DeliveryResult:
        if not target.devices:
            return DeliveryResult.failure("No active device tokens")

        start = time.perf_counter()
        outcomes = await asyncio.gather(*(self._send_device(device, content) for device in target.devices))
        elapsed_ms = int((time.perf_counter() - start) * 1000)

        delivered = [o for o in outcomes if o.error is None]
        invalid = [o.token for o in outcomes if o.invalid]
        metadata = {"devices": len(outcomes), "accepted": len(delivered)}

        if invalid:
            logger.info(
                "Push provider rejected device tokens",
                extra={"user_id": target.user_id, "count": len(invalid)},
            )

        if delivered:
            return DeliveryResult.ok(
                delivered[0].message_id,
                latency_ms=elapsed_ms,
                invalid_tokens=invalid,
                metadata=metadata,
            )

        # All devices failed: report the first error as representative
        return DeliveryResult.failure(
            outcomes[0].error,
            latency_ms=elapsed_ms,
            invalid_tokens=invalid,
            metadata=metadata,
        )

    async def _send_device(self, device: Device, content: MessageContent) -> _DeviceOutcome:
        try:
            if device.platform == DevicePlatform.IOS:
                message_id = await self._send_apns(device.token, content)
            else:
                message_id = await self._send_fcm(device.token, content)
        except _InvalidToken as e:
            return _DeviceOutcome(device.token, error=str(e), invalid=True)
        except ProviderError as e:
            return _DeviceOutcome(device.token, error=str(e))
        except httpx.TimeoutException:
            return _DeviceOutcome(device.token, error="Push provider timeout")
        except httpx.HTTPError as e:
            return _DeviceOutcome(device.token, error=f"Push provider connection error: {e}")

        logger.debug(
            "Push accepted",
            extra={"token": mask_token(device.token), "platform": device.platform},
        )
        return _DeviceOutcome(device.token, message_id=message_id)

    # ──────────────────────────────────────────────────────────────
    # FCM (HTTP v1)
    # ──────────────────────────────────────────────────────────────

    async def _send_fcm(self, token: str, content: MessageContent) -> str | None:
        settings = self._settings
        if not settings.fcm_configured:
            msg = "FCM credentials not configured"
            raise ProviderError(msg)

        payload = {
            "message": {
                "token": token,
                "notification": {"title": content.title, "body": content.body},
                "data": _string_data(content),
                "android": {"priority": "high" if _is_urgent(content.priority) else "normal"},
            }
        }
        response = await self._client.post(
            settings.fcm_url.format(project_id=settings.fcm_project_id),
            json=payload,
            headers={"Authorization": f"Bearer {settings.fcm_access_token.get_secret_value()}"},
            timeout=settings.request_timeout,
        )

        if response.status_code == 200:
            return response.json().get("name")

        status, message = _fcm_error(response)
        if status == "UNREGISTERED" or response.status_code == 404:
            msg = "Device unregistered (FCM UNREGISTERED)"
            raise _InvalidToken(msg)
        if status in FCM_INVALID_CODES:
            msg = f"Invalid registration token ({status})"
            raise _InvalidToken(msg)
        msg = f"FCM error ({response.status_code}): {message}"
        raise ProviderError(msg, status_code=response.status_code)

    # ──────────────────────────────────────────────────────────────
    # APNs
    # ──────────────────────────────────────────────────────────────

    async def _send_apns(self, token: str, content: MessageContent) -> str | None:
        settings = self._settings
        if not settings.apns_configured:
            msg = "APNs credentials not configured"
            raise ProviderError(msg)

        payload: dict[str, Any] = {
            "aps": {
                "alert": {"title": content.title, "body": content.body},
                "sound": "default",
            },
            **_string_data(content),
        }
        response = await self._client.post(
            settings.apns_url.format(token=token),
            json=payload,
            headers={
                "authorization": f"bearer {settings.apns_auth_token.get_secret_value()}",
                "apns-topic": settings.apns_topic,
                "apns-push-type": "alert",
                "apns-priority": "10" if _is_urgent(content.priority) else "5",
            },
            timeout=settings.request_timeout,
        )

        if response.status_code == 200:
            return response.headers.get("apns-id")

        reason = _apns_reason(response)
        if reason == "Unregistered" or response.status_code == 410:
            msg = "Device unregistered (APNs Unregistered)"
            raise _InvalidToken(msg)
        if reason in APNS_INVALID_REASONS:
            msg = f"Invalid device token ({reason})"
            raise _InvalidToken(msg)
        msg = f"APNs error ({response.status_code}): {reason}"
        raise ProviderError(msg, status_code=response.status_code)


def _is_urgent(priority: Priority) -> bool:
    return priority in (Priority.CRITICAL, Priority.HIGH)


def _string_data(content: MessageContent) -> dict[str, str]:
    # Both providers require flat string values in custom data
    data = {key: str(value) for key, value in (content.data or {}).items()}
    data["notification_id"] = str(content.notification_id)
    data["type"] = content.type
    return data


def _fcm_error(response: httpx.Response) -> tuple[str, str]:
    try:
        error = response.json().get("error", {})
    except ValueError:
        return "UNKNOWN", response.text
    details = error.get("details") or []
    code = next((d.get("errorCode") for d in details if d.get("errorCode")), None)
    return code or error.get("status", "UNKNOWN"), error.get("message", response.text)


def _apns_reason(response: httpx.Response) -> str:
    try:
        return response.json().get("reason", "Unknown error")
    except ValueError:
        return response.text or "Unknown error"
