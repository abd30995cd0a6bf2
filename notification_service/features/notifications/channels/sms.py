"""SMS channel dispatcher over the Twilio REST API."""

from __future__ import annotations

import logging
import math
import re
import time
from typing import TYPE_CHECKING

import httpx

from notification_service.features.notifications.channels.base import DeliveryResult
from notification_service.features.notifications.enums import Channel

if TYPE_CHECKING:
    from notification_service.core.settings import ProviderSettings
    from notification_service.features.notifications.channels.base import DeliveryTarget, MessageContent

logger = logging.getLogger(__name__)

E164_PATTERN = re.compile(r"^\+[1-9]\d{7,14}$")
MAX_SMS_LENGTH = 1600
SEGMENT_LENGTH = 160


def is_e164(phone_number: str) -> bool:
    """``+`` then country code and subscriber number, 8 to 15 digits."""
    return bool(E164_PATTERN.match(phone_number))


def truncate_body(body: str, limit: int = MAX_SMS_LENGTH) -> str:
    if len(body) <= limit:
        return body
    return body[: limit - 3] + "..."


def mask_phone(phone_number: str) -> str:
    if len(phone_number) < 8:
        return "***"
    return f"{phone_number[:4]}***{phone_number[-2:]}"


class SmsDispatcher:
    """Dispatcher for SMS notifications.

    The message is the title and body joined on one line; anything past
    1600 characters is cut and marked with an ellipsis.
    """

    channel = Channel.SMS

    def __init__(self, settings: ProviderSettings, client: httpx.AsyncClient) -> None:
        self._settings = settings
        self._client = client

    def is_available(self) -> bool:
        return self._settings.twilio_configured

    async def send(self, target: DeliveryTarget, content: MessageContent) -> DeliveryResult:
        phone = target.phone_number
        if not phone:
            return DeliveryResult.failure("User phone number not available")
        if not is_e164(phone):
            return DeliveryResult.failure("Invalid phone number format. Use E.164 format (+521234567890)")
        if not self.is_available():
            return DeliveryResult.failure("Twilio credentials not configured")

        body = truncate_body(f"{content.title}: {content.body}")
        settings = self._settings
        start = time.perf_counter()
        try:
            response = await self._client.post(
                settings.twilio_url.format(account_sid=settings.twilio_account_sid),
                data={"To": phone, "From": settings.twilio_from_number, "Body": body},
                auth=(settings.twilio_account_sid, settings.twilio_auth_token.get_secret_value()),
                timeout=settings.request_timeout,
            )
        except httpx.TimeoutException:
            return DeliveryResult.failure("Twilio API timeout", latency_ms=_elapsed(start))
        except httpx.HTTPError as e:
            return DeliveryResult.failure(f"Twilio connection error: {e}", latency_ms=_elapsed(start))

        elapsed_ms = _elapsed(start)
        if response.status_code in (200, 201):
            sid = response.json().get("sid")
            logger.info(
                "SMS sent",
                extra={
                    "to": mask_phone(phone),
                    "sid": sid,
                    "segments": math.ceil(len(body) / SEGMENT_LENGTH),
                },
            )
            return DeliveryResult.ok(sid, latency_ms=elapsed_ms)

        error = _twilio_error(response)
        logger.warning("SMS send failed", extra={"to": mask_phone(phone), "error": error})
        return DeliveryResult.failure(error, latency_ms=elapsed_ms)


def _elapsed(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _twilio_error(response: httpx.Response) -> str:
    if response.status_code == 429:
        return "Twilio rate limit exceeded"
    if response.status_code == 401:
        return "Twilio authentication failed"
    try:
        body = response.json()
    except ValueError:
        return f"Twilio API error ({response.status_code}): {response.text}"
    return f"Twilio API error ({response.status_code}, code {body.get('code')}): {body.get('message')}"
