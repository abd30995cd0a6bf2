"""WhatsApp channel dispatcher over the Meta Cloud (Graph) API.

All message variants share one send path that enforces a daily message
budget. The budget counter lives in the shared counter store, keyed by the
UTC date, and falls back to an in-process count while the store is down.
A message is reserved against the budget before the call, so concurrent
senders cannot overshoot it, and released again when the provider rejects
it.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, date, datetime
import logging
import re
import time
from typing import TYPE_CHECKING, Any

import httpx

from notification_service.core.exceptions import ResourceExhaustedException
from notification_service.features.notifications.channels.base import DeliveryResult
from notification_service.features.notifications.enums import Channel, ErrorCategory

if TYPE_CHECKING:
    from collections.abc import Sequence

    from notification_service.core.settings import ProviderSettings
    from notification_service.features.notifications.channels.base import DeliveryTarget, MessageContent
    from notification_service.infra.cache import CounterStore
    from notification_service.infra.ratelimit import RateLimitStateTracker

logger = logging.getLogger(__name__)

BUDGET_EXHAUSTED = "Daily message limit reached"
MAX_BUTTONS = 3
MAX_BUTTON_TITLE = 20
# Budget keys outlive their day so late readers still see the final count
_BUDGET_TTL_MS = 48 * 3600 * 1000


def utc_today() -> date:
    return datetime.now(UTC).date()


def normalize_phone(phone: str) -> str:
    """Digits only, with Mexico's country code added to bare national numbers.

    Example:
        >>> normalize_phone("+52 (443) 123-4567")
        '524431234567'
        >>> normalize_phone("4431234567")
        '524431234567'
    """
    cleaned = re.sub(r"\D", "", phone)
    if cleaned.startswith("52") and len(cleaned) == 12:
        return cleaned
    if len(cleaned) == 10 and cleaned[0] != "0":
        return f"52{cleaned}"
    return cleaned


class DailyBudget:
    """Per-day message counter with an in-process fallback.

    Args:
        store: Shared counter store, or None to count locally only.
        limit: Messages allowed per UTC day.
        tracker: Degradation tracker notified of store failures.
        key_prefix: Counter key prefix; the ISO date is appended.
        today: Date source (injectable for tests).
    """

    def __init__(
        self,
        store: CounterStore | None,
        limit: int,
        *,
        tracker: RateLimitStateTracker | None = None,
        key_prefix: str = "whatsapp:daily",
        today: Callable[[], date] = utc_today,
    ) -> None:
        self._store = store
        self.limit = limit
        self._tracker = tracker
        self._key_prefix = key_prefix
        self._today = today
        self._local: dict[date, int] = {}

    def _key(self, day: date) -> str:
        return f"{self._key_prefix}:{day.isoformat()}"

    async def used(self) -> int:
        day = self._today()
        local = self._local.get(day, 0)
        if self._store is None:
            return local
        try:
            raw = await self._store.get(self._key(day))
        except Exception as e:
            self._record_failure(e)
            return local
        if self._tracker is not None:
            self._tracker.record_success()
        return max(int(raw or 0), local)

    async def reserve(self) -> int:
        """Claim one message from today's budget before sending it.

        Returns:
            Messages claimed today, this one included.

        Raises:
            ResourceExhaustedException: Nothing left today; nothing is claimed.
        """
        day = self._today()
        # Drop counts from previous days
        for stale in [d for d in self._local if d != day]:
            del self._local[stale]
        self._local[day] = self._local.get(day, 0) + 1
        count = self._local[day]

        if self._store is not None:
            try:
                count, _ = await self._store.incr_with_expiry(self._key(day), _BUDGET_TTL_MS)
            except Exception as e:
                self._record_failure(e)
                count = self._local[day]
            else:
                if self._tracker is not None:
                    self._tracker.record_success()
                if count > self.limit:
                    await self._release_in_store(day)

        if count > self.limit:
            self._local[day] -= 1
            raise ResourceExhaustedException(
                BUDGET_EXHAUSTED, extra={"limit": self.limit, "channel": Channel.WHATSAPP.value},
            )
        return count

    async def release(self) -> None:
        """Give back a reservation whose message was not sent."""
        day = self._today()
        if self._local.get(day, 0) > 0:
            self._local[day] -= 1
        await self._release_in_store(day)

    async def _release_in_store(self, day: date) -> None:
        if self._store is None:
            return
        try:
            await self._store.decr(self._key(day))
        except Exception as e:
            self._record_failure(e)

    def _record_failure(self, error: Exception) -> None:
        logger.warning("Budget counter store unavailable, using local count", extra={"error": str(error)})
        if self._tracker is not None:
            self._tracker.record_failure(str(error) or type(error).__name__)


class WhatsAppDispatcher:
    """Dispatcher for WhatsApp messages.

    ``send`` delivers a notification as a text message; ``send_template``
    and ``send_buttons`` expose the richer message types with the same
    result contract.
    """

    channel = Channel.WHATSAPP

    def __init__(
        self,
        settings: ProviderSettings,
        client: httpx.AsyncClient,
        budget: DailyBudget,
    ) -> None:
        self._settings = settings
        self._client = client
        self.budget = budget

    def is_available(self) -> bool:
        return self._settings.whatsapp_configured

    @property
    def messages_url(self) -> str:
        return f"{self._settings.whatsapp_api_url}/{self._settings.whatsapp_phone_number_id}/messages"

    async def send(self, target: DeliveryTarget, content: MessageContent) -> DeliveryResult:
        if not target.phone_number:
            return DeliveryResult.failure("User phone number not available")
        return await self.send_text(target.phone_number, f"*{content.title}*\n\n{content.body}")

    async def send_text(self, to: str, text: str) -> DeliveryResult:
        return await self._send_message(
            to,
            {"type": "text", "text": {"body": text, "preview_url": False}},
        )

    async def send_template(
        self,
        to: str,
        name: str,
        language: str = "es",
        params: Sequence[str] | None = None,
    ) -> DeliveryResult:
        template: dict[str, Any] = {"name": name, "language": {"code": language}}
        if params:
            template["components"] = [
                {"type": "body", "parameters": [{"type": "text", "text": p} for p in params]},
            ]
        return await self._send_message(to, {"type": "template", "template": template})

    async def send_buttons(
        self,
        to: str,
        body: str,
        buttons: Sequence[tuple[str, str]],
        header: str | None = None,
        footer: str | None = None,
    ) -> DeliveryResult:
        """Interactive reply buttons as ``(id, title)`` pairs.

        Only the first three buttons are sent and titles are cut to 20
        characters, the Cloud API's limits.
        """
        interactive: dict[str, Any] = {
            "type": "button",
            "body": {"text": body},
            "action": {
                "buttons": [
                    {"type": "reply", "reply": {"id": button_id, "title": title[:MAX_BUTTON_TITLE]}}
                    for button_id, title in buttons[:MAX_BUTTONS]
                ],
            },
        }
        if header:
            interactive["header"] = {"type": "text", "text": header}
        if footer:
            interactive["footer"] = {"text": footer}
        return await self._send_message(to, {"type": "interactive", "interactive": interactive})

    async def _send_message(self, to: str, message: dict[str, Any]) -> DeliveryResult:
        if not self.is_available():
            return DeliveryResult.failure("WhatsApp credentials not configured")
        try:
            sent_today = await self.budget.reserve()
        except ResourceExhaustedException as exc:
            logger.warning("WhatsApp daily message limit reached", extra={"limit": self.budget.limit})
            return DeliveryResult(
                success=False,
                error=exc.detail,
                error_category=ErrorCategory.RATE_LIMIT,
                exhausted=True,
            )

        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": normalize_phone(to),
            **message,
        }
        start = time.perf_counter()
        try:
            response = await self._client.post(
                self.messages_url,
                json=payload,
                headers={"Authorization": f"Bearer {self._settings.whatsapp_access_token.get_secret_value()}"},
                timeout=self._settings.request_timeout,
            )
        except httpx.TimeoutException:
            # The provider may still have accepted the message; keep the reservation
            return DeliveryResult.failure("WhatsApp API timeout", latency_ms=_elapsed(start))
        except httpx.HTTPError as e:
            await self.budget.release()
            return DeliveryResult.failure(f"WhatsApp connection error: {e}", latency_ms=_elapsed(start))

        elapsed_ms = _elapsed(start)
        try:
            data = response.json()
        except ValueError:
            data = {}

        if not response.is_success:
            error = (data.get("error") or {}).get("message") or response.text or "Unknown error"
            logger.error(
                "WhatsApp API error",
                extra={"status": response.status_code, "error": error},
            )
            await self.budget.release()
            return DeliveryResult.failure(
                f"WhatsApp API error ({response.status_code}): {error}",
                latency_ms=elapsed_ms,
            )

        messages = data.get("messages") or [{}]
        message_id = messages[0].get("id")
        logger.info("WhatsApp message sent", extra={"message_id": message_id, "sent_today": sent_today})
        return DeliveryResult.ok(message_id, latency_ms=elapsed_ms)


def _elapsed(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)
