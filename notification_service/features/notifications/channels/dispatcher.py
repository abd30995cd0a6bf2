"""Channel registry and concurrent fan-out."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, assert_never

from notification_service.features.notifications.channels.base import DeliveryResult
from notification_service.features.notifications.enums import Channel

if TYPE_CHECKING:
    from collections.abc import Iterable

    from notification_service.features.notifications.channels.base import (
        ChannelDispatcher,
        DeliveryTarget,
        MessageContent,
    )
    from notification_service.features.notifications.channels.email import EmailDispatcher
    from notification_service.features.notifications.channels.in_app import InAppDispatcher
    from notification_service.features.notifications.channels.push import PushDispatcher
    from notification_service.features.notifications.channels.sms import SmsDispatcher
    from notification_service.features.notifications.channels.whatsapp import WhatsAppDispatcher

logger = logging.getLogger(__name__)


class ChannelRouter:
    """Maps each :class:`Channel` to its dispatcher and fans out sends.

    Example:
        router = ChannelRouter(push=push, email=email, sms=sms, whatsapp=wa, in_app=InAppDispatcher())
        results = await router.dispatch([Channel.PUSH, Channel.EMAIL], target, content)
    """

    def __init__(
        self,
        *,
        push: PushDispatcher,
        email: EmailDispatcher,
        sms: SmsDispatcher,
        whatsapp: WhatsAppDispatcher,
        in_app: InAppDispatcher,
    ) -> None:
        self.push = push
        self.email = email
        self.sms = sms
        self.whatsapp = whatsapp
        self.in_app = in_app

    def get(self, channel: Channel) -> ChannelDispatcher:
        match channel:
            case Channel.PUSH:
                return self.push
            case Channel.EMAIL:
                return self.email
            case Channel.SMS:
                return self.sms
            case Channel.WHATSAPP:
                return self.whatsapp
            case Channel.IN_APP:
                return self.in_app
            case _:
                assert_never(channel)

    def availability(self) -> dict[Channel, bool]:
        return {channel: self.get(channel).is_available() for channel in Channel}

    async def send(self, channel: Channel, target: DeliveryTarget, content: MessageContent) -> DeliveryResult:
        """Send through one channel; never raises.

        An exception escaping a dispatcher is converted into a failed result
        so one broken channel cannot abort the others.
        """
        start = time.perf_counter()
        try:
            result = await self.get(channel).send(target, content)
        except Exception as exc:
            logger.exception(
                "Dispatcher raised",
                extra={"channel": channel, "notification_id": str(content.notification_id)},
            )
            result = DeliveryResult.failure(str(exc) or type(exc).__name__)
        if result.latency_ms is None:
            result.latency_ms = int((time.perf_counter() - start) * 1000)
        return result

    async def dispatch(
        self,
        channels: Iterable[Channel],
        target: DeliveryTarget,
        content: MessageContent,
    ) -> dict[Channel, DeliveryResult]:
        """Send through every channel concurrently."""
        ordered = list(dict.fromkeys(channels))
        results = await asyncio.gather(*(self.send(channel, target, content) for channel in ordered))
        return dict(zip(ordered, results, strict=True))
