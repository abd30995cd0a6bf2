"""In-app channel dispatcher for database-only notifications."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from notification_service.features.notifications.channels.base import DeliveryResult
from notification_service.features.notifications.enums import Channel

if TYPE_CHECKING:
    from notification_service.features.notifications.channels.base import DeliveryTarget, MessageContent

logger = logging.getLogger(__name__)


class InAppDispatcher:
    """Dispatcher for in-app notifications.

    The notification row is itself the in-app record, so there is nothing
    to call and delivery always succeeds. Clients read it through the
    notifications API.
    """

    channel = Channel.IN_APP

    def is_available(self) -> bool:
        return True

    async def send(self, target: DeliveryTarget, content: MessageContent) -> DeliveryResult:
        logger.debug(
            "In-app notification available",
            extra={"notification_id": str(content.notification_id), "user_id": target.user_id},
        )
        return DeliveryResult.ok(str(content.notification_id), latency_ms=0)
