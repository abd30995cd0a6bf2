"""Base class for business services."""

from __future__ import annotations

import logging

from notification_service.infra.logging import get_lazy_logger


class BaseService:
    """Gives every service a named logger pair.

    Loggers:
        - self.logger: INFO and above, always evaluated
        - self._lazy: DEBUG messages built from callables, skipped when
          DEBUG is off

    Example:
        class NotificationOrchestrator(BaseService):
            async def send_notification(self, session, request):
                self.logger.info("Notification created", extra={"user_id": request.user_id})
                self._lazy.debug(lambda: f"channels={sorted(channels)}")
    """

    def __init__(self) -> None:
        name = self.__class__.__name__
        self.logger = logging.getLogger(name)
        self._lazy = get_lazy_logger(name)
