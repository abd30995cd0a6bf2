"""Email channel dispatcher over SMTP (aiosmtplib)."""

from __future__ import annotations

from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formatdate, make_msgid
import html
import logging
import ssl
import time
from typing import TYPE_CHECKING

import aiosmtplib

from notification_service.features.notifications.channels.base import DeliveryResult
from notification_service.features.notifications.enums import Channel

if TYPE_CHECKING:
    from notification_service.core.settings import ProviderSettings
    from notification_service.features.notifications.channels.base import DeliveryTarget, MessageContent

logger = logging.getLogger(__name__)


class EmailDispatcher:
    """Dispatcher for email notifications.

    Supports STARTTLS (port 587), implicit TLS (port 465) and plain SMTP.
    The recipient address comes from the user directory.
    """

    channel = Channel.EMAIL

    def __init__(self, settings: ProviderSettings) -> None:
        self._settings = settings

    def is_available(self) -> bool:
        return self._settings.smtp_configured

    async def send(self, target: DeliveryTarget, content: MessageContent) -> DeliveryResult:
        if not target.email:
            return DeliveryResult.failure("User email not available")
        if not self.is_available():
            return DeliveryResult.failure("SMTP credentials not configured")

        message = self.build_message(target, content)
        start = time.perf_counter()
        try:
            await self._deliver(message)
        except aiosmtplib.SMTPAuthenticationError as e:
            error = f"SMTP authentication failed: {e.message}"
        except aiosmtplib.SMTPRecipientsRefused as e:
            error = f"SMTP recipient refused: {e}"
        except aiosmtplib.SMTPTimeoutError:
            error = "SMTP timeout"
        except aiosmtplib.SMTPConnectError as e:
            error = f"SMTP connection failed: {e}"
        except aiosmtplib.SMTPException as e:
            error = f"SMTP error: {e}"
        except OSError as e:
            error = f"SMTP network error: {e}"
        else:
            elapsed_ms = int((time.perf_counter() - start) * 1000)
            logger.info(
                "Email sent",
                extra={"notification_id": str(content.notification_id), "message_id": message["Message-ID"]},
            )
            return DeliveryResult.ok(message["Message-ID"], latency_ms=elapsed_ms)

        elapsed_ms = int((time.perf_counter() - start) * 1000)
        logger.warning(
            "Email delivery failed",
            extra={"notification_id": str(content.notification_id), "error": error},
        )
        return DeliveryResult.failure(error, latency_ms=elapsed_ms)

    def build_message(self, target: DeliveryTarget, content: MessageContent) -> MIMEMultipart:
        """Plain text plus a minimal HTML alternative."""
        message = MIMEMultipart("alternative")
        message["Subject"] = content.title
        message["From"] = self._settings.email_from
        message["To"] = target.email or ""
        message["Date"] = formatdate(localtime=False)
        message["Message-ID"] = make_msgid(domain=self._settings.email_from.rpartition("@")[2] or None)
        message["X-Notification-Id"] = str(content.notification_id)

        greeting = f"Hi {target.first_name},\n\n" if target.first_name else ""
        message.attach(MIMEText(f"{greeting}{content.body}", "plain", "utf-8"))

        body_html = html.escape(content.body).replace("\n", "<br>")
        message.attach(
            MIMEText(
                f"<html><body><h2>{html.escape(content.title)}</h2><p>{body_html}</p></body></html>",
                "html",
                "utf-8",
            )
        )
        return message

    async def _deliver(self, message: MIMEMultipart) -> None:
        settings = self._settings
        implicit_tls = settings.smtp_port == 465
        smtp = aiosmtplib.SMTP(
            hostname=settings.smtp_host,
            port=settings.smtp_port,
            use_tls=implicit_tls,
            start_tls=settings.smtp_use_tls and not implicit_tls,
            tls_context=ssl.create_default_context() if settings.smtp_use_tls or implicit_tls else None,
            timeout=settings.request_timeout,
        )
        async with smtp:
            if settings.smtp_username and settings.smtp_password:
                await smtp.login(settings.smtp_username, settings.smtp_password.get_secret_value())
            await smtp.send_message(message)
