"""Multi-channel notification delivery.

A notification is validated and persisted by the orchestrator, delivered
by queue workers through the channel dispatchers (push, email, SMS,
WhatsApp, in-app) and observed through delivery logs and metrics.

Architecture:
    - Models: Notification, DeliveryLog, NotificationPreference, DeviceToken, NotificationJob
    - Service: NotificationOrchestrator (send path and read API)
    - Queue/Worker: NotificationQueue leases jobs, NotificationWorker delivers them
    - Channels: ChannelRouter over one dispatcher per channel
    - Monitoring: MetricsCollector for delivery rate, latency and health

Example:
    ```python
    result = await container.orchestrator.notify_order_status(
        session, user_id="u-1", order_id="42", status="SHIPPED",
    )
    ```
"""

from .enums import Channel, JobState, NotificationStatus, NotificationType, Priority
from .models import DeliveryLog, DeviceToken, Notification, NotificationJob, NotificationPreference

__all__ = [
    "Channel",
    "DeliveryLog",
    "DeviceToken",
    "JobState",
    "Notification",
    "NotificationJob",
    "NotificationPreference",
    "NotificationStatus",
    "NotificationType",
    "Priority",
]
