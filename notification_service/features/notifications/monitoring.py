"""Delivery metrics and health derived from persisted records.

Everything here is read-only aggregation over notifications, delivery logs
and queue stats; the collector also refreshes the snapshot gauges so the
prometheus exposition matches the last API answer.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable
from datetime import datetime, timedelta
import logging
from typing import TYPE_CHECKING

from notification_service.core.database import utcnow
from notification_service.features.notifications.channels import classify_error
from notification_service.features.notifications.enums import (
    EXTERNAL_CHANNELS,
    ErrorCategory,
    NotificationStatus,
)
from notification_service.features.notifications.metrics import (
    notification_avg_latency_ms,
    notification_delivery_rate,
    notification_queue_depth,
)
from notification_service.features.notifications.repository import (
    DeliveryLogRepository,
    NotificationRepository,
)
from notification_service.features.notifications.schemas import (
    ChannelMetrics,
    ErrorMetric,
    HealthStatus,
    MetricsSnapshot,
    TypeCount,
    VolumeBucket,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from notification_service.core.settings import NotificationSettings
    from notification_service.features.notifications.queue import NotificationQueue

logger = logging.getLogger(__name__)


def delivery_rate(delivered: int, failed: int) -> float:
    """Percentage of finished deliveries that succeeded; 100 with none finished."""
    finished = delivered + failed
    if finished == 0:
        return 100.0
    return round(delivered / finished * 100, 2)


class MetricsCollector:
    """Aggregates delivery metrics and evaluates health.

    Args:
        queue: Source of queue depth.
        settings: Health thresholds and latency sample size.
        clock: Current UTC time (injectable for tests).
    """

    def __init__(
        self,
        queue: NotificationQueue,
        settings: NotificationSettings,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._queue = queue
        self._settings = settings
        self._clock = clock
        self._notifications = NotificationRepository()
        self._logs = DeliveryLogRepository()

    async def collect_metrics(self, session: AsyncSession, period_hours: int = 1) -> MetricsSnapshot:
        since = self._clock() - timedelta(hours=period_hours)

        counts = await self._notifications.status_counts(session, since=since)
        sent = counts.get(NotificationStatus.SENT, 0)
        delivered = counts.get(NotificationStatus.DELIVERED, 0)
        failed = counts.get(NotificationStatus.FAILED, 0)
        rate = delivery_rate(delivered, failed)

        avg_latency = await self._average_latency(session, since)
        depth = await self._queue.get_queue_depth(session)
        channels = await self._channel_metrics(session, since)
        errors = await self._error_metrics(session, since)

        notification_delivery_rate.set(rate)
        notification_avg_latency_ms.set(avg_latency)
        notification_queue_depth.set(depth)

        return MetricsSnapshot(
            period_hours=period_hours,
            since=since,
            sent=sent,
            delivered=delivered,
            failed=failed,
            delivery_rate=rate,
            avg_latency_ms=avg_latency,
            queue_depth=depth,
            channels=channels,
            errors=errors,
        )

    async def check_health(self, session: AsyncSession) -> HealthStatus:
        """Healthy iff the 24h delivery rate and the queue depth are within limits."""
        metrics = await self.collect_metrics(session, period_hours=24)
        checks = {
            "delivery_rate": metrics.delivery_rate > self._settings.min_delivery_rate,
            "queue_depth": metrics.queue_depth < self._settings.max_queue_depth,
        }
        healthy = all(checks.values())
        if not healthy:
            logger.warning(
                "Notification pipeline unhealthy",
                extra={"delivery_rate": metrics.delivery_rate, "queue_depth": metrics.queue_depth},
            )
        return HealthStatus(
            healthy=healthy,
            delivery_rate=metrics.delivery_rate,
            queue_depth=metrics.queue_depth,
            checks=checks,
        )

    async def get_top_notification_types(
        self,
        session: AsyncSession,
        since: datetime | None = None,
        limit: int = 10,
    ) -> list[TypeCount]:
        since = since or self._clock() - timedelta(hours=24)
        rows = await self._notifications.top_types(session, since, limit)
        return [TypeCount(type=type_, count=count) for type_, count in rows]

    async def get_volume_over_time(
        self,
        session: AsyncSession,
        hours_back: int = 24,
        interval_hours: int = 1,
    ) -> list[VolumeBucket]:
        """Notifications created per interval, oldest bucket first."""
        end = self._clock()
        step = timedelta(hours=interval_hours)
        start = end - timedelta(hours=hours_back)
        buckets: list[VolumeBucket] = []
        while start < end:
            bucket_end = min(start + step, end)
            count = await self._notifications.count_created_between(session, start, bucket_end)
            buckets.append(VolumeBucket(start=start, count=count))
            start = bucket_end
        return buckets

    # ──────────────────────────────────────────────────────────────
    # Internals
    # ──────────────────────────────────────────────────────────────

    async def _average_latency(self, session: AsyncSession, since: datetime) -> int:
        sample = await self._notifications.delivered_latency_sample(
            session, since, self._settings.latency_sample_size,
        )
        if not sample:
            return 0
        total_ms = sum((delivered - created).total_seconds() * 1000 for created, delivered in sample)
        return round(total_ms / len(sample))

    async def _channel_metrics(self, session: AsyncSession, since: datetime) -> list[ChannelMetrics]:
        summary = await self._logs.channel_summary(session, since)
        metrics: list[ChannelMetrics] = []
        for channel in EXTERNAL_CHANNELS:
            total, ok, latency = summary.get(channel, (0, 0, None))
            if total == 0:
                continue
            metrics.append(
                ChannelMetrics(
                    channel=channel,
                    total=total,
                    delivered=ok,
                    rate=round(ok / total * 100, 2),
                    avg_latency_ms=round(latency or 0),
                )
            )
        return metrics

    async def _error_metrics(self, session: AsyncSession, since: datetime) -> list[ErrorMetric]:
        rows = await self._logs.failed_errors(session, since)
        if not rows:
            return []
        counts = Counter(
            ErrorCategory(category) if category else classify_error(error) for category, error in rows
        )
        total = sum(counts.values())
        return [
            ErrorMetric(category=category, count=count, percentage=round(count / total * 100, 2))
            for category, count in counts.most_common()
        ]
