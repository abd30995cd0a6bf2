"""Queue consumer: fans a job out to its channels and records every attempt.

One pass over a job:

1. PENDING notifications move to SENT.
2. Every channel without a confirmed delivery and with attempts left is
   dispatched concurrently.
3. Each attempt writes one DeliveryLog row keyed by
   (notification_id, channel, attempt); replays are ignored.
4. Any success makes the notification DELIVERED. A later failure never
   downgrades it.
5. Failed channels with attempts left defer the job with exponential
   backoff. Budget or rate-limit refusals are not retried.
6. When nothing is left to retry the job completes, or fails if no
   channel ever succeeded (and the notification becomes FAILED).
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, time as dt_time, timedelta
import logging
from typing import TYPE_CHECKING
from uuid import UUID, uuid4
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from notification_service.core.database import utcnow
from notification_service.features.notifications.channels import DeliveryTarget, Device, MessageContent
from notification_service.features.notifications.enums import (
    Channel,
    DeliveryStatus,
    DevicePlatform,
    JobState,
    NotificationStatus,
    Priority,
)
from notification_service.features.notifications.metrics import (
    notification_delivery_attempts_total,
    notification_delivery_duration_seconds,
    notification_errors_total,
    notification_quiet_hours_deferred_total,
    notification_retry_total,
    notification_worker_job_errors_total,
)
from notification_service.features.notifications.models import Notification, NotificationJob
from notification_service.features.notifications.repository import (
    DeliveryLogRepository,
    DeviceTokenRepository,
    PreferenceRepository,
)
from notification_service.features.users.models import User
from notification_service.infra.database import session_scope
from notification_service.infra.logging import log_context
from notification_service.utils.retry import RetryStrategy

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from notification_service.core.settings import NotificationSettings
    from notification_service.features.notifications.channels import ChannelRouter, DeliveryResult
    from notification_service.features.notifications.models import NotificationPreference
    from notification_service.features.notifications.queue import NotificationQueue

logger = logging.getLogger(__name__)


def _parse_hhmm(value: str) -> dt_time:
    hours, minutes = value.split(":", 1)
    return dt_time(int(hours), int(minutes))


def quiet_hours_end(preference: NotificationPreference | None, now: datetime) -> datetime | None:
    """End of the quiet window containing ``now``, or None outside one.

    The window is read in the user's timezone and may wrap midnight
    (22:00-07:00). Unknown timezones fall back to UTC.
    """
    if preference is None or not preference.quiet_hours_start or not preference.quiet_hours_end:
        return None
    start = _parse_hhmm(preference.quiet_hours_start)
    end = _parse_hhmm(preference.quiet_hours_end)
    if start == end:
        return None

    try:
        tz = ZoneInfo(preference.timezone or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        tz = ZoneInfo("UTC")
    local = now.astimezone(tz)
    current = local.time().replace(second=0, microsecond=0)

    if start < end:
        inside = start <= current < end
    else:
        inside = current >= start or current < end
    if not inside:
        return None

    end_local = datetime.combine(local.date(), end, tzinfo=tz)
    if end_local <= local:
        end_local += timedelta(days=1)
    return end_local.astimezone(now.tzinfo)


class NotificationWorker:
    """Leases jobs from :class:`NotificationQueue` and delivers them.

    Args:
        session_factory: Factory for per-job sessions.
        queue: Job source.
        router: Channel dispatchers.
        settings: Attempt and backoff policy.
        worker_id: Lease owner id (random if omitted).
        clock: Current UTC time (injectable for tests).
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        queue: NotificationQueue,
        router: ChannelRouter,
        settings: NotificationSettings,
        *,
        worker_id: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._queue = queue
        self._router = router
        self._settings = settings
        self._clock = clock
        self.worker_id = worker_id or f"worker-{uuid4().hex[:8]}"
        self.strategy = RetryStrategy(
            max_attempts=settings.max_attempts,
            initial_delay=settings.backoff_base_seconds,
            max_delay=settings.backoff_max_seconds,
            jitter=settings.backoff_jitter,
        )
        self._logs = DeliveryLogRepository()
        self._preferences = PreferenceRepository()
        self._devices = DeviceTokenRepository()

    # ──────────────────────────────────────────────────────────────
    # Job processing
    # ──────────────────────────────────────────────────────────────

    async def process_job(self, session: AsyncSession, job: NotificationJob) -> JobState:
        """Run one delivery pass over ``job`` and return its resulting state."""
        notification = await session.get(Notification, job.notification_id)
        if notification is None:
            await self._queue.fail(session, job, "Notification not found")
            return JobState.FAILED

        now = self._clock()
        if notification.expires_at is not None and notification.expires_at <= now:
            if notification.status not in (NotificationStatus.DELIVERED, NotificationStatus.FAILED):
                notification.status = NotificationStatus.FAILED
            await self._queue.fail(session, job, "Notification expired before delivery")
            logger.info("Skipped expired notification", extra={"notification_id": str(notification.id)})
            return JobState.FAILED

        preference = await self._preferences.get_for_user(session, notification.user_id)
        if job.priority != Priority.CRITICAL and (resume_at := quiet_hours_end(preference, now)):
            await self._queue.defer(session, job, resume_at)
            notification_quiet_hours_deferred_total.inc()
            logger.info(
                "Delivery deferred for quiet hours",
                extra={"notification_id": str(notification.id), "resume_at": resume_at.isoformat()},
            )
            return JobState.DELAYED

        if notification.status == NotificationStatus.PENDING:
            notification.status = NotificationStatus.SENT
            notification.sent_at = now

        attempts = dict(job.attempts or {})
        succeeded = set(job.succeeded_channels or [])
        pending = [
            Channel(c) for c in job.channels
            if c not in succeeded and self.strategy.has_attempts_left(attempts.get(c, 0))
        ]

        errors: dict[str, str | None] = {}
        if pending:
            user = await session.get(User, notification.user_id)
            target = await self._build_target(session, notification.user_id, user, preference, pending)
            content = MessageContent(
                notification_id=notification.id,
                type=notification.type,
                title=notification.title,
                body=notification.body,
                data=notification.data,
                priority=Priority(notification.priority),
            )
            results = await self._router.dispatch(pending, target, content)

            for channel, result in results.items():
                attempt = attempts.get(channel, 0) + 1
                attempts[channel] = attempt
                await self._record_attempt(session, notification, channel, attempt, result, now)
                if result.success:
                    succeeded.add(channel)
                else:
                    errors[channel] = result.error
                    if result.exhausted:
                        # Budget refusals are final for this job
                        attempts[channel] = self.strategy.max_attempts
                if result.invalid_tokens:
                    await self._devices.deactivate(session, result.invalid_tokens)

        if succeeded and notification.status != NotificationStatus.DELIVERED:
            notification.status = NotificationStatus.DELIVERED
            notification.delivered_at = now

        job.attempts = attempts
        job.succeeded_channels = sorted(succeeded)

        retryable = [
            c for c in job.channels
            if c not in succeeded and self.strategy.has_attempts_left(attempts.get(c, 0))
        ]
        if retryable:
            delay = self.strategy.calculate_delay(max(attempts.get(c, 1) for c in retryable) - 1)
            for channel in retryable:
                notification_retry_total.labels(channel=channel).inc()
            await self._queue.defer(
                session, job, now + timedelta(seconds=delay), attempts, error=_summarize(errors),
            )
            logger.info(
                "Delivery retry scheduled",
                extra={"notification_id": str(notification.id), "channels": retryable, "delay": round(delay, 2)},
            )
            return JobState.DELAYED

        if not succeeded:
            if notification.status != NotificationStatus.DELIVERED:
                notification.status = NotificationStatus.FAILED
            await self._queue.fail(session, job, _summarize(errors) or job.last_error)
            logger.warning(
                "Notification failed on every channel",
                extra={"notification_id": str(notification.id), "errors": errors},
            )
            return JobState.FAILED

        await self._queue.complete(session, job)
        return JobState.COMPLETED

    async def _build_target(
        self,
        session: AsyncSession,
        user_id: str,
        user: User | None,
        preference: NotificationPreference | None,
        channels: list[Channel],
    ) -> DeliveryTarget:
        devices: tuple[Device, ...] = ()
        if Channel.PUSH in channels:
            tokens = await self._devices.list_active(session, user_id)
            devices = tuple(Device(token=t.token, platform=DevicePlatform(t.platform)) for t in tokens)
        return DeliveryTarget(
            user_id=user_id,
            email=user.email if user is not None else None,
            first_name=user.first_name if user is not None else None,
            phone_number=preference.phone_number if preference is not None else None,
            devices=devices,
        )

    async def _record_attempt(
        self,
        session: AsyncSession,
        notification: Notification,
        channel: Channel,
        attempt: int,
        result: DeliveryResult,
        attempted_at: datetime,
    ) -> None:
        status = DeliveryStatus.SUCCESS if result.success else DeliveryStatus.FAILED
        await self._logs.record(
            session,
            notification_id=notification.id,
            channel=channel,
            attempt=attempt,
            status=status,
            provider_error=result.error,
            error_category=result.error_category,
            provider_message_id=result.message_id,
            latency_ms=result.latency_ms,
            attempted_at=attempted_at,
        )
        notification_delivery_attempts_total.labels(channel=channel, status=status).inc()
        if result.latency_ms is not None:
            notification_delivery_duration_seconds.labels(channel=channel).observe(result.latency_ms / 1000.0)
        if not result.success:
            notification_errors_total.labels(
                channel=channel, error_category=result.error_category or "UNKNOWN",
            ).inc()
            logger.warning(
                "Delivery attempt failed",
                extra={
                    "notification_id": str(notification.id),
                    "channel": channel,
                    "attempt": attempt,
                    "error": result.error,
                    "error_category": result.error_category,
                },
            )

    # ──────────────────────────────────────────────────────────────
    # Polling
    # ──────────────────────────────────────────────────────────────

    async def run_once(self, batch_size: int | None = None) -> int:
        """Lease a batch and process each job in its own transaction.

        Returns:
            Number of jobs leased.
        """
        async with session_scope(self._session_factory) as session:
            jobs = await self._queue.lease(session, self.worker_id, batch_size)
            job_ids = [job.id for job in jobs]

        for job_id in job_ids:
            await self._run_job(job_id)
        return len(job_ids)

    async def _run_job(self, job_id: UUID) -> None:
        with log_context(job_id=str(job_id), worker_id=self.worker_id):
            try:
                async with session_scope(self._session_factory) as session:
                    job = await session.get(NotificationJob, job_id)
                    if job is None or job.locked_by != self.worker_id:
                        logger.warning("Lease lost before processing", extra={"job_id": str(job_id)})
                        return
                    await self.process_job(session, job)
            except Exception as exc:
                notification_worker_job_errors_total.inc()
                logger.exception("Job processing raised", extra={"job_id": str(job_id)})
                await self._recover(job_id, exc)

    async def _recover(self, job_id: UUID, exc: Exception) -> None:
        """Count the crashed pass as one attempt per open channel, then retry or fail."""
        error = f"{type(exc).__name__}: {exc}"
        try:
            async with session_scope(self._session_factory) as session:
                job = await session.get(NotificationJob, job_id)
                if job is None:
                    return
                succeeded = set(job.succeeded_channels or [])
                attempts = dict(job.attempts or {})
                for channel in job.channels:
                    if channel not in succeeded:
                        attempts[channel] = attempts.get(channel, 0) + 1
                open_channels = [
                    c for c in job.channels
                    if c not in succeeded and self.strategy.has_attempts_left(attempts[c])
                ]
                if open_channels:
                    delay = self.strategy.calculate_delay(max(attempts[c] for c in open_channels) - 1)
                    await self._queue.defer(
                        session, job, self._clock() + timedelta(seconds=delay), attempts, error=error,
                    )
                    return
                job.attempts = attempts
                if succeeded:
                    await self._queue.complete(session, job)
                    return
                notification = await session.get(Notification, job.notification_id)
                if notification is not None and notification.status != NotificationStatus.DELIVERED:
                    notification.status = NotificationStatus.FAILED
                await self._queue.fail(session, job, error)
        except Exception:
            # The lease expires and the job is retried by whichever worker takes it next
            logger.exception("Could not record job failure", extra={"job_id": str(job_id)})

    async def run_forever(self, stop_event: asyncio.Event) -> None:
        """Poll until ``stop_event`` is set; idle polls wait ``poll_interval``."""
        logger.info("Notification worker started", extra={"worker_id": self.worker_id})
        while not stop_event.is_set():
            try:
                processed = await self.run_once()
            except Exception:
                logger.exception("Worker poll failed")
                processed = 0
            if processed:
                continue
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._settings.poll_interval)
            except TimeoutError:
                pass
        logger.info("Notification worker stopped", extra={"worker_id": self.worker_id})


def _summarize(errors: dict[str, str | None]) -> str | None:
    if not errors:
        return None
    return "; ".join(f"{channel}: {error or 'unknown error'}" for channel, error in errors.items())
