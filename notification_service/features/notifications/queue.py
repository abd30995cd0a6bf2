"""Durable, priority-aware delivery queue backed by the database.

Jobs are rows in ``notification_jobs``. Workers lease them with a
compare-and-set update, so two workers never hold the same job; a lease
that is not completed before ``leased_until`` makes the job runnable again
(at-least-once delivery).

Lanes are served by priority weight (CRITICAL=1 ... LOW=15). Every
``fairness_interval``-th lease ignores priority and takes the oldest
runnable job, which bounds how long a LOW job can wait behind a steady
stream of CRITICAL ones.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
import logging
from typing import TYPE_CHECKING

from notification_service.core.database import utcnow
from notification_service.features.notifications.enums import JobState, Priority
from notification_service.features.notifications.metrics import (
    notification_enqueue_delayed_total,
    notification_queue_paused,
)
from notification_service.features.notifications.models import NotificationJob
from notification_service.features.notifications.repository import NotificationJobRepository
from notification_service.features.notifications.schemas import QueueStats

if TYPE_CHECKING:
    from collections.abc import Iterable
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from notification_service.core.settings import NotificationSettings
    from notification_service.features.notifications.models import Notification
    from notification_service.infra.cache import CounterStore
    from notification_service.infra.ratelimit import RateLimiter

logger = logging.getLogger(__name__)

ENQUEUE_RATE_KEY = "queue:enqueue"
PAUSED_KEY = "queue:paused"
# Candidates inspected per slot before giving up on a contended lease
_CLAIM_CANDIDATES = 5


class NotificationQueue:
    """Queue operations over :class:`NotificationJob` rows.

    Args:
        settings: Queue tuning (lease length, batch size, fairness, admission).
        limiter: Admission limiter for enqueue.
        store: Shared store holding the paused flag, if configured.
        clock: Current UTC time (injectable for tests).
    """

    def __init__(
        self,
        settings: NotificationSettings,
        limiter: RateLimiter,
        store: CounterStore | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._settings = settings
        self._limiter = limiter
        self._store = store
        self._clock = clock
        self._jobs = NotificationJobRepository()
        self._paused = False
        self._lease_count = 0

    # ──────────────────────────────────────────────────────────────
    # Producer side
    # ──────────────────────────────────────────────────────────────

    async def enqueue(
        self,
        session: AsyncSession,
        notification: Notification,
        channels: Iterable[str] | None = None,
        priority: str | None = None,
    ) -> NotificationJob:
        """Create the job that will deliver ``notification``.

        Over the admission limit the job is still created, but DELAYED
        until the current window resets.
        """
        priority = Priority(priority or notification.priority)
        now = self._clock()
        job = NotificationJob(
            notification_id=notification.id,
            channels=list(channels if channels is not None else notification.channels),
            priority=priority,
            priority_weight=priority.weight,
            state=JobState.WAITING,
            attempts={},
            succeeded_channels=[],
        )

        allowed, meta = await self._limiter.check_limit(
            ENQUEUE_RATE_KEY,
            self._settings.enqueue_rate_limit,
            self._settings.enqueue_rate_window,
        )
        if not allowed:
            job.state = JobState.DELAYED
            job.next_run_at = now + timedelta(seconds=meta["retry_after"])
            notification_enqueue_delayed_total.inc()
            logger.warning(
                "Enqueue rate limit exceeded, job delayed",
                extra={"notification_id": str(notification.id), "retry_after": meta["retry_after"]},
            )

        await self._jobs.create(session, job)
        logger.debug(
            "Job enqueued",
            extra={"job_id": str(job.id), "notification_id": str(notification.id), "state": job.state},
        )
        return job

    # ──────────────────────────────────────────────────────────────
    # Consumer side
    # ──────────────────────────────────────────────────────────────

    async def lease(
        self,
        session: AsyncSession,
        worker_id: str,
        batch_size: int | None = None,
    ) -> list[NotificationJob]:
        """Claim up to ``batch_size`` runnable jobs for ``worker_id``.

        Nothing is leased while the queue is paused. The caller commits.
        """
        if await self.is_paused():
            return []

        now = self._clock()
        leased_until = now + timedelta(seconds=self._settings.lease_seconds)
        leased: list[NotificationJob] = []

        for _ in range(batch_size or self._settings.batch_size):
            self._lease_count += 1
            oldest_first = self._lease_count % self._settings.fairness_interval == 0
            job_id = await self._claim_one(session, worker_id, now, leased_until, oldest_first=oldest_first)
            if job_id is None and oldest_first:
                job_id = await self._claim_one(session, worker_id, now, leased_until, oldest_first=False)
            if job_id is None:
                break
            job = await session.get(NotificationJob, job_id, populate_existing=True)
            if job is not None:
                leased.append(job)

        if leased:
            logger.debug("Jobs leased", extra={"worker_id": worker_id, "count": len(leased)})
        return leased

    async def _claim_one(
        self,
        session: AsyncSession,
        worker_id: str,
        now: datetime,
        leased_until: datetime,
        *,
        oldest_first: bool,
    ) -> UUID | None:
        candidates = await self._jobs.runnable_ids(
            session, now, limit=_CLAIM_CANDIDATES, oldest_first=oldest_first,
        )
        for job_id in candidates:
            if await self._jobs.claim(session, job_id, worker_id=worker_id, now=now, leased_until=leased_until):
                return job_id
        return None

    async def complete(self, session: AsyncSession, job: NotificationJob) -> None:
        job.state = JobState.COMPLETED
        job.finished_at = self._clock()
        job.leased_until = None
        job.locked_by = None
        await session.flush()

    async def fail(self, session: AsyncSession, job: NotificationJob, error: str | None) -> None:
        job.state = JobState.FAILED
        job.finished_at = self._clock()
        job.leased_until = None
        job.locked_by = None
        job.last_error = error
        await session.flush()

    async def defer(
        self,
        session: AsyncSession,
        job: NotificationJob,
        run_at: datetime,
        attempts: dict[str, int] | None = None,
        error: str | None = None,
    ) -> None:
        """Release the lease and make the job runnable again at ``run_at``."""
        job.state = JobState.DELAYED
        job.next_run_at = run_at
        job.leased_until = None
        job.locked_by = None
        if attempts is not None:
            # Reassign so the JSON column is seen as modified
            job.attempts = dict(attempts)
        if error is not None:
            job.last_error = error
        await session.flush()

    # ──────────────────────────────────────────────────────────────
    # Administration
    # ──────────────────────────────────────────────────────────────

    async def pause(self) -> None:
        """Stop leasing new jobs; in-flight jobs finish normally."""
        self._paused = True
        notification_queue_paused.set(1)
        if self._store is not None:
            try:
                await self._store.set(PAUSED_KEY, "1")
            except Exception:
                logger.warning("Could not persist queue pause flag", exc_info=True)
        logger.info("Notification queue paused")

    async def resume(self) -> None:
        self._paused = False
        notification_queue_paused.set(0)
        if self._store is not None:
            try:
                await self._store.delete(PAUSED_KEY)
            except Exception:
                logger.warning("Could not clear queue pause flag", exc_info=True)
        logger.info("Notification queue resumed")

    async def is_paused(self) -> bool:
        """Shared flag when the store answers, the local flag otherwise."""
        if self._store is None:
            return self._paused
        try:
            return await self._store.exists(PAUSED_KEY)
        except Exception:
            return self._paused

    async def clean(self, session: AsyncSession, age_hours: int | None = None) -> int:
        """Delete finished jobs older than ``age_hours``; notifications are kept."""
        age_hours = age_hours or self._settings.clean_age_hours
        cutoff = self._clock() - timedelta(hours=age_hours)
        removed = await self._jobs.purge_finished(session, cutoff)
        logger.info("Queue cleaned", extra={"removed": removed, "age_hours": age_hours})
        return removed

    async def get_stats(self, session: AsyncSession) -> QueueStats:
        counts = await self._jobs.state_counts(session)
        return QueueStats(
            waiting=counts.get(JobState.WAITING, 0),
            active=counts.get(JobState.ACTIVE, 0),
            completed=counts.get(JobState.COMPLETED, 0),
            failed=counts.get(JobState.FAILED, 0),
            delayed=counts.get(JobState.DELAYED, 0),
            paused=await self.is_paused(),
        )

    async def get_queue_depth(self, session: AsyncSession) -> int:
        counts = await self._jobs.state_counts(session)
        return counts.get(JobState.WAITING, 0) + counts.get(JobState.ACTIVE, 0)
