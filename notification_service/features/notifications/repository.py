"""Repositories for the notifications feature.

Queries are written against SQLAlchemy Core/ORM constructs that run on
both PostgreSQL and SQLite.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import and_, case, delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from notification_service.core.database import BaseRepository, SearchResult, generate_uuid7, utcnow
from notification_service.features.notifications.enums import DeliveryStatus, JobState, NotificationStatus
from notification_service.features.notifications.models import (
    DeliveryLog,
    DeviceToken,
    Notification,
    NotificationJob,
    NotificationPreference,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

# Statuses in which an unread notification counts toward the badge
UNREAD_STATUSES = (NotificationStatus.SENT, NotificationStatus.DELIVERED)


class NotificationRepository(BaseRepository[Notification]):
    """Queries over :class:`Notification`."""

    def __init__(self) -> None:
        super().__init__(Notification)

    async def list_for_user(
        self,
        session: AsyncSession,
        user_id: str,
        *,
        limit: int = 50,
        offset: int = 0,
        unread_only: bool = False,
        type_: str | None = None,
        status: str | None = None,
    ) -> SearchResult[Notification]:
        conditions = [Notification.user_id == user_id]
        if unread_only:
            conditions.append(Notification.read_at.is_(None))
        if type_:
            conditions.append(Notification.type == type_)
        if status:
            conditions.append(Notification.status == status)

        stmt = (
            select(Notification)
            .where(and_(*conditions))
            .order_by(Notification.created_at.desc(), Notification.id.desc())
        )
        return await self.search(session, stmt, limit=limit, offset=offset)

    async def count_unread(self, session: AsyncSession, user_id: str) -> int:
        stmt = select(func.count()).where(
            and_(
                Notification.user_id == user_id,
                Notification.read_at.is_(None),
                Notification.status.in_(UNREAD_STATUSES),
            )
        )
        return (await session.execute(stmt)).scalar_one()

    async def mark_all_read(self, session: AsyncSession, user_id: str, read_at: datetime) -> int:
        stmt = (
            update(Notification)
            .where(and_(Notification.user_id == user_id, Notification.read_at.is_(None)))
            .values(read_at=read_at)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        self._lazy.debug(lambda: f"mark_all_read({user_id}) -> {result.rowcount} rows")
        return result.rowcount or 0

    async def status_counts(
        self,
        session: AsyncSession,
        *,
        user_id: str | None = None,
        since: datetime | None = None,
    ) -> dict[str, int]:
        """Notifications grouped by status, optionally scoped to a user or window."""
        stmt = select(Notification.status, func.count()).group_by(Notification.status)
        if user_id is not None:
            stmt = stmt.where(Notification.user_id == user_id)
        if since is not None:
            stmt = stmt.where(Notification.created_at >= since)
        rows = (await session.execute(stmt)).all()
        return {status: count for status, count in rows}

    async def count_flagged(self, session: AsyncSession, *, user_id: str | None = None) -> tuple[int, int]:
        """Return ``(read, clicked)`` counts."""
        stmt = select(
            func.count(Notification.read_at),
            func.count(Notification.clicked_at),
        )
        if user_id is not None:
            stmt = stmt.where(Notification.user_id == user_id)
        read, clicked = (await session.execute(stmt)).one()
        return read, clicked

    async def delivered_latency_sample(
        self,
        session: AsyncSession,
        since: datetime,
        limit: int,
    ) -> Sequence[tuple[datetime, datetime]]:
        """``(created_at, delivered_at)`` pairs of the most recent deliveries."""
        stmt = (
            select(Notification.created_at, Notification.delivered_at)
            .where(
                and_(
                    Notification.status == NotificationStatus.DELIVERED,
                    Notification.created_at >= since,
                    Notification.delivered_at.is_not(None),
                )
            )
            .order_by(Notification.created_at.desc())
            .limit(limit)
        )
        return [(row[0], row[1]) for row in (await session.execute(stmt)).all()]

    async def top_types(self, session: AsyncSession, since: datetime, limit: int) -> list[tuple[str, int]]:
        count = func.count().label("count")
        stmt = (
            select(Notification.type, count)
            .where(Notification.created_at >= since)
            .group_by(Notification.type)
            .order_by(count.desc(), Notification.type)
            .limit(limit)
        )
        return [(row[0], row[1]) for row in (await session.execute(stmt)).all()]

    async def count_created_between(self, session: AsyncSession, start: datetime, end: datetime) -> int:
        stmt = select(func.count()).where(
            and_(Notification.created_at >= start, Notification.created_at < end)
        )
        return (await session.execute(stmt)).scalar_one()


class DeliveryLogRepository(BaseRepository[DeliveryLog]):
    """Append-only access to :class:`DeliveryLog`."""

    def __init__(self) -> None:
        super().__init__(DeliveryLog)

    async def record(self, session: AsyncSession, **values: Any) -> bool:
        """Insert one attempt row; a replay of the same attempt is ignored.

        Returns:
            True if a new row was written.
        """
        values.setdefault("id", generate_uuid7())
        values.setdefault("attempted_at", utcnow())

        insert_fn = pg_insert if session.get_bind().dialect.name == "postgresql" else sqlite_insert
        stmt = (
            insert_fn(DeliveryLog)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["notification_id", "channel", "attempt"])
        )
        result = await session.execute(stmt)
        inserted = bool(result.rowcount)
        if not inserted:
            self._lazy.debug(
                lambda: f"delivery log replay ignored: {values['notification_id']}/{values['channel']}#{values['attempt']}"
            )
        return inserted

    async def list_for_notification(self, session: AsyncSession, notification_id: UUID) -> Sequence[DeliveryLog]:
        stmt = (
            select(DeliveryLog)
            .where(DeliveryLog.notification_id == notification_id)
            .order_by(DeliveryLog.channel, DeliveryLog.attempt)
        )
        return (await session.execute(stmt)).scalars().all()

    async def channel_summary(
        self,
        session: AsyncSession,
        since: datetime,
    ) -> dict[str, tuple[int, int, float | None]]:
        """Per channel: ``(total, succeeded, avg latency of successes)``."""
        is_success = DeliveryLog.status == DeliveryStatus.SUCCESS
        succeeded = func.sum(case((is_success, 1), else_=0))
        avg_latency = func.avg(case((is_success, DeliveryLog.latency_ms), else_=None))
        stmt = (
            select(DeliveryLog.channel, func.count(), succeeded, avg_latency)
            .where(DeliveryLog.attempted_at >= since)
            .group_by(DeliveryLog.channel)
        )
        rows = (await session.execute(stmt)).all()
        return {
            channel: (total, int(ok or 0), float(latency) if latency is not None else None)
            for channel, total, ok, latency in rows
        }

    async def failed_errors(
        self,
        session: AsyncSession,
        since: datetime,
    ) -> Sequence[tuple[str | None, str | None]]:
        """``(error_category, provider_error)`` of every failed attempt in the window."""
        stmt = select(DeliveryLog.error_category, DeliveryLog.provider_error).where(
            and_(DeliveryLog.status == DeliveryStatus.FAILED, DeliveryLog.attempted_at >= since)
        )
        return (await session.execute(stmt)).tuples().all()


class PreferenceRepository(BaseRepository[NotificationPreference]):
    def __init__(self) -> None:
        super().__init__(NotificationPreference)

    async def get_for_user(self, session: AsyncSession, user_id: str) -> NotificationPreference | None:
        stmt = select(NotificationPreference).where(NotificationPreference.user_id == user_id)
        return (await session.execute(stmt)).scalar_one_or_none()


class DeviceTokenRepository(BaseRepository[DeviceToken]):
    def __init__(self) -> None:
        super().__init__(DeviceToken)

    async def get_by_token(self, session: AsyncSession, token: str) -> DeviceToken | None:
        stmt = select(DeviceToken).where(DeviceToken.token == token)
        return (await session.execute(stmt)).scalar_one_or_none()

    async def list_active(self, session: AsyncSession, user_id: str) -> Sequence[DeviceToken]:
        stmt = (
            select(DeviceToken)
            .where(and_(DeviceToken.user_id == user_id, DeviceToken.is_active.is_(True)))
            .order_by(DeviceToken.created_at)
        )
        return (await session.execute(stmt)).scalars().all()

    async def deactivate(self, session: AsyncSession, tokens: Sequence[str]) -> int:
        if not tokens:
            return 0
        stmt = (
            update(DeviceToken)
            .where(DeviceToken.token.in_(list(tokens)))
            .values(is_active=False, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        self._logger.info("Device tokens deactivated", extra={"count": result.rowcount})
        return result.rowcount or 0


class NotificationJobRepository(BaseRepository[NotificationJob]):
    """Persistence for the durable delivery queue."""

    def __init__(self) -> None:
        super().__init__(NotificationJob)

    def _runnable(self, now: datetime) -> Any:
        return or_(
            NotificationJob.state == JobState.WAITING,
            and_(NotificationJob.state == JobState.DELAYED, NotificationJob.next_run_at <= now),
            and_(NotificationJob.state == JobState.ACTIVE, NotificationJob.leased_until < now),
        )

    async def runnable_ids(
        self,
        session: AsyncSession,
        now: datetime,
        *,
        limit: int,
        oldest_first: bool,
    ) -> Sequence[UUID]:
        """Candidate job ids in lane order, or strictly oldest first."""
        stmt = select(NotificationJob.id).where(self._runnable(now))
        if oldest_first:
            stmt = stmt.order_by(NotificationJob.created_at, NotificationJob.id)
        else:
            stmt = stmt.order_by(
                NotificationJob.priority_weight, NotificationJob.created_at, NotificationJob.id,
            )
        return (await session.execute(stmt.limit(limit))).scalars().all()

    async def claim(
        self,
        session: AsyncSession,
        job_id: UUID,
        *,
        worker_id: str,
        now: datetime,
        leased_until: datetime,
    ) -> bool:
        """Compare-and-set a runnable job to ACTIVE; False if another worker won."""
        stmt = (
            update(NotificationJob)
            .where(and_(NotificationJob.id == job_id, self._runnable(now)))
            .values(state=JobState.ACTIVE, locked_by=worker_id, leased_until=leased_until, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return bool(result.rowcount)

    async def state_counts(self, session: AsyncSession) -> dict[str, int]:
        stmt = select(NotificationJob.state, func.count()).group_by(NotificationJob.state)
        return {state: count for state, count in (await session.execute(stmt)).all()}

    async def purge_finished(self, session: AsyncSession, before: datetime) -> int:
        stmt = delete(NotificationJob).where(
            and_(
                NotificationJob.state.in_((JobState.COMPLETED, JobState.FAILED)),
                NotificationJob.finished_at < before,
            )
        )
        result = await session.execute(stmt)
        return result.rowcount or 0


