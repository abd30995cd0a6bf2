"""Read access to the user directory."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import select

from notification_service.core.database import BaseRepository
from notification_service.features.users.models import User

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession


class UserRepository(BaseRepository[User]):
    """Repository for :class:`User`."""

    def __init__(self) -> None:
        super().__init__(User)

    async def list_active_ids(self, session: AsyncSession) -> Sequence[str]:
        """Ids of every active user, oldest first."""
        stmt = select(User.id).where(User.is_active.is_(True)).order_by(User.created_at)
        result = await session.execute(stmt)
        ids = result.scalars().all()
        self._lazy.debug(lambda: f"list_active_ids -> {len(ids)} users")
        return ids
