"""User directory table.

The notification pipeline only needs identity, contact email and the
active flag; account management lives elsewhere.
"""

from __future__ import annotations

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from notification_service.core.database import Base, TimestampMixin, generate_uuid7


class User(Base, TimestampMixin):
    """Recipient of notifications."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        default=lambda: str(generate_uuid7()),
        comment="User identifier shared with the identity provider",
    )
    email: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        index=True,
        comment="Contact address for the email channel",
    )
    first_name: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        comment="Used to personalise greetings",
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean(),
        default=True,
        nullable=False,
        index=True,
        comment="Inactive users receive no notifications",
    )
