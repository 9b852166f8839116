"""SQLAlchemy model for the identity and reputation record of a member."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from badge_rotation.db.session import Base
from badge_rotation.db.time import UTCDateTime, utcnow

USER_MODE_STANDARD = "standard"
# Read-only accounts browse anonymously and can never hold a badge.
USER_MODE_READ_ONLY = "read_only"


class User(Base):
    """Member identity owned by the sign-in product; the engine reads and adjusts reputation."""

    __tablename__ = "app_user"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    display_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    wallet_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    mode: Mapped[str] = mapped_column(String(16), nullable=False, default=USER_MODE_STANDARD)
    reputation: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    last_active_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
