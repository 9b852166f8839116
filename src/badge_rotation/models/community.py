"""SQLAlchemy models for groups, topic areas and membership."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from badge_rotation.db.session import Base
from badge_rotation.db.time import UTCDateTime, utcnow


class TopicArea(Base):
    """Broad subject area grouping several communities."""

    __tablename__ = "topic_area"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)


class Community(Base):
    """A group; the narrowest scope a badge can govern."""

    __tablename__ = "community"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    display_name: Mapped[str] = mapped_column(Text, nullable=False)
    topic_area_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("topic_area.id"),
        nullable=True,
        index=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class CommunityMember(Base):
    """Join table mapping users into communities."""

    __tablename__ = "community_member"

    community_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("community.id", ondelete="CASCADE"),
        primary_key=True,
    )
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("app_user.id", ondelete="CASCADE"),
        primary_key=True,
    )
    joined_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
