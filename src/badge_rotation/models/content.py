"""SQLAlchemy models for flagged content consumed by the moderation queue."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from badge_rotation.db.session import Base
from badge_rotation.db.time import UTCDateTime, utcnow

CONTENT_TYPE_POST = "post"
CONTENT_TYPE_COMMENT = "comment"
CONTENT_TYPES = (CONTENT_TYPE_POST, CONTENT_TYPE_COMMENT)


class ContentItem(Base):
    """A post or comment; only visibility is mutated by the engine."""

    __tablename__ = "content_item"

    content_type: Mapped[str] = mapped_column(String(16), primary_key=True)
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    community_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("community.id"),
        nullable=False,
    )
    author_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("app_user.id"),
        nullable=True,
    )
    body: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_hidden: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    hidden_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    hidden_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class ContentFlag(Base):
    """A member's report against a piece of content.

    Flags are created elsewhere; the engine only flips ``resolved`` once a
    badge holder has ruled on the content.
    """

    __tablename__ = "content_flag"
    __table_args__ = (
        Index("ix_content_flag_target", "content_type", "content_id", "resolved"),
        Index("ix_content_flag_community", "community_id", "resolved"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    content_type: Mapped[str] = mapped_column(String(16), nullable=False)
    content_id: Mapped[str] = mapped_column(String(36), nullable=False)
    community_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("community.id"),
        nullable=False,
    )
    flagged_by: Mapped[str] = mapped_column(String(36), nullable=False)
    # spam, harassment, misinformation, inappropriate, other
    reason: Mapped[str] = mapped_column(String(32), nullable=False)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
