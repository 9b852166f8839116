"""Models for moderation decisions, per-scope tunables and daily aggregates."""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    Date,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from badge_rotation.db.session import Base
from badge_rotation.db.time import UTCDateTime, utcnow

DECISION_KEEP = "keep"
DECISION_REMOVE = "remove"
DECISIONS = (DECISION_KEEP, DECISION_REMOVE)


class ModerationAction(Base):
    """Append-only record of a badge holder's ruling on one piece of content."""

    __tablename__ = "mod_action"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    badge_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("mod_badge.id"),
        nullable=False,
        index=True,
    )
    content_type: Mapped[str] = mapped_column(String(16), nullable=False)
    content_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    decision: Mapped[str] = mapped_column(String(8), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Unresolved flags on the content at the moment the decision was taken.
    flags_at_review: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ledger_ref: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class ModerationActionArchive(Base):
    """Cold storage for actions past the archive horizon."""

    __tablename__ = "mod_action_archive"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    badge_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    content_type: Mapped[str] = mapped_column(String(16), nullable=False)
    content_id: Mapped[str] = mapped_column(String(36), nullable=False)
    decision: Mapped[str] = mapped_column(String(8), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    flags_at_review: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ledger_ref: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    archived_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class ModerationConfig(Base):
    """Operator-tunable rotation parameters for one scope."""

    __tablename__ = "moderation_config"
    __table_args__ = (
        UniqueConstraint("scope_type", "scope_id", name="uq_moderation_config_scope"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    scope_type: Mapped[str] = mapped_column(String(16), nullable=False)
    scope_id: Mapped[str] = mapped_column(String(36), nullable=False)
    # One badge per this many active members.
    badge_ratio: Mapped[int] = mapped_column(Integer, nullable=False)
    min_reputation: Mapped[int] = mapped_column(Integer, nullable=False)
    min_account_age_days: Mapped[int] = mapped_column(Integer, nullable=False)
    reward_pco: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False)
    reward_reputation: Mapped[int] = mapped_column(Integer, nullable=False)
    # Stored as a positive amount, applied as a debit.
    penalty_reputation: Mapped[int] = mapped_column(Integer, nullable=False)
    min_actions_required: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )


class ModerationDailyStats(Base):
    """Per-scope performance summary for badges that ended on a given day."""

    __tablename__ = "moderation_daily_stats"
    __table_args__ = (
        UniqueConstraint("day", "scope_type", "scope_id", name="uq_moderation_daily_stats"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    day: Mapped[date] = mapped_column(Date, nullable=False)
    scope_type: Mapped[str] = mapped_column(String(16), nullable=False)
    scope_id: Mapped[str] = mapped_column(String(36), nullable=False)
    badges_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    badges_abandoned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_actions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    avg_actions_per_badge: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    unique_moderators: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    content_removed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    content_kept: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completion_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )
