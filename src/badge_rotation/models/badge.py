"""Models tracking moderation badges, their invitations and completion history."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from badge_rotation.db.session import Base
from badge_rotation.db.time import UTCDateTime, utcnow

BADGE_STATUS_OFFERED = "offered"
BADGE_STATUS_ACTIVE = "active"
BADGE_STATUS_EXPIRED = "expired"
BADGE_STATUS_DECLINED = "declined"
BADGE_STATUS_ABANDONED = "abandoned"
OPEN_BADGE_STATUSES = (BADGE_STATUS_OFFERED, BADGE_STATUS_ACTIVE)

INVITATION_ACCEPTED = "accepted"
INVITATION_DECLINED = "declined"
INVITATION_TIMEOUT = "timeout"

HISTORY_COMPLETED = "completed"
HISTORY_ABANDONED = "abandoned"
HISTORY_DECLINED = "declined"

_OPEN_STATUS_PREDICATE = text("status IN ('offered', 'active')")


def _new_id() -> str:
    return str(uuid.uuid4())


class ModerationBadge(Base):
    """A temporary, scope-bound moderation role held by one member."""

    __tablename__ = "mod_badge"
    __table_args__ = (
        # A member holds or is offered at most one badge at a time, across all scopes.
        Index(
            "uq_mod_badge_open_holder",
            "holder_id",
            unique=True,
            postgresql_where=_OPEN_STATUS_PREDICATE,
            sqlite_where=_OPEN_STATUS_PREDICATE,
        ),
        Index("ix_mod_badge_scope_status", "scope_type", "scope_id", "status"),
        Index("ix_mod_badge_status_end", "status", "end_date"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    scope_type: Mapped[str] = mapped_column(String(16), nullable=False)
    scope_id: Mapped[str] = mapped_column(String(36), nullable=False)
    holder_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("app_user.id"),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=BADGE_STATUS_OFFERED)
    duty_days: Mapped[int] = mapped_column(Integer, nullable=False)
    offered_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    accepted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    start_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    actions_taken: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    min_actions_required: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    ledger_ref: Mapped[str | None] = mapped_column(Text, nullable=True)
    pass_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    invitation: Mapped[BadgeInvitation | None] = relationship(
        "BadgeInvitation",
        back_populates="badge",
        uselist=False,
        cascade="all, delete-orphan",
    )

    @property
    def progress_percentage(self) -> int:
        """Share of the action quota met so far, rounded to whole percent."""
        if self.min_actions_required <= 0:
            return 100
        return round(self.actions_taken / self.min_actions_required * 100)

    @property
    def quota_met(self) -> bool:
        return self.actions_taken >= self.min_actions_required


class BadgeInvitation(Base):
    """The single offer attached to a badge while it is in the offered state."""

    __tablename__ = "badge_invitation"
    __table_args__ = (
        Index("ix_badge_invitation_open", "response", "expires_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    badge_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("mod_badge.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("app_user.id"),
        nullable=False,
        index=True,
    )
    invited_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    # NULL until answered; accepted, declined or timeout afterwards and never changed again.
    response: Mapped[str | None] = mapped_column(String(16), nullable=True)
    responded_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    badge: Mapped[ModerationBadge] = relationship("ModerationBadge", back_populates="invitation")


class BadgeHistory(Base):
    """Append-only record of how each badge ended for its holder."""

    __tablename__ = "badge_history"
    __table_args__ = (
        Index("ix_badge_history_cooldown", "user_id", "scope_type", "scope_id", "completed_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("app_user.id"),
        nullable=False,
    )
    badge_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("mod_badge.id"),
        nullable=False,
        unique=True,
    )
    scope_type: Mapped[str] = mapped_column(String(16), nullable=False)
    scope_id: Mapped[str] = mapped_column(String(36), nullable=False)
    # completed, abandoned or declined
    completion_status: Mapped[str] = mapped_column(String(16), nullable=False)
    completed_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
