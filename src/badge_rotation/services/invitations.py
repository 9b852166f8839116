"""Invitation state machine: accept, decline, timeout and pass.

::

    offered --accept--> active
    offered --decline--> declined
    offered --timeout--> declined
    active  --pass-----> abandoned

Every transition locks the badge row before checking its preconditions, so
of two racing callers exactly one succeeds and the other sees a failed
precondition. Events go out only after the commit; ledger writes and
backfill happen after that and never undo the committed transition.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from badge_rotation.core.errors import (
    InvalidRequestError,
    NotFoundError,
    PreconditionFailedError,
    StaleStateError,
)
from badge_rotation.core.settings import Settings, settings
from badge_rotation.db.time import utcnow
from badge_rotation.models import BadgeHistory, BadgeInvitation, ModerationBadge
from badge_rotation.models.badge import (
    BADGE_STATUS_ABANDONED,
    BADGE_STATUS_ACTIVE,
    BADGE_STATUS_DECLINED,
    BADGE_STATUS_OFFERED,
    HISTORY_ABANDONED,
    HISTORY_DECLINED,
    INVITATION_ACCEPTED,
    INVITATION_DECLINED,
    INVITATION_TIMEOUT,
    OPEN_BADGE_STATUSES,
)
from badge_rotation.services import events as ev
from badge_rotation.services.assignment import AssignmentEngine, BackfillQueue
from badge_rotation.services.config_store import ModerationConfigStore
from badge_rotation.services.events import EventBus
from badge_rotation.services.ledger import Ledger, record_best_effort, store_ledger_ref
from badge_rotation.services.scope import Scope, parse_scope
from badge_rotation.services.stores import IdentityStore

logger = logging.getLogger(__name__)


def require_badge_id(badge_id: str) -> str:
    """Validate a badge identifier before it reaches the database."""
    try:
        return str(uuid.UUID(str(badge_id)))
    except ValueError as err:
        raise InvalidRequestError("Malformed badge id") from err


def lock_badge(db: Session, badge_id: str) -> ModerationBadge:
    """Load and row-lock a badge, refreshing any stale copy in the session."""
    badge = (
        db.query(ModerationBadge)
        .filter(ModerationBadge.id == badge_id)
        .with_for_update()
        .execution_options(populate_existing=True)
        .first()
    )
    if badge is None:
        raise NotFoundError("Badge not found")
    return badge


def badge_scope(badge: ModerationBadge) -> Scope:
    return parse_scope(badge.scope_type, badge.scope_id)


def time_remaining(badge: ModerationBadge, now: datetime) -> timedelta | None:
    """Time left in the duty window, or until the offer lapses for offered badges."""
    if badge.status == BADGE_STATUS_ACTIVE and badge.end_date is not None:
        return max(timedelta(0), badge.end_date - now)
    if badge.status == BADGE_STATUS_OFFERED and badge.invitation is not None:
        return max(timedelta(0), badge.invitation.expires_at - now)
    return None


@dataclass
class TimeoutSweepResult:
    timed_out: list[str] = field(default_factory=list)
    offered: list[str] = field(default_factory=list)


class InvitationManager:
    """Moves badges through the invitation state machine."""

    def __init__(
        self,
        *,
        engine: AssignmentEngine,
        config_store: ModerationConfigStore,
        identity: IdentityStore,
        events: EventBus,
        ledger: Ledger | None = None,
        clock: Callable[[], datetime] = utcnow,
        config: Settings = settings,
    ) -> None:
        self.engine = engine
        self.config_store = config_store
        self.identity = identity
        self.events = events
        self.ledger = ledger
        self.clock = clock
        self.settings = config

    def list_pending(self, db: Session, user_id: str) -> list[BadgeInvitation]:
        """Unanswered, unexpired invitations on offered badges, newest first."""
        return (
            db.query(BadgeInvitation)
            .join(ModerationBadge, ModerationBadge.id == BadgeInvitation.badge_id)
            .filter(
                BadgeInvitation.user_id == user_id,
                BadgeInvitation.response.is_(None),
                BadgeInvitation.expires_at > self.clock(),
                ModerationBadge.status == BADGE_STATUS_OFFERED,
            )
            .order_by(BadgeInvitation.invited_at.desc())
            .all()
        )

    def current_badge(self, db: Session, user_id: str) -> ModerationBadge | None:
        """The user's offered or active badge, if any."""
        return (
            db.query(ModerationBadge)
            .filter(
                ModerationBadge.holder_id == user_id,
                ModerationBadge.status.in_(OPEN_BADGE_STATUSES),
            )
            .first()
        )

    def active_badge(self, db: Session, user_id: str) -> ModerationBadge | None:
        return (
            db.query(ModerationBadge)
            .filter(
                ModerationBadge.holder_id == user_id,
                ModerationBadge.status == BADGE_STATUS_ACTIVE,
            )
            .first()
        )

    def _lock_offer(
        self, db: Session, user_id: str, badge_id: str
    ) -> tuple[ModerationBadge, BadgeInvitation]:
        badge = lock_badge(db, require_badge_id(badge_id))
        if badge.holder_id != user_id:
            raise PreconditionFailedError("Badge is offered to another user")
        invitation = badge.invitation
        if invitation is None:
            raise PreconditionFailedError("Badge has no invitation")
        if invitation.response is not None or badge.status != BADGE_STATUS_OFFERED:
            raise StaleStateError("Invitation has already been answered")
        return badge, invitation

    async def accept(self, db: Session, user_id: str, badge_id: str) -> ModerationBadge:
        """Accept an offer; the duty window starts now and lasts exactly ``duty_days``."""
        try:
            badge, invitation = self._lock_offer(db, user_id, badge_id)
            now = self.clock()
            if invitation.expires_at <= now:
                raise PreconditionFailedError("Invitation has expired")

            invitation.response = INVITATION_ACCEPTED
            invitation.responded_at = now
            badge.status = BADGE_STATUS_ACTIVE
            badge.accepted_at = now
            badge.start_date = now
            badge.end_date = now + timedelta(days=badge.duty_days)
            db.commit()
        except Exception:
            db.rollback()
            raise

        payload = {
            "badge_id": badge.id,
            "user_id": user_id,
            "scope_type": badge.scope_type,
            "scope_id": badge.scope_id,
            "start_date": badge.start_date.isoformat() if badge.start_date else None,
            "end_date": badge.end_date.isoformat() if badge.end_date else None,
        }
        self.events.publish(ev.BADGE_ACCEPTED, payload)
        logger.info("User %s accepted badge %s", user_id, badge.id)

        ref = await record_best_effort(self.ledger, "badge_accepted", payload)
        store_ledger_ref(db, badge, ref)
        return badge

    def decline(self, db: Session, user_id: str, badge_id: str) -> ModerationBadge:
        """Decline an offer, even after it expired; the scope is rebalanced afterwards."""
        try:
            badge, invitation = self._lock_offer(db, user_id, badge_id)
            self._close_offer(db, badge, invitation, INVITATION_DECLINED, self.clock())
            db.commit()
        except Exception:
            db.rollback()
            raise

        self.events.publish(
            ev.BADGE_DECLINED,
            {
                "badge_id": badge.id,
                "user_id": user_id,
                "scope_type": badge.scope_type,
                "scope_id": badge.scope_id,
            },
        )
        logger.info("User %s declined badge %s", user_id, badge.id)

        queue = BackfillQueue(self.engine)
        queue.push(badge_scope(badge))
        queue.drain(db)
        return badge

    def _close_offer(
        self,
        db: Session,
        badge: ModerationBadge,
        invitation: BadgeInvitation,
        response: str,
        now: datetime,
    ) -> None:
        invitation.response = response
        invitation.responded_at = now
        badge.status = BADGE_STATUS_DECLINED
        db.add(
            BadgeHistory(
                user_id=badge.holder_id,
                badge_id=badge.id,
                scope_type=badge.scope_type,
                scope_id=badge.scope_id,
                completion_status=HISTORY_DECLINED,
                completed_at=now,
            )
        )

    def process_timeouts(self, db: Session) -> TimeoutSweepResult:
        """Expire every lapsed offer, each in its own unit of work, then backfill.

        The backfill runs within the same sweep so the scopes are back at
        their desired badge count when it returns.
        """
        now = self.clock()
        badge_ids = [
            row.badge_id
            for row in db.query(BadgeInvitation.badge_id)
            .join(ModerationBadge, ModerationBadge.id == BadgeInvitation.badge_id)
            .filter(
                BadgeInvitation.response.is_(None),
                BadgeInvitation.expires_at <= now,
                ModerationBadge.status == BADGE_STATUS_OFFERED,
            )
            .order_by(BadgeInvitation.expires_at)
            .all()
        ]
        db.commit()

        result = TimeoutSweepResult()
        queue = BackfillQueue(self.engine)
        for badge_id in badge_ids:
            try:
                badge = lock_badge(db, badge_id)
                invitation = badge.invitation
                if (
                    badge.status != BADGE_STATUS_OFFERED
                    or invitation is None
                    or invitation.response is not None
                    or invitation.expires_at > now
                ):
                    db.rollback()
                    continue
                self._close_offer(db, badge, invitation, INVITATION_TIMEOUT, now)
                db.commit()
            except Exception:
                db.rollback()
                logger.exception("Failed to time out invitation for badge %s", badge_id)
                continue

            result.timed_out.append(badge.id)
            self.events.publish(
                ev.BADGE_TIMEOUT,
                {
                    "badge_id": badge.id,
                    "user_id": badge.holder_id,
                    "scope_type": badge.scope_type,
                    "scope_id": badge.scope_id,
                },
            )
            queue.push(badge_scope(badge))

        if result.timed_out:
            logger.info("Timed out %d invitation(s)", len(result.timed_out))
        result.offered = queue.drain(db)
        return result

    def pass_badge(
        self, db: Session, user_id: str, badge_id: str, reason: str
    ) -> ModerationBadge:
        """Hand back an active badge early; the holder takes the scope's penalty."""
        reason = (reason or "").strip()
        if len(reason) < self.settings.pass_reason_min_length:
            raise InvalidRequestError(
                f"Reason must be at least {self.settings.pass_reason_min_length} characters"
            )
        badge_id = require_badge_id(badge_id)

        try:
            badge = lock_badge(db, badge_id)
            if badge.holder_id != user_id:
                raise PreconditionFailedError("Badge is held by another user")
            if badge.status != BADGE_STATUS_ACTIVE:
                raise PreconditionFailedError("Only an active badge can be passed")

            now = self.clock()
            scope = badge_scope(badge)
            cfg = self.config_store.get(db, scope)
            penalty = cfg.penalty_reputation if cfg else self.settings.penalty_reputation

            badge.status = BADGE_STATUS_ABANDONED
            badge.end_date = now
            badge.pass_reason = reason
            db.add(
                BadgeHistory(
                    user_id=user_id,
                    badge_id=badge.id,
                    scope_type=badge.scope_type,
                    scope_id=badge.scope_id,
                    completion_status=HISTORY_ABANDONED,
                    completed_at=now,
                )
            )
            self.identity.adjust_reputation(db, user_id, -penalty)
            db.commit()
        except Exception:
            db.rollback()
            raise

        self.events.publish(
            ev.BADGE_PASSED,
            {
                "badge_id": badge.id,
                "user_id": user_id,
                "scope_type": badge.scope_type,
                "scope_id": badge.scope_id,
                "reason": reason,
                "reputation_penalty": penalty,
            },
        )
        logger.info("User %s passed badge %s", user_id, badge.id)

        queue = BackfillQueue(self.engine)
        queue.push(scope)
        queue.drain(db)
        return badge
