"""Review queue assembly and decision processing for badge holders."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from badge_rotation.core.errors import (
    InvalidRequestError,
    NotFoundError,
    PreconditionFailedError,
    RotationError,
    StaleStateError,
)
from badge_rotation.core.settings import Settings, settings
from badge_rotation.db.time import utcnow
from badge_rotation.models import ModerationAction, ModerationBadge
from badge_rotation.models.badge import BADGE_STATUS_ACTIVE
from badge_rotation.models.content import CONTENT_TYPES
from badge_rotation.models.moderation import DECISION_REMOVE, DECISIONS
from badge_rotation.services import events as ev
from badge_rotation.services.events import EventBus
from badge_rotation.services.invitations import badge_scope, lock_badge, require_badge_id
from badge_rotation.services.ledger import Ledger, record_best_effort, store_ledger_ref
from badge_rotation.services.stores import ContentStore, FlaggedItem, IdentityStore

logger = logging.getLogger(__name__)

MAX_CONTENT_ID_LENGTH = 36
MAX_REASON_LENGTH = 1000


@dataclass(frozen=True)
class Decision:
    """A holder's ruling on one flagged item."""

    badge_id: str
    content_type: str
    content_id: str
    decision: str
    reason: str | None = None

    def validate(self) -> Decision:
        if self.content_type not in CONTENT_TYPES:
            raise InvalidRequestError(f"Unknown content type: {self.content_type!r}")
        if self.decision not in DECISIONS:
            raise InvalidRequestError(f"Decision must be one of {', '.join(DECISIONS)}")
        if not self.content_id or len(self.content_id) > MAX_CONTENT_ID_LENGTH:
            raise InvalidRequestError("Malformed content id")
        if self.reason is not None and len(self.reason) > MAX_REASON_LENGTH:
            raise InvalidRequestError(f"Reason must be at most {MAX_REASON_LENGTH} characters")
        require_badge_id(self.badge_id)
        return self


@dataclass(frozen=True)
class PriorAction:
    badge_id: str
    decision: str
    reason: str | None
    created_at: datetime


@dataclass
class QueueItem:
    item: FlaggedItem
    previous_actions: list[PriorAction] = field(default_factory=list)


@dataclass
class QueueView:
    badge: ModerationBadge
    items: list[QueueItem]


@dataclass(frozen=True)
class DecisionResult:
    action_id: int
    badge_id: str
    decision: str
    flags_resolved: int
    actions_taken: int
    ledger_ref: str | None = None


@dataclass
class BatchResult:
    processed: int = 0
    successful: int = 0
    results: list[dict[str, Any]] = field(default_factory=list)


class ModerationQueueService:
    """Builds a holder's private queue and applies their decisions."""

    def __init__(
        self,
        *,
        identity: IdentityStore,
        content: ContentStore,
        events: EventBus,
        ledger: Ledger | None = None,
        clock: Callable[[], datetime] = utcnow,
        config: Settings = settings,
    ) -> None:
        self.identity = identity
        self.content = content
        self.events = events
        self.ledger = ledger
        self.clock = clock
        self.settings = config

    def _reviewing_badge(self, db: Session, user_id: str, badge_id: str | None) -> ModerationBadge:
        if badge_id is None:
            badge = (
                db.query(ModerationBadge)
                .filter(
                    ModerationBadge.holder_id == user_id,
                    ModerationBadge.status == BADGE_STATUS_ACTIVE,
                )
                .first()
            )
            if badge is None:
                raise PreconditionFailedError("You do not hold an active badge")
        else:
            badge = db.get(ModerationBadge, require_badge_id(badge_id))
            if badge is None:
                raise NotFoundError("Badge not found")
            if badge.holder_id != user_id:
                raise PreconditionFailedError("Badge is held by another user")
            if badge.status != BADGE_STATUS_ACTIVE:
                raise PreconditionFailedError("Badge is not active")

        # Settlement may lag behind end_date; the window is closed regardless.
        if badge.end_date is None or badge.end_date <= self.clock():
            raise PreconditionFailedError("Duty window has closed")
        return badge

    def get_queue(
        self,
        db: Session,
        user_id: str,
        badge_id: str | None = None,
        limit: int | None = None,
    ) -> QueueView:
        """Unresolved flagged content in the badge's scope, most-flagged first."""
        badge = self._reviewing_badge(db, user_id, badge_id)
        flagged = self.content.unresolved_flags(
            db, badge_scope(badge), limit or self.settings.queue_page_size
        )

        prior: dict[tuple[str, str], list[PriorAction]] = defaultdict(list)
        if flagged:
            rows = (
                db.query(ModerationAction)
                .filter(
                    ModerationAction.content_id.in_([item.content_id for item in flagged]),
                    ModerationAction.badge_id != badge.id,
                )
                .order_by(ModerationAction.created_at)
                .all()
            )
            for row in rows:
                prior[(row.content_type, row.content_id)].append(
                    PriorAction(
                        badge_id=row.badge_id,
                        decision=row.decision,
                        reason=row.reason,
                        created_at=row.created_at,
                    )
                )

        items = [
            QueueItem(
                item=item,
                previous_actions=prior.get((item.content_type, item.content_id), []),
            )
            for item in flagged
        ]
        return QueueView(badge=badge, items=items)

    async def submit_decision(
        self, db: Session, user_id: str, decision: Decision
    ) -> DecisionResult:
        """Record a ruling, resolve the item's flags and count it toward the quota.

        The whole ruling is one transaction. If the content has no open flags
        left in the badge's scope (another holder ruled first) nothing is
        written and a precondition error is raised.
        """
        decision.validate()

        try:
            badge = lock_badge(db, require_badge_id(decision.badge_id))
            if badge.holder_id != user_id:
                raise PreconditionFailedError("Badge is held by another user")
            if badge.status != BADGE_STATUS_ACTIVE:
                raise PreconditionFailedError("Badge is not active")
            now = self.clock()
            if badge.end_date is None or badge.end_date <= now:
                raise PreconditionFailedError("Duty window has closed")

            scope = badge_scope(badge)
            flag_count = self.content.unresolved_flag_count(
                db, decision.content_type, decision.content_id, scope
            )
            if flag_count == 0:
                raise PreconditionFailedError("Content has no unresolved flags in this scope")

            action = ModerationAction(
                badge_id=badge.id,
                content_type=decision.content_type,
                content_id=decision.content_id,
                decision=decision.decision,
                reason=decision.reason,
                flags_at_review=flag_count,
                created_at=now,
            )
            db.add(action)
            db.flush()

            author_id: str | None = None
            if decision.decision == DECISION_REMOVE:
                author_id = self.content.hide_content(
                    db, decision.content_type, decision.content_id, user_id
                )
                if author_id:
                    self.identity.adjust_reputation(
                        db, author_id, -self.settings.removal_reputation_penalty
                    )

            resolved = self.content.resolve_flags(
                db, decision.content_type, decision.content_id, user_id
            )
            if resolved == 0:
                raise StaleStateError("Content was resolved by a concurrent decision")

            badge.actions_taken += 1
            db.commit()
        except Exception:
            db.rollback()
            raise

        payload = {
            "badge_id": badge.id,
            "user_id": user_id,
            "action_id": action.id,
            "content_type": decision.content_type,
            "content_id": decision.content_id,
            "scope_type": badge.scope_type,
            "scope_id": badge.scope_id,
            "flags_resolved": resolved,
            "author_id": author_id,
        }
        event_type = ev.CONTENT_REMOVED if decision.decision == DECISION_REMOVE else ev.CONTENT_KEPT
        self.events.publish(event_type, payload)
        logger.info(
            "Badge %s ruled %s on %s %s",
            badge.id,
            decision.decision,
            decision.content_type,
            decision.content_id,
        )

        ref = await record_best_effort(
            self.ledger, "moderation_action", {**payload, "decision": decision.decision}
        )
        store_ledger_ref(db, action, ref)

        return DecisionResult(
            action_id=action.id,
            badge_id=badge.id,
            decision=decision.decision,
            flags_resolved=resolved,
            actions_taken=badge.actions_taken,
            ledger_ref=ref,
        )

    async def submit_batch(
        self,
        db: Session,
        user_id: str,
        badge_id: str,
        decisions: Sequence[Decision],
    ) -> BatchResult:
        """Apply up to ``max_batch_review_size`` rulings, each independently."""
        limit = self.settings.max_batch_review_size
        if not 1 <= len(decisions) <= limit:
            raise InvalidRequestError(f"Batch must contain between 1 and {limit} decisions")
        require_badge_id(badge_id)

        result = BatchResult()
        for item in decisions:
            entry: dict[str, Any] = {
                "content_type": item.content_type,
                "content_id": item.content_id,
            }
            result.processed += 1
            try:
                outcome = await self.submit_decision(db, user_id, item)
            except RotationError as exc:
                entry.update(success=False, error=str(exc))
            except Exception:
                logger.exception(
                    "Batch decision on %s %s failed", item.content_type, item.content_id
                )
                entry.update(success=False, error="Internal error")
            else:
                result.successful += 1
                entry.update(success=True, action_id=outcome.action_id)
            result.results.append(entry)
        return result
