"""Eligibility computation and randomized badge assignment.

Each scope wants one badge per ``badge_ratio`` recently active members. A
balance check computes the shortfall (the deficit) and fills it with offers
to randomly chosen eligible members. Balance checks for one scope serialize
on the scope's config row, and a partial unique index guarantees no member
holds two open badges even when checks for different scopes race.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from badge_rotation.core.errors import NotFoundError
from badge_rotation.core.settings import Settings, settings
from badge_rotation.db.time import utcnow
from badge_rotation.models import BadgeHistory, BadgeInvitation, ModerationBadge, ModerationConfig
from badge_rotation.models.badge import BADGE_STATUS_OFFERED, OPEN_BADGE_STATUSES
from badge_rotation.services import events as ev
from badge_rotation.services.config_store import ModerationConfigStore, default_values
from badge_rotation.services.events import EventBus
from badge_rotation.services.randomness import RandomSource, system_random
from badge_rotation.services.scope import Scope
from badge_rotation.services.stores import IdentityStore, MembershipStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeficitReport:
    """How far a scope is from its desired badge count."""

    active_members: int
    desired: int
    current: int

    @property
    def deficit(self) -> int:
        return max(0, self.desired - self.current)


@dataclass
class EligibilityResult:
    """Outcome of a single user's eligibility check, with reasons when ineligible."""

    eligible: bool
    reasons: list[str] = field(default_factory=list)
    current_badge_id: str | None = None
    cooldown_ends_at: datetime | None = None


class AssignmentEngine:
    """Creates badge offers so each scope keeps its desired number of moderators."""

    def __init__(
        self,
        *,
        config_store: ModerationConfigStore,
        identity: IdentityStore,
        membership: MembershipStore,
        events: EventBus,
        rng: RandomSource | None = None,
        clock: Callable[[], datetime] = utcnow,
        config: Settings = settings,
    ) -> None:
        self.config_store = config_store
        self.identity = identity
        self.membership = membership
        self.events = events
        self.rng = rng or system_random()
        self.clock = clock
        self.settings = config

    def _open_badge_count(self, db: Session, scope: Scope) -> int:
        return (
            db.query(func.count(ModerationBadge.id))
            .filter(
                ModerationBadge.scope_type == scope.scope_type,
                ModerationBadge.scope_id == scope.scope_id,
                ModerationBadge.status.in_(OPEN_BADGE_STATUSES),
            )
            .scalar()
            or 0
        )

    def _deficit(self, db: Session, scope: Scope, cfg: ModerationConfig) -> DeficitReport:
        members = self.membership.active_member_ids(
            db, scope, self.settings.activity_window_days
        )
        ratio = max(1, cfg.badge_ratio)
        return DeficitReport(
            active_members=len(members),
            desired=math.ceil(len(members) / ratio),
            current=self._open_badge_count(db, scope),
        )

    def compute_deficit(self, db: Session, scope: Scope) -> DeficitReport:
        """Report desired versus current badges for ``scope``."""
        cfg = self.config_store.get_or_create(db, scope)
        return self._deficit(db, scope, cfg)

    def eligible_candidates(
        self,
        db: Session,
        scope: Scope,
        cfg: ModerationConfig | None = None,
    ) -> list[str]:
        """Return ids of members who may be offered a badge in ``scope``, sorted by id."""
        cfg = cfg or self.config_store.get_or_create(db, scope)
        member_ids = self.membership.active_member_ids(
            db, scope, self.settings.activity_window_days
        )
        if not member_ids:
            return []

        holders = {
            row.holder_id
            for row in db.query(ModerationBadge.holder_id).filter(
                ModerationBadge.holder_id.in_(member_ids),
                ModerationBadge.status.in_(OPEN_BADGE_STATUSES),
            )
        }
        cooldown_since = self.clock() - timedelta(days=self.settings.cooldown_days)
        cooling = {
            row.user_id
            for row in db.query(BadgeHistory.user_id).filter(
                BadgeHistory.user_id.in_(member_ids),
                BadgeHistory.scope_type == scope.scope_type,
                BadgeHistory.scope_id == scope.scope_id,
                BadgeHistory.completed_at >= cooldown_since,
            )
        }
        users = self.identity.get_users(db, member_ids)

        candidates = [
            user.id
            for user in users.values()
            if not user.read_only
            and user.reputation >= cfg.min_reputation
            and user.account_age_days >= cfg.min_account_age_days
            and user.id not in holders
            and user.id not in cooling
        ]
        return sorted(candidates)

    def _offer(
        self, db: Session, scope: Scope, cfg: ModerationConfig, user_id: str
    ) -> dict[str, Any]:
        now = self.clock()
        low, high = self.settings.duty_days_range
        badge = ModerationBadge(
            scope_type=scope.scope_type,
            scope_id=scope.scope_id,
            holder_id=user_id,
            status=BADGE_STATUS_OFFERED,
            duty_days=self.rng.randint(low, high),
            offered_at=now,
            min_actions_required=cfg.min_actions_required,
        )
        badge.invitation = BadgeInvitation(
            user_id=user_id,
            invited_at=now,
            expires_at=now + timedelta(hours=self.settings.invitation_timeout_hours),
        )
        db.add(badge)
        db.flush()
        return {
            "badge_id": badge.id,
            "user_id": user_id,
            "scope_type": scope.scope_type,
            "scope_id": scope.scope_id,
            "duty_days": badge.duty_days,
            "expires_at": badge.invitation.expires_at.isoformat(),
        }

    def check_and_assign(self, db: Session, scope: Scope) -> list[str]:
        """Fill the scope's deficit with new offers; return the new badge ids.

        Re-running without a state change creates nothing. When another
        scope's check offers a badge to the same member first, the unique
        index rejects this unit; it is rolled back and retried.
        """
        self.config_store.get_or_create(db, scope)
        max_attempts = max(1, self.settings.assignment_max_attempts)

        for attempt in range(1, max_attempts + 1):
            offers: list[dict[str, Any]] = []
            try:
                cfg = self.config_store.lock(db, scope)
                report = self._deficit(db, scope, cfg)
                if report.deficit:
                    candidates = self.eligible_candidates(db, scope, cfg)
                    for _ in range(report.deficit):
                        if not candidates:
                            logger.warning(
                                "Scope %s short of eligible members: %d of %d badge(s) unfilled",
                                scope,
                                report.deficit - len(offers),
                                report.deficit,
                            )
                            break
                        user_id = self.rng.choice(candidates)
                        candidates.remove(user_id)
                        offers.append(self._offer(db, scope, cfg, user_id))
                db.commit()
            except IntegrityError:
                db.rollback()
                logger.info(
                    "Concurrent offer collided in %s (attempt %d/%d)", scope, attempt, max_attempts
                )
                continue

            for payload in offers:
                self.events.publish(ev.BADGE_OFFERED, payload)
            if offers:
                logger.info("Offered %d badge(s) in %s", len(offers), scope)
            return [payload["badge_id"] for payload in offers]

        logger.warning("Giving up on balance check for %s after %d attempts", scope, max_attempts)
        return []

    def check_user_eligibility(
        self, db: Session, user_id: str, scope: Scope | None = None
    ) -> EligibilityResult:
        """Explain whether ``user_id`` could be offered a badge right now.

        Without a scope the default thresholds apply and cooldown considers
        every scope.
        """
        user = self.identity.get_user(db, user_id)
        if user is None:
            raise NotFoundError("User not found")

        thresholds = default_values(self.settings)
        if scope is not None:
            cfg = self.config_store.get(db, scope)
            if cfg is not None:
                thresholds["min_reputation"] = cfg.min_reputation
                thresholds["min_account_age_days"] = cfg.min_account_age_days

        now = self.clock()
        result = EligibilityResult(eligible=True)

        if user.read_only:
            result.reasons.append("Read-only accounts cannot hold a badge")
        if user.reputation < thresholds["min_reputation"]:
            result.reasons.append(
                f"Reputation {user.reputation} is below the required {thresholds['min_reputation']}"
            )
        if user.account_age_days < thresholds["min_account_age_days"]:
            result.reasons.append(
                f"Account must be at least {thresholds['min_account_age_days']} days old"
            )

        window = timedelta(days=self.settings.activity_window_days)
        if user.last_active_at is None or user.last_active_at < now - window:
            result.reasons.append(
                f"No activity in the last {self.settings.activity_window_days} days"
            )
        if scope is not None and not self.membership.is_member(db, scope, user_id):
            result.reasons.append("Not a member of this scope")

        current = (
            db.query(ModerationBadge.id)
            .filter(
                ModerationBadge.holder_id == user_id,
                ModerationBadge.status.in_(OPEN_BADGE_STATUSES),
            )
            .first()
        )
        if current is not None:
            result.current_badge_id = current.id
            result.reasons.append("Already holds or has been offered a badge")

        history = db.query(func.max(BadgeHistory.completed_at)).filter(
            BadgeHistory.user_id == user_id
        )
        if scope is not None:
            history = history.filter(
                BadgeHistory.scope_type == scope.scope_type,
                BadgeHistory.scope_id == scope.scope_id,
            )
        last_completed = history.scalar()
        if last_completed is not None:
            ends_at = last_completed + timedelta(days=self.settings.cooldown_days)
            if ends_at > now:
                result.cooldown_ends_at = ends_at
                result.reasons.append(f"In cooldown until {ends_at.isoformat()}")

        result.eligible = not result.reasons
        return result


class BackfillQueue:
    """Scopes waiting to be rebalanced after a badge left the open states.

    One queue lives for one operation or sweep. Pushing the same scope twice
    collapses to one entry, and each drain balances a scope at most once.
    """

    def __init__(self, engine: AssignmentEngine, max_scopes: int | None = None) -> None:
        self.engine = engine
        self.max_scopes = max_scopes or engine.settings.backfill_max_scopes
        self._pending: dict[tuple[str, str], Scope] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def push(self, scope: Scope) -> None:
        self._pending.setdefault(scope.key, scope)

    def drain(self, db: Session) -> list[str]:
        """Balance every queued scope once; failures are logged and skipped."""
        scopes = list(self._pending.values())
        self._pending.clear()
        if len(scopes) > self.max_scopes:
            logger.warning(
                "Backfill capped at %d scope(s); %d deferred to the next balance check",
                self.max_scopes,
                len(scopes) - self.max_scopes,
            )
            scopes = scopes[: self.max_scopes]

        created: list[str] = []
        for scope in scopes:
            try:
                created.extend(self.engine.check_and_assign(db, scope))
            except Exception:
                db.rollback()
                logger.exception("Backfill failed for %s", scope)
        return created
