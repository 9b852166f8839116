"""Read-side reports over badges, actions and history."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from badge_rotation.core.errors import InvalidRequestError, NotFoundError
from badge_rotation.core.settings import Settings, settings
from badge_rotation.db.time import utcnow
from badge_rotation.models import (
    BadgeHistory,
    BadgeInvitation,
    ModerationAction,
    ModerationBadge,
    ModerationDailyStats,
    User,
)
from badge_rotation.models.badge import (
    BADGE_STATUS_ACTIVE,
    BADGE_STATUS_EXPIRED,
    HISTORY_ABANDONED,
    HISTORY_COMPLETED,
    HISTORY_DECLINED,
)
from badge_rotation.models.moderation import DECISION_KEEP, DECISION_REMOVE
from badge_rotation.services.assignment import AssignmentEngine, EligibilityResult
from badge_rotation.services.invitations import InvitationManager, require_badge_id
from badge_rotation.services.scope import Scope
from badge_rotation.services.settlement import Milestone, SettlementEngine
from badge_rotation.services.stores import ContentStore

logger = logging.getLogger(__name__)

STATS_WINDOW_DAYS = 30
LEADERBOARD_TIMEFRAMES: dict[str, int | None] = {"week": 7, "month": 30, "all": None}


@dataclass(frozen=True)
class ScopeStats:
    scope_type: str
    scope_id: str
    active_badges: int
    completed_badges: int
    actions_30d: int
    removals_30d: int
    keeps_30d: int
    avg_actions_per_badge: float
    unique_moderators_30d: int
    pending_items: int
    removal_rate: float


@dataclass(frozen=True)
class LeaderboardEntry:
    rank: int
    user_id: str
    display_name: str | None
    badges_completed: int
    total_actions: int
    avg_actions_per_badge: float
    last_badge_completed: datetime | None


@dataclass(frozen=True)
class BadgePerformance:
    badge_id: str
    holder_id: str
    scope_type: str
    scope_id: str
    status: str
    actions_taken: int
    min_actions_required: int
    total_actions: int
    keeps: int
    removes: int
    hours_active: float
    actions_per_day: float
    avg_hours_to_action: float | None
    performance_status: str


@dataclass
class HistorySummary:
    total_badges: int = 0
    completed_badges: int = 0
    abandoned_badges: int = 0
    declined_badges: int = 0
    total_actions: int = 0
    avg_actions_per_badge: float = 0.0
    last_badge_date: datetime | None = None


@dataclass
class ModerationProfile:
    user_id: str
    eligibility: EligibilityResult
    current_badge: ModerationBadge | None
    pending_invitations: list[BadgeInvitation]
    history: HistorySummary
    milestones: list[Milestone] = field(default_factory=list)
    next_eligible_date: datetime | None = None


class ReportingService:
    """Statistics for operators and members.

    Only :meth:`aggregate_daily` writes, and only to the daily summary table.
    """

    def __init__(
        self,
        *,
        engine: AssignmentEngine,
        invitations: InvitationManager,
        settlement: SettlementEngine,
        content: ContentStore,
        clock: Callable[[], datetime] = utcnow,
        config: Settings = settings,
    ) -> None:
        self.engine = engine
        self.invitations = invitations
        self.settlement = settlement
        self.content = content
        self.clock = clock
        self.settings = config

    def scope_stats(self, db: Session, scope: Scope) -> ScopeStats:
        since = self.clock() - timedelta(days=STATS_WINDOW_DAYS)
        in_scope = (
            ModerationBadge.scope_type == scope.scope_type,
            ModerationBadge.scope_id == scope.scope_id,
        )

        active = (
            db.query(func.count(ModerationBadge.id))
            .filter(*in_scope, ModerationBadge.status == BADGE_STATUS_ACTIVE)
            .scalar()
            or 0
        )
        completed = (
            db.query(func.count(BadgeHistory.id))
            .filter(
                BadgeHistory.scope_type == scope.scope_type,
                BadgeHistory.scope_id == scope.scope_id,
                BadgeHistory.completion_status == HISTORY_COMPLETED,
            )
            .scalar()
            or 0
        )
        avg_actions = (
            db.query(func.avg(ModerationBadge.actions_taken))
            .filter(*in_scope, ModerationBadge.status == BADGE_STATUS_EXPIRED)
            .scalar()
        )

        decisions: dict[str, int] = defaultdict(int)
        moderators: set[str] = set()
        rows = (
            db.query(ModerationAction.decision, ModerationBadge.holder_id)
            .join(ModerationBadge, ModerationBadge.id == ModerationAction.badge_id)
            .filter(*in_scope, ModerationAction.created_at >= since)
            .all()
        )
        for row in rows:
            decisions[row.decision] += 1
            moderators.add(row.holder_id)

        total = len(rows)
        removals = decisions[DECISION_REMOVE]
        return ScopeStats(
            scope_type=scope.scope_type,
            scope_id=scope.scope_id,
            active_badges=int(active),
            completed_badges=int(completed),
            actions_30d=total,
            removals_30d=removals,
            keeps_30d=decisions[DECISION_KEEP],
            avg_actions_per_badge=round(float(avg_actions or 0), 2),
            unique_moderators_30d=len(moderators),
            pending_items=self.content.pending_count(db, scope),
            removal_rate=round(removals / total * 100, 1) if total else 0.0,
        )

    def leaderboard(
        self,
        db: Session,
        scope: Scope | None = None,
        timeframe: str = "month",
        limit: int = 20,
    ) -> list[LeaderboardEntry]:
        """Rank holders by completed badges, then by total actions on those badges."""
        if timeframe not in LEADERBOARD_TIMEFRAMES:
            raise InvalidRequestError("Timeframe must be one of week, month, all")
        if not 1 <= limit <= 100:
            raise InvalidRequestError("Limit must be between 1 and 100")

        badges_completed = func.count(BadgeHistory.badge_id).label("badges_completed")
        total_actions = func.coalesce(func.sum(ModerationBadge.actions_taken), 0).label(
            "total_actions"
        )
        query = (
            db.query(
                User.id,
                User.display_name,
                badges_completed,
                total_actions,
                func.max(BadgeHistory.completed_at).label("last_completed"),
            )
            .join(BadgeHistory, BadgeHistory.user_id == User.id)
            .join(ModerationBadge, ModerationBadge.id == BadgeHistory.badge_id)
            .filter(BadgeHistory.completion_status == HISTORY_COMPLETED)
        )
        days = LEADERBOARD_TIMEFRAMES[timeframe]
        if days is not None:
            query = query.filter(BadgeHistory.completed_at > self.clock() - timedelta(days=days))
        if scope is not None:
            query = query.filter(
                BadgeHistory.scope_type == scope.scope_type,
                BadgeHistory.scope_id == scope.scope_id,
            )
        rows = (
            query.group_by(User.id, User.display_name)
            .order_by(badges_completed.desc(), total_actions.desc(), User.id)
            .limit(limit)
            .all()
        )

        entries: list[LeaderboardEntry] = []
        previous: tuple[int, int] | None = None
        rank = 0
        for position, row in enumerate(rows, start=1):
            key = (int(row.badges_completed), int(row.total_actions))
            if key != previous:
                rank = position
                previous = key
            entries.append(
                LeaderboardEntry(
                    rank=rank,
                    user_id=row.id,
                    display_name=row.display_name,
                    badges_completed=key[0],
                    total_actions=key[1],
                    avg_actions_per_badge=round(key[1] / key[0], 2) if key[0] else 0.0,
                    last_badge_completed=row.last_completed,
                )
            )
        return entries

    def badge_performance(self, db: Session, badge_id: str) -> BadgePerformance:
        badge = db.get(ModerationBadge, require_badge_id(badge_id))
        if badge is None:
            raise NotFoundError("Badge not found")

        actions = (
            db.query(ModerationAction)
            .filter(ModerationAction.badge_id == badge.id)
            .order_by(ModerationAction.created_at)
            .all()
        )
        keeps = sum(1 for action in actions if action.decision == DECISION_KEEP)
        removes = sum(1 for action in actions if action.decision == DECISION_REMOVE)

        hours_active = 0.0
        avg_hours_to_action: float | None = None
        if badge.start_date is not None:
            end = min(badge.end_date or self.clock(), self.clock())
            hours_active = max(0.0, (end - badge.start_date).total_seconds() / 3600)
            if actions:
                offsets = [
                    (action.created_at - badge.start_date).total_seconds() / 3600
                    for action in actions
                ]
                avg_hours_to_action = round(sum(offsets) / len(offsets), 2)

        if badge.quota_met:
            performance = "completed"
        elif badge.status == BADGE_STATUS_ACTIVE:
            performance = "in_progress"
        else:
            performance = "abandoned"

        return BadgePerformance(
            badge_id=badge.id,
            holder_id=badge.holder_id,
            scope_type=badge.scope_type,
            scope_id=badge.scope_id,
            status=badge.status,
            actions_taken=badge.actions_taken,
            min_actions_required=badge.min_actions_required,
            total_actions=len(actions),
            keeps=keeps,
            removes=removes,
            hours_active=round(hours_active, 2),
            actions_per_day=round(len(actions) / (hours_active / 24), 2) if hours_active else 0.0,
            avg_hours_to_action=avg_hours_to_action,
            performance_status=performance,
        )

    def moderation_profile(self, db: Session, user_id: str) -> ModerationProfile:
        eligibility = self.engine.check_user_eligibility(db, user_id)

        summary = HistorySummary()
        rows = (
            db.query(
                BadgeHistory.completion_status,
                ModerationBadge.actions_taken,
                BadgeHistory.completed_at,
            )
            .join(ModerationBadge, ModerationBadge.id == BadgeHistory.badge_id)
            .filter(BadgeHistory.user_id == user_id)
            .all()
        )
        for row in rows:
            summary.total_badges += 1
            if row.completion_status == HISTORY_COMPLETED:
                summary.completed_badges += 1
            elif row.completion_status == HISTORY_ABANDONED:
                summary.abandoned_badges += 1
            elif row.completion_status == HISTORY_DECLINED:
                summary.declined_badges += 1
            summary.total_actions += row.actions_taken
            if summary.last_badge_date is None or row.completed_at > summary.last_badge_date:
                summary.last_badge_date = row.completed_at
        served = summary.completed_badges + summary.abandoned_badges
        if served:
            summary.avg_actions_per_badge = round(summary.total_actions / served, 2)

        return ModerationProfile(
            user_id=user_id,
            eligibility=eligibility,
            current_badge=self.invitations.current_badge(db, user_id),
            pending_invitations=self.invitations.list_pending(db, user_id),
            history=summary,
            milestones=self.settlement.milestones(db, user_id),
            next_eligible_date=eligibility.cooldown_ends_at,
        )

    def aggregate_daily(self, db: Session, day: date) -> list[ModerationDailyStats]:
        """Summarise badges that ended on ``day`` per scope; re-running overwrites."""
        start = datetime.combine(day, time.min, tzinfo=UTC)
        end = start + timedelta(days=1)
        rows = (
            db.query(
                BadgeHistory.scope_type,
                BadgeHistory.scope_id,
                BadgeHistory.user_id,
                BadgeHistory.badge_id,
                BadgeHistory.completion_status,
                ModerationBadge.actions_taken,
            )
            .join(ModerationBadge, ModerationBadge.id == BadgeHistory.badge_id)
            .filter(
                BadgeHistory.completed_at >= start,
                BadgeHistory.completed_at < end,
                BadgeHistory.completion_status.in_((HISTORY_COMPLETED, HISTORY_ABANDONED)),
            )
            .all()
        )

        grouped: dict[tuple[str, str], list[Any]] = defaultdict(list)
        for row in rows:
            grouped[(row.scope_type, row.scope_id)].append(row)

        results: list[ModerationDailyStats] = []
        for (scope_type, scope_id), entries in grouped.items():
            badge_ids = [entry.badge_id for entry in entries]
            decisions = dict(
                db.query(ModerationAction.decision, func.count(ModerationAction.id))
                .filter(ModerationAction.badge_id.in_(badge_ids))
                .group_by(ModerationAction.decision)
                .all()
            )
            completed = sum(1 for e in entries if e.completion_status == HISTORY_COMPLETED)
            total_actions = sum(e.actions_taken for e in entries)

            stats = (
                db.query(ModerationDailyStats)
                .filter(
                    ModerationDailyStats.day == day,
                    ModerationDailyStats.scope_type == scope_type,
                    ModerationDailyStats.scope_id == scope_id,
                )
                .first()
            )
            if stats is None:
                stats = ModerationDailyStats(day=day, scope_type=scope_type, scope_id=scope_id)
                db.add(stats)
            stats.badges_completed = completed
            stats.badges_abandoned = len(entries) - completed
            stats.total_actions = total_actions
            stats.avg_actions_per_badge = round(total_actions / len(entries), 2)
            stats.unique_moderators = len({e.user_id for e in entries})
            stats.content_removed = int(decisions.get(DECISION_REMOVE, 0))
            stats.content_kept = int(decisions.get(DECISION_KEEP, 0))
            stats.completion_rate = round(completed / len(entries) * 100, 1)
            results.append(stats)

        db.commit()
        logger.info("Aggregated daily stats for %s across %d scope(s)", day, len(results))
        return results
