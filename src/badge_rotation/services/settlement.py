"""Settlement of badges whose duty window has closed, plus milestone tracking."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from badge_rotation.core.settings import Settings, settings
from badge_rotation.db.time import utcnow
from badge_rotation.models import BadgeHistory, ModerationBadge
from badge_rotation.models.badge import (
    BADGE_STATUS_ABANDONED,
    BADGE_STATUS_ACTIVE,
    BADGE_STATUS_EXPIRED,
    HISTORY_ABANDONED,
    HISTORY_COMPLETED,
)
from badge_rotation.services import events as ev
from badge_rotation.services.config_store import ModerationConfigStore
from badge_rotation.services.events import EventBus
from badge_rotation.services.invitations import badge_scope, lock_badge
from badge_rotation.services.ledger import (
    Ledger,
    LedgerDisabledError,
    LedgerError,
    TokenTransfer,
    record_best_effort,
    store_ledger_ref,
)
from badge_rotation.services.scope import ScopeKind
from badge_rotation.services.stores import IdentityStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Milestone:
    key: str
    description: str
    progress: int
    target: int
    reward_pco: float
    reward_reputation: int

    @property
    def achieved(self) -> bool:
        return self.progress >= self.target


@dataclass(frozen=True)
class RewardTransfer:
    """Everything a background reward transfer needs, captured at settlement time."""

    badge_id: str
    user_id: str
    wallet_address: str | None
    amount: float
    reputation: int
    actions_taken: int


@dataclass
class SettlementResult:
    completed: list[str] = field(default_factory=list)
    abandoned: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SettledBadge:
    """A committed settlement, waiting for its events and follow-up writes."""

    badge_id: str
    outcome: str
    payload: dict[str, Any]
    reward_reputation: int
    reward_pco: float
    penalty: int
    reward: RewardTransfer | None = None

    @property
    def completed(self) -> bool:
        return self.outcome == HISTORY_COMPLETED


class SettlementEngine:
    """Classifies ended duty windows and applies rewards or penalties.

    Each badge is settled in its own transaction under a row lock, so a
    badge is settled once even when sweeps overlap, and one failing badge
    never blocks the rest. A missed quota leaves the badge ``abandoned``
    rather than ``expired``, on the badge row as well as in its history, so
    a badge's status alone tells whether its holder finished the duty.

    Database work is synchronous and can run on a worker thread. Events,
    ledger writes and token rewards follow the commit on the event loop; a
    failure there is logged and the badge stays settled.
    """

    def __init__(
        self,
        *,
        config_store: ModerationConfigStore,
        identity: IdentityStore,
        events: EventBus,
        ledger: Ledger | None = None,
        transfer: TokenTransfer | None = None,
        clock: Callable[[], datetime] = utcnow,
        config: Settings = settings,
    ) -> None:
        self.config_store = config_store
        self.identity = identity
        self.events = events
        self.ledger = ledger
        self.transfer = transfer
        self.clock = clock
        self.settings = config
        self._transfers: set[asyncio.Task[None]] = set()

    @property
    def transfers_in_flight(self) -> int:
        return len(self._transfers)

    async def settle_expired(self, db: Session) -> SettlementResult:
        """Settle every active badge whose end date has passed."""
        now = self.clock()
        due = self.due_badge_ids(db, now)
        result = SettlementResult()
        for badge_id in due:
            settled = self._settle_or_record_failure(db, badge_id, now, result)
            if settled is not None:
                ref = await self.announce(settled)
                self._store_ref(db, settled, ref)
        self._log_sweep(due, result)
        return result

    def settle_expired_blocking(
        self, db: Session, loop: asyncio.AbstractEventLoop
    ) -> SettlementResult:
        """Like :meth:`settle_expired`, for a worker thread.

        ``loop`` must be running in another thread; each settlement is
        announced on it and this thread waits for the announcement.
        """
        now = self.clock()
        due = self.due_badge_ids(db, now)
        result = SettlementResult()
        for badge_id in due:
            settled = self._settle_or_record_failure(db, badge_id, now, result)
            if settled is not None:
                ref = asyncio.run_coroutine_threadsafe(self.announce(settled), loop).result()
                self._store_ref(db, settled, ref)
        self._log_sweep(due, result)
        return result

    def due_badge_ids(self, db: Session, now: datetime) -> list[str]:
        badge_ids = [
            row.id
            for row in db.query(ModerationBadge.id)
            .filter(
                ModerationBadge.status == BADGE_STATUS_ACTIVE,
                ModerationBadge.end_date <= now,
            )
            .order_by(ModerationBadge.end_date)
            .all()
        ]
        db.commit()
        return badge_ids

    def _settle_or_record_failure(
        self, db: Session, badge_id: str, now: datetime, result: SettlementResult
    ) -> SettledBadge | None:
        try:
            settled = self.settle_badge(db, badge_id, now)
        except Exception:
            db.rollback()
            logger.exception("Failed to settle badge %s", badge_id)
            result.failed.append(badge_id)
            return None
        if settled is not None:
            bucket = result.completed if settled.completed else result.abandoned
            bucket.append(badge_id)
        return settled

    @staticmethod
    def _log_sweep(due: list[str], result: SettlementResult) -> None:
        if due:
            logger.info(
                "Settled %d badge(s): %d completed, %d abandoned, %d failed",
                len(due),
                len(result.completed),
                len(result.abandoned),
                len(result.failed),
            )

    def settle_badge(self, db: Session, badge_id: str, now: datetime) -> SettledBadge | None:
        """Settle one badge and commit; ``None`` if it no longer needs settling."""
        badge = lock_badge(db, badge_id)
        if badge.status != BADGE_STATUS_ACTIVE or badge.end_date is None or badge.end_date > now:
            db.rollback()
            return None

        cfg = self.config_store.get(db, badge_scope(badge))
        reward_reputation = cfg.reward_reputation if cfg else self.settings.reward_reputation
        reward_pco = float(cfg.reward_pco) if cfg else self.settings.reward_pco
        penalty = cfg.penalty_reputation if cfg else self.settings.penalty_reputation

        completed = badge.quota_met
        outcome = HISTORY_COMPLETED if completed else HISTORY_ABANDONED
        badge.status = BADGE_STATUS_EXPIRED if completed else BADGE_STATUS_ABANDONED
        db.add(
            BadgeHistory(
                user_id=badge.holder_id,
                badge_id=badge.id,
                scope_type=badge.scope_type,
                scope_id=badge.scope_id,
                completion_status=outcome,
                completed_at=now,
            )
        )
        delta = reward_reputation if completed else -penalty
        self.identity.adjust_reputation(db, badge.holder_id, delta)

        reward = None
        if completed:
            holder = self.identity.get_user(db, badge.holder_id)
            reward = RewardTransfer(
                badge_id=badge.id,
                user_id=badge.holder_id,
                wallet_address=holder.wallet_address if holder else None,
                amount=reward_pco,
                reputation=reward_reputation,
                actions_taken=badge.actions_taken,
            )
        payload: dict[str, Any] = {
            "badge_id": badge.id,
            "user_id": badge.holder_id,
            "scope_type": badge.scope_type,
            "scope_id": badge.scope_id,
            "actions_taken": badge.actions_taken,
            "min_actions_required": badge.min_actions_required,
        }
        db.commit()

        return SettledBadge(
            badge_id=badge_id,
            outcome=outcome,
            payload=payload,
            reward_reputation=reward_reputation,
            reward_pco=reward_pco,
            penalty=penalty,
            reward=reward,
        )

    async def announce(self, settled: SettledBadge) -> str | None:
        """Publish a settlement and start its reward; return any ledger reference."""
        if settled.completed:
            self.events.publish(
                ev.BADGE_EXPIRED,
                {
                    **settled.payload,
                    "reward_reputation": settled.reward_reputation,
                    "reward_pco": settled.reward_pco,
                },
            )
            if settled.reward is not None:
                self._spawn_transfer(settled.reward)
            return None

        payload = {**settled.payload, "reputation_penalty": settled.penalty}
        self.events.publish(ev.BADGE_ABANDONED, payload)
        logger.info(
            "Badge %s abandoned with %d/%d actions",
            settled.badge_id,
            payload["actions_taken"],
            payload["min_actions_required"],
        )
        return await record_best_effort(self.ledger, "badge_abandoned", payload)

    def _store_ref(self, db: Session, settled: SettledBadge, ref: str | None) -> None:
        if not ref:
            return
        badge = db.get(ModerationBadge, settled.badge_id)
        if badge is not None:
            store_ledger_ref(db, badge, ref)

    def _spawn_transfer(self, reward: RewardTransfer) -> None:
        transfer = self.transfer
        if transfer is None or reward.amount <= 0:
            return
        if not reward.wallet_address:
            logger.warning(
                "No wallet on file for %s; reward for badge %s skipped",
                reward.user_id,
                reward.badge_id,
            )
            return
        task = asyncio.get_running_loop().create_task(self._distribute_reward(transfer, reward))
        self._transfers.add(task)
        task.add_done_callback(self._transfers.discard)

    async def _distribute_reward(self, transfer: TokenTransfer, reward: RewardTransfer) -> None:
        try:
            tx_ref = await transfer.transfer(
                self.settings.system_wallet_address,
                reward.wallet_address or "",
                reward.amount,
                f"Badge duty reward for badge {reward.badge_id}",
            )
        except LedgerDisabledError:
            logger.debug("Token transfer disabled; reward for badge %s not sent", reward.badge_id)
            return
        except LedgerError as exc:
            logger.error("Reward transfer for badge %s failed: %s", reward.badge_id, exc)
            return
        except Exception:
            logger.exception("Reward transfer for badge %s failed", reward.badge_id)
            return

        payload = {
            "badge_id": reward.badge_id,
            "user_id": reward.user_id,
            "amount": reward.amount,
            "token": self.settings.reward_token,
            "reputation": reward.reputation,
            "tx_ref": tx_ref,
        }
        self.events.publish(ev.REWARD_DISTRIBUTED, payload)
        logger.info(
            "Distributed %s %s for badge %s", reward.amount, payload["token"], reward.badge_id
        )
        await record_best_effort(
            self.ledger,
            "badge_reward_distributed",
            {**payload, "actions_taken": reward.actions_taken},
        )

    async def wait_for_transfers(self) -> None:
        """Wait for every in-flight reward transfer to finish."""
        while self._transfers:
            await asyncio.gather(*list(self._transfers), return_exceptions=True)

    def milestones(self, db: Session, user_id: str) -> list[Milestone]:
        """Progress toward the long-running moderator achievements."""
        completed = (
            db.query(func.count(BadgeHistory.id))
            .filter(
                BadgeHistory.user_id == user_id,
                BadgeHistory.completion_status == HISTORY_COMPLETED,
            )
            .scalar()
            or 0
        )
        topic_completed = (
            db.query(func.count(BadgeHistory.id))
            .filter(
                BadgeHistory.user_id == user_id,
                BadgeHistory.completion_status == HISTORY_COMPLETED,
                BadgeHistory.scope_type == ScopeKind.TOPIC_AREA.value,
            )
            .scalar()
            or 0
        )
        total_actions = (
            db.query(func.coalesce(func.sum(ModerationBadge.actions_taken), 0))
            .filter(ModerationBadge.holder_id == user_id)
            .scalar()
            or 0
        )

        return [
            Milestone(
                key="veteran_moderator",
                description=f"{self.settings.milestone_veteran_badges} badges completed",
                progress=int(completed),
                target=self.settings.milestone_veteran_badges,
                reward_pco=5.0,
                reward_reputation=20,
            ),
            Milestone(
                key="centurion",
                description=f"{self.settings.milestone_centurion_actions} moderation actions",
                progress=int(total_actions),
                target=self.settings.milestone_centurion_actions,
                reward_pco=3.0,
                reward_reputation=15,
            ),
            Milestone(
                key="topic_guardian",
                description="Completed a topic-area badge",
                progress=int(topic_completed),
                target=self.settings.milestone_guardian_badges,
                reward_pco=2.0,
                reward_reputation=10,
            ),
        ]
