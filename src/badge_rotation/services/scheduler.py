"""Periodic rotation jobs.

Each job fires when ``(epoch_seconds - offset) % interval == 0``, so runs
land on wall-clock boundaries: balance checks on the hour, expiry settlement
at quarter past, timeout sweeps at half past, daily aggregation at 02:00 UTC
and housekeeping every six hours. The offsets only spread load; correctness
under overlapping runs comes from the row locks in the services.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session

from badge_rotation.core.settings import Settings, settings
from badge_rotation.db.session import SessionLocal
from badge_rotation.db.time import utcnow
from badge_rotation.services.rotation import RotationServices, get_rotation_services
from badge_rotation.services.scope import Scope
from badge_rotation.services.settlement import SettlementResult

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class ScheduledJob:
    name: str
    interval_seconds: int
    offset_seconds: int
    run: Callable[[], Awaitable[Any]]

    def next_run_after(self, moment: datetime) -> float:
        """Epoch seconds of the first aligned run strictly after ``moment``."""
        interval = max(1, self.interval_seconds)
        offset = self.offset_seconds % interval
        now = moment.timestamp()
        slot = math.floor((now - offset) / interval) + 1
        return slot * interval + offset


class RotationScheduler:
    """Runs the rotation jobs in the background of the API process."""

    def __init__(
        self,
        services: RotationServices | None = None,
        session_factory: Callable[[], Session] = SessionLocal,
        clock: Callable[[], datetime] = utcnow,
        config: Settings = settings,
    ) -> None:
        self.services = services or get_rotation_services()
        self.session_factory = session_factory
        self.clock = clock
        self.settings = config
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    @property
    def jobs(self) -> list[ScheduledJob]:
        cfg = self.settings
        return [
            ScheduledJob(
                "balance_check",
                cfg.balance_check_interval_seconds,
                cfg.balance_check_offset_seconds,
                self.run_balance_check,
            ),
            ScheduledJob(
                "expiry_settlement",
                cfg.expiry_sweep_interval_seconds,
                cfg.expiry_sweep_offset_seconds,
                self.run_expiry_settlement,
            ),
            ScheduledJob(
                "timeout_sweep",
                cfg.timeout_sweep_interval_seconds,
                cfg.timeout_sweep_offset_seconds,
                self.run_timeout_sweep,
            ),
            ScheduledJob(
                "daily_aggregation",
                SECONDS_PER_DAY,
                cfg.daily_aggregation_offset_seconds,
                self.run_daily_aggregation,
            ),
            ScheduledJob(
                "housekeeping",
                cfg.housekeeping_interval_seconds,
                0,
                self.run_housekeeping,
            ),
        ]

    async def start(self) -> None:
        """Start the background loop."""
        if not self.settings.scheduler_enabled:
            return

        if self._task is None or self._task.done():
            self._stopping.clear()
            self.services.events.bind_loop(asyncio.get_running_loop())
            self._task = asyncio.create_task(self._run())
            logger.info("Rotation scheduler started")

    async def stop(self) -> None:
        """Stop the background loop and wait for the current job to finish."""
        if self._task is None:
            return

        self._stopping.set()
        await self._task
        self._task = None
        self.services.events.bind_loop(None)
        logger.info("Rotation scheduler stopped")

    async def _run(self) -> None:
        jobs = self.jobs
        due = {job.name: job.next_run_after(self.clock()) for job in jobs}

        while not self._stopping.is_set():
            next_at = min(due.values())
            delay = max(0.0, next_at - self.clock().timestamp())
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=delay)
                return
            except TimeoutError:
                pass

            now = self.clock()
            for job in jobs:
                if due[job.name] > now.timestamp():
                    continue
                await self._run_job(job)
                due[job.name] = job.next_run_after(self.clock())

    async def _run_job(self, job: ScheduledJob) -> None:
        logger.debug("Running scheduled job %s", job.name)
        try:
            await job.run()
        except Exception:
            logger.exception("Scheduled job %s failed", job.name)

    def _balance_scope(self, scope: Scope) -> list[str]:
        with self.session_factory() as db:
            return self.services.assignment.check_and_assign(db, scope)

    def _active_scopes(self) -> list[Scope]:
        with self.session_factory() as db:
            return self.services.membership.active_scopes(db)

    async def run_balance_check(self) -> int:
        """Rebalance every scope with members; return the number of offers created."""
        scopes = await asyncio.to_thread(self._active_scopes)

        concurrency = max(1, self.settings.scheduler_scope_concurrency)
        semaphore = asyncio.Semaphore(concurrency)

        async def balance(scope: Scope) -> int:
            async with semaphore:
                try:
                    return len(await asyncio.to_thread(self._balance_scope, scope))
                except Exception:
                    logger.exception("Balance check failed for %s", scope)
                    return 0

        created = sum(await asyncio.gather(*(balance(scope) for scope in scopes)))
        logger.info("Balance check over %d scope(s) created %d offer(s)", len(scopes), created)
        return created

    def _timeout_sweep(self) -> int:
        with self.session_factory() as db:
            result = self.services.invitations.process_timeouts(db)
        return len(result.timed_out)

    async def run_timeout_sweep(self) -> int:
        return await asyncio.to_thread(self._timeout_sweep)

    def _settle_sweep(self, loop: asyncio.AbstractEventLoop) -> SettlementResult:
        with self.session_factory() as db:
            return self.services.settlement.settle_expired_blocking(db, loop)

    async def run_expiry_settlement(self) -> SettlementResult:
        return await asyncio.to_thread(self._settle_sweep, asyncio.get_running_loop())

    def _aggregate(self, day: date) -> int:
        with self.session_factory() as db:
            return len(self.services.reporting.aggregate_daily(db, day))

    async def run_daily_aggregation(self, day: date | None = None) -> int:
        """Aggregate the given day, by default the one that just ended."""
        target = day or (self.clock() - timedelta(days=1)).date()
        return await asyncio.to_thread(self._aggregate, target)

    def _housekeep(self) -> tuple[int, int]:
        with self.session_factory() as db:
            pruned = self.services.housekeeping.prune_invitations(db)
            archived = self.services.housekeeping.archive_actions(db)
        return pruned, archived

    async def run_housekeeping(self) -> tuple[int, int]:
        return await asyncio.to_thread(self._housekeep)
