"""
Schedule evaluation loop.

Once a minute, every active schedule is checked against the current local
time. Each due schedule is handed to the dispatcher on its own task, so a
slow or failing call never delays the remaining schedules or the next tick.
"""

import asyncio
import contextlib
import time as _time
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone, tzinfo
from typing import Callable, Protocol

from carecall.calls.dispatcher import CallDispatcher
from carecall.calls.models import CallKind
from carecall.schedules.models import Frequency
from carecall.schedules.repository import ScheduleRepository, ScheduleSnapshot
from carecall.shared.database import DatabaseManager
from carecall.shared.logging import get_logger

logger = get_logger(__name__)


class DueCheckable(Protocol):
    start_date: date
    frequency: Frequency
    call_time: time


def is_due(schedule: DueCheckable, now: datetime) -> bool:
    """Whether ``schedule`` fires in the minute containing ``now``.

    ``now`` must already be in the zone the schedule's call time is
    expressed in.
    """
    today = now.date()
    if schedule.start_date > today:
        return False
    if (schedule.call_time.hour, schedule.call_time.minute) != (now.hour, now.minute):
        return False

    frequency = Frequency(schedule.frequency)
    if frequency == Frequency.DAILY:
        return True
    if frequency == Frequency.WEEKLY:
        return today.weekday() == schedule.start_date.weekday()
    if frequency == Frequency.MONTHLY:
        return today.day == schedule.start_date.day
    return False


@dataclass(frozen=True)
class EvaluationResult:
    """Summary returned after one evaluation pass."""

    evaluated_at: datetime
    active_schedules: int = 0
    dispatched_schedule_ids: list[int] = field(default_factory=list)
    failed_schedule_ids: list[int] = field(default_factory=list)


class ScheduleEvaluator:
    """Fires due schedules through the call dispatcher."""

    def __init__(
        self,
        database: DatabaseManager,
        dispatcher: CallDispatcher,
        tz: tzinfo = timezone.utc,
        interval_seconds: int = 60,
        max_concurrent_dispatches: int = 10,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._db = database
        self._dispatcher = dispatcher
        self._tz = tz
        self._interval_seconds = interval_seconds
        self._clock = clock or (lambda: datetime.now(self._tz))
        self._semaphore = asyncio.Semaphore(max_concurrent_dispatches)
        self._inflight: set[asyncio.Task[None]] = set()
        self._last_minute: datetime | None = None
        self._running = False
        self._task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        """Start the evaluation loop."""
        if self._running:
            logger.warning("Schedule evaluator already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            "Schedule evaluator started",
            extra={"interval_seconds": self._interval_seconds, "timezone": str(self._tz)},
        )

    async def stop(self) -> None:
        """Stop the loop and wait for calls already being placed."""
        self._running = False
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        await self.wait_for_dispatches()
        logger.info("Schedule evaluator stopped")

    async def wait_for_dispatches(self) -> None:
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def _run_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._seconds_until_next_tick())
            try:
                await self.run_once()
            except Exception:
                logger.exception("Schedule evaluation failed")

    def _seconds_until_next_tick(self) -> float:
        return self._interval_seconds - (_time.time() % self._interval_seconds)

    async def run_once(self, now: datetime | None = None) -> EvaluationResult:
        """Evaluate every active schedule once and launch due dispatches.

        Returns without waiting for the launched calls to be placed. A second
        pass within an already-evaluated minute does nothing.
        """
        now = (now or self._clock()).astimezone(self._tz)
        minute = now.replace(second=0, microsecond=0)
        if self._last_minute is not None and minute <= self._last_minute:
            logger.debug("Minute already evaluated", extra={"minute": minute.isoformat()})
            return EvaluationResult(evaluated_at=now)
        self._last_minute = minute

        async with self._db.session() as db:
            snapshots = await ScheduleRepository(db).list_active_snapshots()

        dispatched: list[int] = []
        failed: list[int] = []
        seen: set[int] = set()
        for snapshot in snapshots:
            if snapshot.schedule_id in seen:
                continue
            seen.add(snapshot.schedule_id)
            try:
                due = is_due(snapshot, now)
            except Exception:
                logger.exception(
                    "Schedule evaluation error",
                    extra={"schedule_id": snapshot.schedule_id},
                )
                failed.append(snapshot.schedule_id)
                continue
            if not due:
                continue
            self._launch(snapshot)
            dispatched.append(snapshot.schedule_id)

        if dispatched:
            logger.info(
                "Due schedules dispatched",
                extra={"minute": minute.isoformat(), "schedule_ids": dispatched},
            )
        return EvaluationResult(
            evaluated_at=now,
            active_schedules=len(snapshots),
            dispatched_schedule_ids=dispatched,
            failed_schedule_ids=failed,
        )

    def _launch(self, snapshot: ScheduleSnapshot) -> None:
        task = asyncio.create_task(self._dispatch_one(snapshot))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _dispatch_one(self, snapshot: ScheduleSnapshot) -> None:
        async with self._semaphore:
            try:
                await self._dispatcher.dispatch(
                    snapshot.member_id,
                    snapshot.phone_number,
                    CallKind.AUTO,
                )
            except Exception:
                logger.exception(
                    "Scheduled call dispatch failed",
                    extra={"schedule_id": snapshot.schedule_id, "member_id": snapshot.member_id},
                )
