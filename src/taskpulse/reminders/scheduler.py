# src/taskpulse/reminders/scheduler.py

from __future__ import annotations

"""
Reminder scheduler.

Invokes the reminder engine on a fixed cadence and owns the only in-process
mutable state of the reminder subsystem:
- the single-flight "running" guard (a tick that finds it held is skipped, not queued)
- run metrics for the health surface

State lives on the instance; a new process starts with a fresh scheduler.
There is no cross-process lock: exactly one scheduler is expected to run.
"""

import asyncio
import contextlib
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any

from .cleanup import CompletedTaskCleanup
from .engine import ReminderEngine

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SchedulerMetrics:
    is_running: bool = False
    total_runs: int = 0
    skipped_runs: int = 0
    last_run_at: float | None = None
    last_duration_ms: float | None = None
    last_error: str | None = None


class ReminderScheduler:
    def __init__(
        self,
        engine: ReminderEngine,
        *,
        interval_seconds: float = 60.0,
        cleanup: CompletedTaskCleanup | None = None,
    ) -> None:
        self._engine = engine
        self._cleanup = cleanup
        self._interval_s = max(0.01, float(interval_seconds))
        self._running = False
        self._metrics = SchedulerMetrics()
        self._started_at = time.time()
        self._inflight: set[asyncio.Task[bool]] = set()

    @property
    def interval_seconds(self) -> float:
        return self._interval_s

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def metrics(self) -> SchedulerMetrics:
        return self._metrics

    async def tick(self, now: float | None = None) -> bool:
        """
        Run the engine once unless a run is already in flight.

        Returns True if the engine ran, False if this tick was skipped.
        Never raises (except cancellation).
        """
        if self._running:
            self._metrics.skipped_runs += 1
            logger.warning("Skipping reminder tick: previous run still in progress")
            return False

        self._running = True
        self._metrics.is_running = True
        self._metrics.total_runs += 1
        self._metrics.last_run_at = time.time()
        started = time.monotonic()

        try:
            report = await self._engine.run_once(now)
            self._metrics.last_error = report.error
        except Exception as e:
            # run_once() handles its own errors; this is a second line of defence.
            logger.exception("Reminder tick crashed")
            self._metrics.last_error = str(e) or type(e).__name__
        else:
            self._run_cleanup(now)
        finally:
            self._metrics.last_duration_ms = (time.monotonic() - started) * 1000.0
            self._running = False
            self._metrics.is_running = False
            logger.debug("Reminder tick finished in %.1fms", self._metrics.last_duration_ms)

        return True

    def _run_cleanup(self, now: float | None) -> None:
        if self._cleanup is None:
            return
        try:
            self._cleanup.maybe_run(now)
        except Exception:
            # Housekeeping only; reminder health is unaffected.
            logger.exception("Completed-task cleanup failed")

    def health(self) -> dict[str, Any]:
        """Read-only health view; "degraded" while the last tick reported an error."""
        data = asdict(self._metrics)
        data["status"] = "degraded" if self._metrics.last_error else "healthy"
        data["interval_seconds"] = self._interval_s
        data["uptime_seconds"] = int(time.time() - self._started_at)
        return data

    def _spawn_tick(self) -> None:
        task = asyncio.create_task(self.tick())
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def run_forever(self, stop_event: asyncio.Event | None = None) -> None:
        """
        Tick every interval_seconds until stop_event is set (or the coroutine is cancelled).

        Each tick runs as its own asyncio task, so a tick that outlives the interval
        makes the following ticks hit the running guard and skip.
        """
        stop_event = stop_event or asyncio.Event()
        logger.info("Reminder scheduler started (interval=%.1fs)", self._interval_s)

        try:
            while not stop_event.is_set():
                self._spawn_tick()
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(stop_event.wait(), timeout=self._interval_s)
        finally:
            pending = list(self._inflight)
            for task in pending:
                task.cancel()
            for task in pending:
                with contextlib.suppress(asyncio.CancelledError, Exception):
                    await task
            logger.info("Reminder scheduler stopped.")
