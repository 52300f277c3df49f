# src/taskpulse/reminders/cleanup.py

from __future__ import annotations

import logging
import time

from ..core.ports import CompletedTaskRepo

logger = logging.getLogger(__name__)

CLEANUP_INTERVAL_SECONDS = 3600.0
COMPLETED_RETENTION_SECONDS = 24 * 3600.0


class CompletedTaskCleanup:
    """
    Hourly purge of tasks completed more than a day ago.

    Driven by the reminder scheduler: maybe_run() is called every tick and only
    touches the store once per interval.
    """

    def __init__(
        self,
        store: CompletedTaskRepo,
        *,
        interval_seconds: float = CLEANUP_INTERVAL_SECONDS,
        retention_seconds: float = COMPLETED_RETENTION_SECONDS,
    ) -> None:
        self._store = store
        self._interval_s = float(interval_seconds)
        self._retention_s = float(retention_seconds)
        self._last_run_at: float | None = None

    @property
    def last_run_at(self) -> float | None:
        return self._last_run_at

    def maybe_run(self, now: float | None = None) -> int | None:
        """Purge if the interval elapsed. Returns the purged count, or None when not due."""
        now_ts = time.time() if now is None else float(now)
        if self._last_run_at is not None and now_ts - self._last_run_at < self._interval_s:
            return None

        self._last_run_at = now_ts
        purged = self._store.purge_completed_tasks(now_ts - self._retention_s)
        if purged:
            logger.info("Cleanup removed %d completed tasks", purged)
        return purged
