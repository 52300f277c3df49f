# src/taskpulse/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the task store into AppState,
- builds the reminder engine + scheduler around a chosen messenger.
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.ports import OutboundMessenger
from ..core.state import AppState
from ..notifications.sink import ChatNotificationSink
from ..reminders.cleanup import CompletedTaskCleanup
from ..reminders.engine import ReminderEngine
from ..reminders.scheduler import ReminderScheduler
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.matrix_store_path.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    return AppState(
        settings=settings,
        task_store=TaskStore(settings.tasks_db_path),
    )


def build_reminder_scheduler(state: AppState, messenger: OutboundMessenger) -> ReminderScheduler:
    """Engine + sink + cleanup + scheduler for one messenger; stored on state for /health."""
    settings = state.settings
    sink = ChatNotificationSink(state.task_store, messenger, tasks=state.task_store)
    engine = ReminderEngine(
        state.task_store,
        sink,
        tolerance_seconds=getattr(settings, "reminder_tolerance_seconds", 60.0),
        batch_warning_threshold=getattr(settings, "reminder_batch_warning", 5000),
        delivery_timeout_seconds=getattr(settings, "delivery_timeout_seconds", 10.0),
    )
    cleanup = CompletedTaskCleanup(
        state.task_store,
        interval_seconds=getattr(settings, "cleanup_interval_seconds", 3600.0),
        retention_seconds=getattr(settings, "completed_retention_hours", 24.0) * 3600.0,
    )
    scheduler = ReminderScheduler(
        engine,
        interval_seconds=getattr(settings, "reminder_interval_seconds", 60.0),
        cleanup=cleanup,
    )
    state.scheduler = scheduler
    logger.info("Reminder scheduler wired (messenger=%s)", type(messenger).__name__)
    return scheduler
