# src/taskpulse/core/state.py

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..reminders.scheduler import ReminderScheduler
    from ..tasks.task_store import TaskStore


@dataclass
class AppState:
    """Everything the connectors and commands share, wired once in bootstrap."""

    settings: Any
    task_store: TaskStore
    scheduler: ReminderScheduler | None = None

    # Guards command handling when several connectors run at once.
    lock: threading.RLock = field(default_factory=threading.RLock)
