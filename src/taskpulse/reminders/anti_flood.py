# src/taskpulse/reminders/anti_flood.py

from __future__ import annotations

from ..tasks.task_models import Task

DEFAULT_MIN_GAP_MINUTES = 58


def min_gap_seconds(task: Task) -> float:
    # A zero/unset gap falls back to the default, like a missing column does.
    minutes = task.min_gap_minutes or DEFAULT_MIN_GAP_MINUTES
    return max(0, int(minutes)) * 60.0


def is_allowed_to_fire(task: Task, now: float) -> bool:
    """
    Anti-flood gate: may this task send another reminder at `now`?

    Always allowed before the first reminder; afterwards only once
    min_gap_minutes have passed since last_reminder_sent_at.
    """
    if task.last_reminder_sent_at is None:
        return True
    return now - task.last_reminder_sent_at >= min_gap_seconds(task)
