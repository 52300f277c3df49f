# src/taskpulse/tasks/task_api.py

from __future__ import annotations

import logging
import math
import time
from typing import Any

from ..core.state import AppState
from .task_models import Notification, ReminderDefaults, Task, TaskStatus

logger = logging.getLogger(__name__)

MAX_MIN_GAP_MINUTES = 1440

# Choices offered for per-user defaults; explicit per-task values are not restricted to these.
ALLOWED_DEFAULT_HOURS = (1, 3, 6, 12, 24)
ALLOWED_DEFAULT_PERCENTAGES = (20, 40, 60, 80, 90)


class TaskNotFoundError(LookupError):
    pass


class NotificationNotFoundError(LookupError):
    pass


def _normalize_values(values: list[float], *, name: str, low: float, high: float | None) -> list[float]:
    out: set[float] = set()
    for v in values:
        if isinstance(v, bool) or not isinstance(v, (int, float)) or not math.isfinite(float(v)):
            raise ValueError(f"{name} must contain numbers only")
        fv = float(v)
        if fv < low or (high is not None and fv > high):
            bound = f"[{low:g}, {high:g}]" if high is not None else f">= {low:g}"
            raise ValueError(f"{name} values must be {bound}, got {fv:g}")
        out.add(fv)
    return sorted(out)


def create_task(
    state: AppState,
    *,
    user_id: str,
    title: str,
    due_at: float,
    description: str | None = None,
    notify_before_hours: list[float] | None = None,
    notify_percentage: list[float] | None = None,
    min_gap_minutes: int | None = None,
) -> int:
    """
    Create a pending task. Missing reminder settings fall back to the owner's
    stored defaults, then to the configured ones.

    Raises ValueError on invalid input.
    """
    defaults = get_reminder_defaults(state, user_id)
    hours = defaults.notify_before_hours if notify_before_hours is None else notify_before_hours
    percent = defaults.notify_percentage if notify_percentage is None else notify_percentage
    gap = defaults.min_gap_minutes if min_gap_minutes is None else min_gap_minutes

    if isinstance(gap, bool) or not isinstance(gap, int) or not 0 <= gap <= MAX_MIN_GAP_MINUTES:
        raise ValueError(f"min_gap_minutes must be an integer in [0, {MAX_MIN_GAP_MINUTES}]")

    hours = _normalize_values(hours, name="notify_before_hours", low=0, high=None)
    percent = _normalize_values(percent, name="notify_percentage", low=0, high=100)

    task_id = state.task_store.add_task(
        user_id=user_id,
        title=title,
        due_at=due_at,
        description=description,
        notify_before_hours=hours,
        notify_percentage=percent,
        min_gap_minutes=gap,
    )
    logger.info("Task created id=%s user=%s", task_id, user_id)
    return task_id


def get_reminder_defaults(state: AppState, user_id: str) -> ReminderDefaults:
    """The owner's stored defaults, or the configured ones if they never set any."""
    stored = state.task_store.get_reminder_defaults(user_id)
    if stored is not None:
        return stored
    settings = state.settings
    return ReminderDefaults(
        notify_before_hours=list(getattr(settings, "default_notify_before_hours", []) or []),
        notify_percentage=list(getattr(settings, "default_notify_percentage", []) or []),
        min_gap_minutes=int(getattr(settings, "default_min_gap_minutes", 58)),
    )


def _validate_choices(values: list[Any], *, name: str, allowed: tuple[int, ...]) -> list[int]:
    if not isinstance(values, list):
        raise ValueError(f"{name} must be a list")
    if any(isinstance(v, bool) or not isinstance(v, int) for v in values):
        raise ValueError(f"{name} values must be integers")
    if len(values) > len(allowed):
        raise ValueError(f"Too many {name} values. Maximum allowed: {len(allowed)}")
    invalid = [v for v in values if v not in allowed]
    if invalid:
        raise ValueError(
            f"Invalid {name} values: {', '.join(map(str, invalid))}. "
            f"Allowed: {', '.join(map(str, allowed))}"
        )
    return sorted(set(values))


def update_reminder_defaults(
    state: AppState,
    user_id: str,
    *,
    notify_before_hours: list[int],
    notify_percentage: list[int],
    min_gap_minutes: int,
) -> ReminderDefaults:
    """
    Replace the owner's defaults. Values must come from the offered choices;
    duplicates are dropped and values sorted before storing.

    Raises ValueError on invalid input.
    """
    hours = _validate_choices(notify_before_hours, name="hour", allowed=ALLOWED_DEFAULT_HOURS)
    percent = _validate_choices(notify_percentage, name="percentage", allowed=ALLOWED_DEFAULT_PERCENTAGES)
    if isinstance(min_gap_minutes, bool) or not isinstance(min_gap_minutes, int):
        raise ValueError("min_gap_minutes must be an integer")
    if not 0 <= min_gap_minutes <= MAX_MIN_GAP_MINUTES:
        raise ValueError(f"min_gap_minutes must be within [0, {MAX_MIN_GAP_MINUTES}]")

    defaults = ReminderDefaults(
        notify_before_hours=[float(h) for h in hours],
        notify_percentage=[float(p) for p in percent],
        min_gap_minutes=min_gap_minutes,
    )
    state.task_store.set_reminder_defaults(user_id, defaults)
    return defaults


def get_user_task(state: AppState, user_id: str, task_id: int) -> Task:
    task = state.task_store.get_task(task_id)
    if task is None or task.user_id != user_id:
        raise TaskNotFoundError(f"Task {task_id} not found")
    return task


def complete_task(state: AppState, user_id: str, task_id: int, *, now_ts: float | None = None) -> Task:
    """Mark a task COMPLETED; the reminder engine stops considering it and cleanup purges it later."""
    task = get_user_task(state, user_id, task_id)
    if task.status != TaskStatus.COMPLETED:
        now = time.time() if now_ts is None else now_ts
        state.task_store.update_task_status(task.id, TaskStatus.COMPLETED, now_ts=now)
        task.status = TaskStatus.COMPLETED
        task.completed_at = now
        logger.info("Task %s -> completed", task.id)
    return task


def snooze_task(
    state: AppState, user_id: str, task_id: int, minutes: float, *, now_ts: float | None = None
) -> float:
    """Hide a task from the reminder engine for `minutes`. Returns snoozed_until."""
    if not math.isfinite(float(minutes)) or minutes <= 0:
        raise ValueError("snooze duration must be positive")
    task = get_user_task(state, user_id, task_id)
    now = time.time() if now_ts is None else now_ts
    until = now + float(minutes) * 60.0
    state.task_store.set_snoozed_until(task.id, until)
    logger.info("Task %s snoozed for %.0f min", task.id, minutes)
    return until


def snooze_notification(
    state: AppState, user_id: str, notification_id: int, minutes: float, *, now_ts: float | None = None
) -> float:
    """Snooze the task behind a notification; the notification is marked read first."""
    notification = state.task_store.get_notification(user_id, notification_id)
    if notification is None:
        raise NotificationNotFoundError(f"Notification {notification_id} not found")
    state.task_store.mark_notification_read(user_id, notification_id, read=True)
    return snooze_task(state, user_id, notification.task_id, minutes, now_ts=now_ts)


def list_notifications(state: AppState, user_id: str, *, page: int = 1, limit: int = 20) -> dict[str, Any]:
    page = max(1, int(page))
    limit = max(1, int(limit))
    items, total = state.task_store.list_notifications(user_id, page=page, limit=limit)
    return {
        "notifications": items,
        "total_count": total,
        "total_pages": math.ceil(total / limit),
        "current_page": page,
    }


def mark_notification_read(
    state: AppState, user_id: str, notification_id: int, *, unread: bool = False
) -> Notification:
    if not state.task_store.mark_notification_read(user_id, notification_id, read=not unread):
        raise NotificationNotFoundError(f"Notification {notification_id} not found")
    notification = state.task_store.get_notification(user_id, notification_id)
    if notification is None:
        raise NotificationNotFoundError(f"Notification {notification_id} not found")
    return notification
