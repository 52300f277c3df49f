# src/taskpulse/reminders/stage_planner.py

from __future__ import annotations

"""
Stage planner.

Pure functions that turn a task's timing fields into an ordered list of
reminder stages, and decide which stage (if any) is due right now.

A stage is due when its trigger time lies in (now - tolerance, now] and its
label has not been sent yet. Stages older than the tolerance window are
missed: they are neither sent nor retried, so a system coming back from a
long downtime does not replay its backlog.
"""

from collections.abc import Iterable, Sequence

from ..tasks.task_models import (
    BeforeDue,
    PercentElapsed,
    SentStages,
    Stage,
    Task,
    clean_before_hours,
    clean_percentages,
)

TOLERANCE_WINDOW_SECONDS = 60.0


def plan_stages(task: Task, now: float | None = None) -> list[Stage]:
    """
    Compute the ordered reminder stages for `task`.

    - hours-before:  trigger = due - h hours, dropped if trigger <= created
    - percentage:    trigger = created + p% of (due - created), dropped if
                     trigger >= due or trigger <= created

    Sorted by trigger time. The sort is stable, so equal trigger times keep
    generation order (hours-before first, then percentages). `now` is not
    used for planning; it is accepted so callers can pass the tick time.
    """
    if not task.notify_before_hours and not task.notify_percentage:
        return []

    start = task.created_at
    due = task.due_at
    duration = due - start
    if duration <= 0:
        return []

    stages: list[Stage] = []

    for hours in clean_before_hours(task.notify_before_hours):
        trigger_at = due - hours * 3600.0
        if trigger_at <= start:
            continue
        stages.append(Stage(kind=BeforeDue(hours), trigger_at=trigger_at))

    for percent in clean_percentages(task.notify_percentage):
        trigger_at = start + (percent / 100.0) * duration
        if trigger_at >= due or trigger_at <= start:
            continue
        stages.append(Stage(kind=PercentElapsed(percent), trigger_at=trigger_at))

    stages.sort(key=lambda s: s.trigger_at)
    return stages


def is_stage_eligible(
    stage: Stage,
    now: float,
    sent: SentStages | Iterable[str],
    *,
    tolerance_seconds: float = TOLERANCE_WINDOW_SECONDS,
) -> bool:
    if not stage.trigger_at <= now:
        return False
    if not stage.trigger_at > now - tolerance_seconds:
        return False
    return stage.label not in sent


def first_eligible_stage(
    stages: Sequence[Stage],
    now: float,
    sent: SentStages | Iterable[str],
    *,
    tolerance_seconds: float = TOLERANCE_WINDOW_SECONDS,
) -> Stage | None:
    """First stage in planner order that is due now and not yet sent."""
    if not isinstance(sent, SentStages):
        sent = SentStages(sent)
    for stage in stages:
        if is_stage_eligible(stage, now, sent, tolerance_seconds=tolerance_seconds):
            return stage
    return None
