# src/taskpulse/tasks/task_models.py

from __future__ import annotations

import math
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

OVERDUE_LABEL = "overdue"


class TaskStatus(StrEnum):
    """Task lifecycle status. Only PENDING tasks are reminder candidates."""

    PENDING = "pending"
    COMPLETED = "completed"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.PENDING
        try:
            return cls(raw.lower())
        except Exception:
            return cls.PENDING


class NotificationType(StrEnum):
    REMINDER = "reminder"
    OVERDUE = "overdue"


def format_stage_number(value: float) -> str:
    """
    Render a stage number the way persisted labels spell it.

    Integral values drop the fractional part (1.0 -> "1"), others keep the
    shortest repr (0.5 -> "0.5").
    """
    val = float(value)
    if val.is_integer():
        return str(int(val))
    return repr(val)


@dataclass(slots=True, frozen=True)
class BeforeDue:
    """Time-anchored stage: `hours` before the due date."""

    hours: float

    @property
    def label(self) -> str:
        return f"before_{format_stage_number(self.hours)}h"


@dataclass(slots=True, frozen=True)
class PercentElapsed:
    """Duration-anchored stage: `percent` of the created -> due span."""

    percent: float

    @property
    def label(self) -> str:
        return f"percent_{format_stage_number(self.percent)}"


@dataclass(slots=True, frozen=True)
class Overdue:
    @property
    def label(self) -> str:
        return OVERDUE_LABEL


StageKind = BeforeDue | PercentElapsed | Overdue


def parse_stage_label(label: str) -> StageKind | None:
    """Inverse of `.label`; returns None for labels this version does not know."""
    raw = (label or "").strip()
    if raw == OVERDUE_LABEL:
        return Overdue()
    try:
        if raw.startswith("before_") and raw.endswith("h"):
            return BeforeDue(float(raw[len("before_") : -1]))
        if raw.startswith("percent_"):
            return PercentElapsed(float(raw[len("percent_") :]))
    except ValueError:
        return None
    return None


def describe_stage_label(label: str) -> str:
    """Human wording for a stored label ("before_1h" -> "1h before due"); unknown labels pass through."""
    kind = parse_stage_label(label)
    if isinstance(kind, BeforeDue):
        return f"{format_stage_number(kind.hours)}h before due"
    if isinstance(kind, PercentElapsed):
        return f"{format_stage_number(kind.percent)}% elapsed"
    if isinstance(kind, Overdue):
        return "overdue"
    return label


@dataclass(slots=True, frozen=True)
class Stage:
    """A planned reminder point: which stage and when it triggers (epoch seconds)."""

    kind: BeforeDue | PercentElapsed
    trigger_at: float

    @property
    def label(self) -> str:
        return self.kind.label


class SentStages:
    """
    Append-only ordered collection of stage labels already fired for a task.

    Labels are never removed or reordered. Membership is a set lookup; the list
    keeps persistence order.
    """

    __slots__ = ("_order", "_seen")

    def __init__(self, labels: Iterable[str] = ()) -> None:
        self._order: list[str] = []
        self._seen: set[str] = set()
        for label in labels:
            self.add(label)

    def add(self, label: str) -> bool:
        """Append `label` if absent. Returns True when it was appended."""
        if label in self._seen:
            return False
        self._seen.add(label)
        self._order.append(label)
        return True

    def as_list(self) -> list[str]:
        return list(self._order)

    def __contains__(self, label: object) -> bool:
        return label in self._seen

    def __iter__(self) -> Iterator[str]:
        return iter(self._order)

    def __len__(self) -> int:
        return len(self._order)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, SentStages):
            return self._order == other._order
        if isinstance(other, list):
            return self._order == other
        return NotImplemented

    def __repr__(self) -> str:
        return f"SentStages({self._order!r})"


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(float(value))


def clean_before_hours(values: Iterable[Any] | None) -> list[float]:
    """Keep finite, non-negative numbers; anything else is silently dropped."""
    return [float(v) for v in (values or []) if _is_number(v) and float(v) >= 0]


def clean_percentages(values: Iterable[Any] | None) -> list[float]:
    """Keep finite numbers within [0, 100]; anything else is silently dropped."""
    return [float(v) for v in (values or []) if _is_number(v) and 0 <= float(v) <= 100]


@dataclass(slots=True)
class Task:
    id: int
    user_id: str
    title: str
    status: TaskStatus
    created_at: float
    updated_at: float
    due_at: float

    description: str | None = None
    snoozed_until: float | None = None

    notify_before_hours: list[float] = field(default_factory=list)
    notify_percentage: list[float] = field(default_factory=list)
    min_gap_minutes: int = 58

    reminder_stages_sent: SentStages = field(default_factory=SentStages)
    last_reminder_sent_at: float | None = None
    completed_at: float | None = None

    @property
    def duration(self) -> float:
        return self.due_at - self.created_at

    @property
    def has_reminders_configured(self) -> bool:
        return bool(self.notify_before_hours) or bool(self.notify_percentage)


@dataclass(slots=True)
class Notification:
    """Created once per firing event; only `read` changes afterwards."""

    user_id: str
    task_id: int
    type: NotificationType
    message: str
    created_at: float
    read: bool = False
    id: int | None = None


@dataclass(slots=True)
class ReminderDefaults:
    """Per-user reminder settings applied to tasks created without explicit values."""

    notify_before_hours: list[float] = field(default_factory=list)
    notify_percentage: list[float] = field(default_factory=list)
    min_gap_minutes: int = 58

    def as_dict(self) -> dict[str, Any]:
        return {
            "notify_before_hours": list(self.notify_before_hours),
            "notify_percentage": list(self.notify_percentage),
            "min_gap_minutes": self.min_gap_minutes,
        }
