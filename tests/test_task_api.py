# tests/test_task_api.py

from __future__ import annotations

import pytest

from taskpulse.tasks import task_api
from taskpulse.tasks.task_models import ReminderDefaults, TaskStatus

from .fakes import HOUR, T


def test_create_task_dedupes_and_sorts_values(state) -> None:
    task_id = task_api.create_task(
        state,
        user_id="u1",
        title="Report",
        due_at=T + 4 * HOUR,
        notify_before_hours=[2, 1, 2],
        notify_percentage=[75, 25],
        min_gap_minutes=15,
    )

    task = state.task_store.get_task(task_id)
    assert task is not None
    assert task.notify_before_hours == [1.0, 2.0]
    assert task.notify_percentage == [25.0, 75.0]
    assert task.min_gap_minutes == 15


@pytest.mark.parametrize(
    "kwargs",
    [
        {"notify_percentage": [101]},
        {"notify_percentage": [-1]},
        {"notify_before_hours": [-0.5]},
        {"notify_before_hours": ["1"]},
        {"min_gap_minutes": 1441},
        {"min_gap_minutes": -1},
        {"title": "   "},
    ],
)
def test_create_task_rejects_invalid_input(state, kwargs) -> None:
    params = {"user_id": "u1", "title": "Report", "due_at": T + HOUR}
    params.update(kwargs)
    with pytest.raises(ValueError):
        task_api.create_task(state, **params)
    assert state.task_store.count_tasks() == 0


def test_explicit_empty_lists_disable_reminders(state) -> None:
    task_id = task_api.create_task(
        state, user_id="u1", title="Quiet", due_at=T + HOUR, notify_before_hours=[], notify_percentage=[]
    )
    task = state.task_store.get_task(task_id)
    assert task is not None and not task.has_reminders_configured


def test_tasks_are_scoped_to_their_owner(state) -> None:
    task_id = task_api.create_task(state, user_id="u1", title="Mine", due_at=T + HOUR)

    with pytest.raises(task_api.TaskNotFoundError):
        task_api.complete_task(state, "u2", task_id)
    with pytest.raises(task_api.TaskNotFoundError):
        task_api.snooze_task(state, "u2", task_id, 60)


def test_snooze_sets_until_from_now(state) -> None:
    task_id = task_api.create_task(state, user_id="u1", title="Later", due_at=T + HOUR)

    until = task_api.snooze_task(state, "u1", task_id, 90, now_ts=T)

    assert until == T + 90 * 60
    assert state.task_store.get_task(task_id).snoozed_until == until
    assert [t.id for t in state.task_store.find_pending_candidates(T + 60)] == []
    assert [t.id for t in state.task_store.find_pending_candidates(until)] == [task_id]

    with pytest.raises(ValueError):
        task_api.snooze_task(state, "u1", task_id, 0)


def test_list_notifications_page_math(state) -> None:
    result = task_api.list_notifications(state, "u1", page=1, limit=10)
    assert result == {"notifications": [], "total_count": 0, "total_pages": 0, "current_page": 1}


def test_unknown_notification_raises(state) -> None:
    with pytest.raises(task_api.NotificationNotFoundError):
        task_api.mark_notification_read(state, "u1", 42)
    with pytest.raises(task_api.NotificationNotFoundError):
        task_api.snooze_notification(state, "u1", 42, 60)


def test_reminder_defaults_fall_back_to_settings(state) -> None:
    assert task_api.get_reminder_defaults(state, "u1") == ReminderDefaults(
        notify_before_hours=[1.0], notify_percentage=[50.0], min_gap_minutes=58
    )


def test_update_reminder_defaults_dedupes_and_sorts(state) -> None:
    saved = task_api.update_reminder_defaults(
        state, "u1", notify_before_hours=[24, 1, 3, 1], notify_percentage=[90, 20], min_gap_minutes=0
    )

    assert saved == ReminderDefaults(
        notify_before_hours=[1.0, 3.0, 24.0], notify_percentage=[20.0, 90.0], min_gap_minutes=0
    )
    assert task_api.get_reminder_defaults(state, "u1") == saved
    assert task_api.get_reminder_defaults(state, "u2").notify_percentage == [50.0]


@pytest.mark.parametrize(
    "kwargs, message",
    [
        ({"notify_before_hours": [2]}, "Invalid hour values: 2"),
        ({"notify_before_hours": [1.5]}, "hour values must be integers"),
        ({"notify_before_hours": [True]}, "hour values must be integers"),
        ({"notify_before_hours": (1, 3)}, "hour must be a list"),
        ({"notify_before_hours": [1, 3, 6, 12, 24, 1]}, "Too many hour values. Maximum allowed: 5"),
        ({"notify_percentage": [50]}, "Invalid percentage values: 50"),
        ({"notify_percentage": ["20"]}, "percentage values must be integers"),
        ({"min_gap_minutes": 1441}, "within [0, 1440]"),
        ({"min_gap_minutes": -1}, "within [0, 1440]"),
        ({"min_gap_minutes": 30.0}, "min_gap_minutes must be an integer"),
    ],
)
def test_update_reminder_defaults_rejects_invalid_input(state, kwargs, message) -> None:
    params = {"notify_before_hours": [1], "notify_percentage": [20], "min_gap_minutes": 58}
    params.update(kwargs)

    with pytest.raises(ValueError) as exc:
        task_api.update_reminder_defaults(state, "u1", **params)

    assert message in str(exc.value)
    assert state.task_store.get_reminder_defaults("u1") is None


def test_create_task_uses_stored_defaults_before_settings(state) -> None:
    task_api.update_reminder_defaults(
        state, "u1", notify_before_hours=[3, 12], notify_percentage=[], min_gap_minutes=120
    )

    mine = state.task_store.get_task(task_api.create_task(state, user_id="u1", title="Mine", due_at=T + HOUR))
    theirs = state.task_store.get_task(task_api.create_task(state, user_id="u2", title="Theirs", due_at=T + HOUR))
    override = state.task_store.get_task(
        task_api.create_task(state, user_id="u1", title="Custom", due_at=T + HOUR, notify_percentage=[33])
    )

    assert (mine.notify_before_hours, mine.notify_percentage, mine.min_gap_minutes) == ([3.0, 12.0], [], 120)
    assert (theirs.notify_before_hours, theirs.notify_percentage, theirs.min_gap_minutes) == ([1.0], [50.0], 58)
    assert override.notify_percentage == [33.0]
    assert override.notify_before_hours == [3.0, 12.0]


def test_complete_task_stamps_completed_at(state) -> None:
    task_id = task_api.create_task(state, user_id="u1", title="Done soon", due_at=T + HOUR)

    task = task_api.complete_task(state, "u1", task_id, now_ts=T)

    assert task.status == TaskStatus.COMPLETED
    assert task.completed_at == T
    assert state.task_store.get_task(task_id).completed_at == T
