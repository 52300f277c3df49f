# tests/test_task_store.py

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from taskpulse.tasks.task_models import Notification, NotificationType, ReminderDefaults, TaskStatus
from taskpulse.tasks.task_store import TaskStore

from .fakes import HOUR, T


def _reminder(task_id: int, at: float, message: str = "Reminder") -> Notification:
    return Notification(
        user_id="u1",
        task_id=task_id,
        type=NotificationType.REMINDER,
        message=message,
        created_at=at,
    )


def _add(store: TaskStore, **kw) -> int:
    params = dict(user_id="u1", title="Task", created_at=T - 2 * HOUR, due_at=T + 2 * HOUR)
    params.update(kw)
    return store.add_task(**params)


def test_add_and_get_task(store: TaskStore) -> None:
    task_id = _add(
        store,
        title="  Buy milk ",
        description="2 liters",
        notify_before_hours=[1, 0.5],
        notify_percentage=[50],
        min_gap_minutes=30,
    )

    task = store.get_task(task_id)
    assert task is not None
    assert task.title == "Buy milk"
    assert task.status == TaskStatus.PENDING
    assert task.created_at == T - 2 * HOUR
    assert task.notify_before_hours == [1.0, 0.5]
    assert task.notify_percentage == [50.0]
    assert task.min_gap_minutes == 30
    assert task.reminder_stages_sent == []
    assert task.last_reminder_sent_at is None
    assert store.get_task(9999) is None


def test_add_task_requires_title_and_user(store: TaskStore) -> None:
    with pytest.raises(ValueError):
        _add(store, title=" ")
    with pytest.raises(ValueError):
        _add(store, user_id="")


def test_malformed_stored_arrays_load_as_clean_lists(tmp_path: Path) -> None:
    db = tmp_path / "tasks.sqlite3"
    store = TaskStore(db)
    task_id = _add(store)

    conn = sqlite3.connect(str(db))
    conn.execute(
        "UPDATE tasks SET notify_before_hours = ?, notify_percentage = ?, reminder_stages_sent = ? WHERE id = ?",
        ('[1, "x", null, -2]', "not json", '{"a": 1}', task_id),
    )
    conn.commit()
    conn.close()

    task = store.get_task(task_id)
    assert task is not None
    assert task.notify_before_hours == [1.0]
    assert task.notify_percentage == []
    assert task.reminder_stages_sent == []


def test_find_pending_candidates_filters_status_and_snooze(store: TaskStore) -> None:
    plain = _add(store)
    snoozed_future = _add(store)
    snoozed_past = _add(store)
    completed = _add(store)

    store.set_snoozed_until(snoozed_future, T + 10)
    store.set_snoozed_until(snoozed_past, T)
    store.update_task_status(completed, TaskStatus.COMPLETED)

    ids = {t.id for t in store.find_pending_candidates(T)}
    assert ids == {plain, snoozed_past}


def test_atomic_update_records_stage_timestamp_and_notification(store: TaskStore) -> None:
    task_id = _add(store)
    n = _reminder(task_id, T)

    assert store.atomic_update_stage_and_notify(task_id, stage_label="before_1h", sent_at=T, notification=n)

    task = store.get_task(task_id)
    assert task is not None
    assert task.reminder_stages_sent == ["before_1h"]
    assert task.last_reminder_sent_at == T
    assert n.id is not None

    stored = store.notifications_for_task(task_id)
    assert len(stored) == 1
    assert stored[0].id == n.id
    assert stored[0].type == NotificationType.REMINDER
    assert stored[0].read is False


def test_atomic_update_refuses_duplicate_stage(store: TaskStore) -> None:
    task_id = _add(store)
    assert store.atomic_update_stage_and_notify(
        task_id, stage_label="before_1h", sent_at=T, notification=_reminder(task_id, T)
    )

    again = store.atomic_update_stage_and_notify(
        task_id, stage_label="before_1h", sent_at=T + 60, notification=_reminder(task_id, T + 60)
    )

    assert again is False
    assert len(store.notifications_for_task(task_id)) == 1
    task = store.get_task(task_id)
    assert task is not None and task.last_reminder_sent_at == T


def test_atomic_update_refuses_completed_or_missing_task(store: TaskStore) -> None:
    task_id = _add(store)
    store.update_task_status(task_id, TaskStatus.COMPLETED)

    assert not store.atomic_update_stage_and_notify(
        task_id, stage_label="overdue", sent_at=T, notification=_reminder(task_id, T)
    )
    assert not store.atomic_update_stage_and_notify(
        4242, stage_label="overdue", sent_at=T, notification=_reminder(4242, T)
    )
    assert store.notifications_for_task(task_id) == []


def test_last_reminder_sent_at_never_moves_backwards(store: TaskStore) -> None:
    task_id = _add(store)
    store.atomic_update_stage_and_notify(
        task_id, stage_label="percent_50", sent_at=T, notification=_reminder(task_id, T)
    )
    store.atomic_update_stage_and_notify(
        task_id, stage_label="before_1h", sent_at=T - HOUR, notification=_reminder(task_id, T - HOUR)
    )

    task = store.get_task(task_id)
    assert task is not None
    assert task.last_reminder_sent_at == T
    assert task.reminder_stages_sent == ["percent_50", "before_1h"]


def test_update_without_label_only_stamps_and_notifies(store: TaskStore) -> None:
    task_id = _add(store)
    n = Notification(
        user_id="u1", task_id=task_id, type=NotificationType.OVERDUE, message="Overdue", created_at=T
    )

    assert store.atomic_update_stage_and_notify(task_id, stage_label=None, sent_at=T, notification=n)

    task = store.get_task(task_id)
    assert task is not None
    assert task.reminder_stages_sent == []
    assert task.last_reminder_sent_at == T
    assert [x.type for x in store.notifications_for_task(task_id)] == [NotificationType.OVERDUE]


def test_failed_notification_insert_rolls_back_stage(store: TaskStore) -> None:
    task_id = _add(store)
    broken = _reminder(task_id, T)
    broken.message = None  # type: ignore[assignment]  # violates NOT NULL

    with pytest.raises(sqlite3.IntegrityError):
        store.atomic_update_stage_and_notify(task_id, stage_label="before_1h", sent_at=T, notification=broken)

    task = store.get_task(task_id)
    assert task is not None
    assert task.reminder_stages_sent == []
    assert task.last_reminder_sent_at is None
    assert store.notifications_for_task(task_id) == []


def test_notifications_paging_and_read_flag(store: TaskStore) -> None:
    task_id = _add(store)
    for i in range(5):
        store.atomic_update_stage_and_notify(
            task_id, stage_label=f"percent_{i}", sent_at=T + i, notification=_reminder(task_id, T + i, f"m{i}")
        )

    page1, total = store.list_notifications("u1", page=1, limit=2)
    page3, _ = store.list_notifications("u1", page=3, limit=2)
    assert total == 5
    assert [n.message for n in page1] == ["m4", "m3"]
    assert [n.message for n in page3] == ["m0"]
    assert store.list_notifications("someone-else") == ([], 0)

    target = page1[0]
    assert target.id is not None
    assert store.mark_notification_read("u1", target.id)
    assert not store.mark_notification_read("someone-else", target.id)
    reread = store.get_notification("u1", target.id)
    assert reread is not None and reread.read is True


def test_chat_link_upsert(store: TaskStore) -> None:
    assert store.get_chat_room("u1") is None
    store.link_chat("u1", "!a:example.org")
    store.link_chat("u1", "!b:example.org")
    assert store.get_chat_room("u1") == "!b:example.org"


def test_atomic_update_refuses_task_snoozed_past_sent_at(store: TaskStore) -> None:
    task_id = _add(store)
    store.set_snoozed_until(task_id, T + HOUR)

    assert not store.atomic_update_stage_and_notify(
        task_id, stage_label="before_1h", sent_at=T, notification=_reminder(task_id, T)
    )
    task = store.get_task(task_id)
    assert task is not None
    assert task.reminder_stages_sent == []
    assert task.last_reminder_sent_at is None
    assert store.notifications_for_task(task_id) == []

    # Once the snooze has run out the same firing goes through.
    assert store.atomic_update_stage_and_notify(
        task_id, stage_label="before_1h", sent_at=T + HOUR, notification=_reminder(task_id, T + HOUR)
    )


def test_update_task_status_stamps_and_clears_completed_at(store: TaskStore) -> None:
    task_id = _add(store)

    assert store.update_task_status(task_id, TaskStatus.COMPLETED, now_ts=T)
    task = store.get_task(task_id)
    assert task is not None and task.completed_at == T

    assert store.update_task_status(task_id, TaskStatus.PENDING, now_ts=T + 10)
    task = store.get_task(task_id)
    assert task is not None and task.completed_at is None


def test_purge_completed_tasks_removes_only_old_completions(store: TaskStore) -> None:
    old_done = _add(store)
    recent_done = _add(store)
    pending = _add(store)
    store.atomic_update_stage_and_notify(
        old_done, stage_label="percent_50", sent_at=T - 30 * HOUR, notification=_reminder(old_done, T - 30 * HOUR)
    )
    store.atomic_update_stage_and_notify(
        pending, stage_label="percent_50", sent_at=T - 30 * HOUR, notification=_reminder(pending, T - 30 * HOUR)
    )
    store.update_task_status(old_done, TaskStatus.COMPLETED, now_ts=T - 25 * HOUR)
    store.update_task_status(recent_done, TaskStatus.COMPLETED, now_ts=T - HOUR)

    assert store.purge_completed_tasks(T - 24 * HOUR) == 1

    assert store.get_task(old_done) is None
    assert store.notifications_for_task(old_done) == []
    assert store.get_task(recent_done) is not None
    assert store.get_task(pending) is not None
    assert len(store.notifications_for_task(pending)) == 1
    assert store.purge_completed_tasks(T - 24 * HOUR) == 0


def test_reminder_defaults_roundtrip_and_upsert(store: TaskStore) -> None:
    assert store.get_reminder_defaults("u1") is None

    store.set_reminder_defaults("u1", ReminderDefaults([1.0, 3.0], [20.0], 30))
    store.set_reminder_defaults("u1", ReminderDefaults([24.0], [], 0))

    stored = store.get_reminder_defaults("u1")
    assert stored == ReminderDefaults(notify_before_hours=[24.0], notify_percentage=[], min_gap_minutes=0)
    assert store.get_reminder_defaults("u2") is None
    with pytest.raises(ValueError):
        store.set_reminder_defaults("", ReminderDefaults())
