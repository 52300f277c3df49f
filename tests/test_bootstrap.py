# tests/test_bootstrap.py

from __future__ import annotations

import time

import pytest

from taskpulse.cli.bootstrap import build_reminder_scheduler, create_initial_state
from taskpulse.connectors.console_connector import CONSOLE_ROOM_ID, ConsoleMessenger
from taskpulse.connectors.runner import start_loop_in_background
from taskpulse.tasks.task_models import TaskStatus

from .fakes import FakeMessenger


def test_create_initial_state_prepares_local_dirs(settings) -> None:
    state = create_initial_state(settings=settings)

    assert settings.matrix_store_path.is_dir()
    assert settings.tasks_db_path.exists()
    assert state.scheduler is None


@pytest.mark.asyncio
async def test_wired_scheduler_delivers_to_linked_room(state) -> None:
    now = time.time()
    task_id = state.task_store.add_task(
        user_id="u1",
        title="Stand-up",
        created_at=now - 7200,
        due_at=now + 3600 - 10,
        notify_before_hours=[1],
    )
    state.task_store.link_chat("u1", "!room:example.org")
    messenger = FakeMessenger()

    scheduler = build_reminder_scheduler(state, messenger)
    assert state.scheduler is scheduler

    await scheduler.tick()

    task = state.task_store.get_task(task_id)
    assert task is not None and task.reminder_stages_sent == ["before_1h"]
    assert len(messenger.sent) == 1
    assert messenger.sent[0].room_id == "!room:example.org"
    assert scheduler.health()["status"] == "healthy"


@pytest.mark.asyncio
async def test_wired_scheduler_purges_old_completed_tasks(state) -> None:
    now = time.time()
    done_id = state.task_store.add_task(user_id="u1", title="Filed taxes", created_at=now - 3 * 86400, due_at=now)
    state.task_store.update_task_status(done_id, TaskStatus.COMPLETED, now_ts=now - 25 * 3600)

    scheduler = build_reminder_scheduler(state, FakeMessenger())
    await scheduler.tick()

    assert state.task_store.get_task(done_id) is None


@pytest.mark.asyncio
async def test_console_messenger_prints(capsys) -> None:
    await ConsoleMessenger().send_text(text="hello", room_id=CONSOLE_ROOM_ID)
    assert "hello" in capsys.readouterr().out


def test_background_runner_starts_and_stops(state) -> None:
    scheduler = build_reminder_scheduler(state, FakeMessenger())
    runner = start_loop_in_background("reminders-test", scheduler.run_forever)
    assert runner is not None

    deadline = time.monotonic() + 5.0
    while scheduler.metrics.total_runs == 0 and time.monotonic() < deadline:
        time.sleep(0.01)

    runner.stop()
    runner.join(timeout=5.0)

    assert scheduler.metrics.total_runs >= 1
    assert not runner.thread.is_alive()
