# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from taskpulse.core.state import AppState
from taskpulse.tasks.task_store import TaskStore


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and the reminder wiring.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="taskpulse-test",
        data_dir=tmp_path,
        matrix_store_path=tmp_path / "matrix_store",
        tasks_db_path=tmp_path / "tasks.sqlite3",
        console_user_id="console",
        reminder_interval_seconds=60.0,
        reminder_tolerance_seconds=60.0,
        reminder_batch_warning=5000,
        delivery_timeout_seconds=1.0,
        cleanup_interval_seconds=3600.0,
        completed_retention_hours=24.0,
        default_notify_before_hours=[1.0],
        default_notify_percentage=[50.0],
        default_min_gap_minutes=58,
    )


@pytest.fixture()
def store(settings: SimpleNamespace) -> TaskStore:
    return TaskStore(settings.tasks_db_path)


@pytest.fixture()
def state(settings: SimpleNamespace, store: TaskStore) -> AppState:
    """
    AppState wired with a real SQLite TaskStore: its correctness is part of
    what we want to test.
    """
    return AppState(settings=settings, task_store=store)
