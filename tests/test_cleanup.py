# tests/test_cleanup.py

from __future__ import annotations

from taskpulse.reminders.cleanup import CompletedTaskCleanup
from taskpulse.tasks import task_api

from .fakes import HOUR, MIN, T


class _PurgeRepo:
    def __init__(self, counts: list[int] | None = None) -> None:
        self.thresholds: list[float] = []
        self.counts = list(counts or [])

    def purge_completed_tasks(self, older_than_ts: float) -> int:
        self.thresholds.append(older_than_ts)
        return self.counts.pop(0) if self.counts else 0


def test_first_call_runs_then_once_per_interval() -> None:
    repo = _PurgeRepo(counts=[2, 0])
    cleanup = CompletedTaskCleanup(repo, interval_seconds=HOUR, retention_seconds=24 * HOUR)

    assert cleanup.last_run_at is None
    assert cleanup.maybe_run(T) == 2
    assert cleanup.maybe_run(T + 59 * MIN) is None
    assert cleanup.maybe_run(T + HOUR) == 0

    assert repo.thresholds == [T - 24 * HOUR, T + HOUR - 24 * HOUR]
    assert cleanup.last_run_at == T + HOUR


def test_cleanup_purges_day_old_completions_from_store(state) -> None:
    old = task_api.create_task(state, user_id="u1", title="Old", due_at=T)
    fresh = task_api.create_task(state, user_id="u1", title="Fresh", due_at=T)
    open_task = task_api.create_task(state, user_id="u1", title="Open", due_at=T)
    task_api.complete_task(state, "u1", old, now_ts=T - 25 * HOUR)
    task_api.complete_task(state, "u1", fresh, now_ts=T - 2 * HOUR)

    cleanup = CompletedTaskCleanup(state.task_store)

    assert cleanup.maybe_run(T) == 1
    assert state.task_store.get_task(old) is None
    assert state.task_store.get_task(fresh) is not None
    assert state.task_store.get_task(open_task) is not None
