# src/taskpulse/reminders/engine.py

from __future__ import annotations

"""
Reminder engine.

One call to run_once() is one tick:
- load pending, non-snoozed tasks
- per task: plan stages, pick the first due stage, check the anti-flood gate
- record the firing (stage label + timestamp + notification) in one store transaction
- hand the message to the notification sink (best-effort)
- if nothing fired and the task is past due, send the one-time overdue alert

Tasks are independent: a failure on one task is logged and the tick moves on.
The engine never raises out of run_once().
"""

import asyncio
import logging
import time
from dataclasses import dataclass

from ..core.ports import NotificationSink, ReminderTaskRepo
from ..tasks.task_models import (
    Notification,
    NotificationType,
    Overdue,
    Stage,
    Task,
)
from .anti_flood import is_allowed_to_fire
from .stage_planner import TOLERANCE_WINDOW_SECONDS, first_eligible_stage, plan_stages

logger = logging.getLogger(__name__)

BATCH_WARNING_THRESHOLD = 5000


@dataclass(slots=True)
class TickReport:
    """What one run_once() did. `error` is set only when the whole tick aborted."""

    started_at: float
    candidates: int = 0
    reminders_sent: int = 0
    overdue_sent: int = 0
    gated: int = 0
    failed: int = 0
    error: str | None = None

    @property
    def notifications_sent(self) -> int:
        return self.reminders_sent + self.overdue_sent


def reminder_message(task: Task, stage: Stage) -> str:
    return f'Reminder: Task "{task.title}" - {stage.label}'


def overdue_message(task: Task) -> str:
    return f'Overdue: Task "{task.title}" is overdue!'


class ReminderEngine:
    def __init__(
        self,
        store: ReminderTaskRepo,
        sink: NotificationSink | None = None,
        *,
        tolerance_seconds: float = TOLERANCE_WINDOW_SECONDS,
        batch_warning_threshold: int = BATCH_WARNING_THRESHOLD,
        delivery_timeout_seconds: float = 10.0,
    ) -> None:
        self._store = store
        self._sink = sink
        self._tolerance_s = float(tolerance_seconds)
        self._batch_warning = int(batch_warning_threshold)
        self._delivery_timeout_s = max(0.1, float(delivery_timeout_seconds))

    async def run_once(self, now: float | None = None) -> TickReport:
        now_ts = time.time() if now is None else float(now)
        report = TickReport(started_at=now_ts)

        try:
            tasks = self._store.find_pending_candidates(now_ts)
        except Exception as e:
            logger.exception("find_pending_candidates failed; tick aborted")
            report.error = f"{type(e).__name__}: {e}"
            return report

        report.candidates = len(tasks)
        if len(tasks) > self._batch_warning:
            logger.warning(
                "Large reminder batch: %d candidate tasks (threshold %d)",
                len(tasks),
                self._batch_warning,
            )
        logger.debug("Reminder tick now=%.3f candidates=%d", now_ts, len(tasks))

        for task in tasks:
            try:
                await self._process_task(task, now_ts, report)
            except Exception:
                report.failed += 1
                logger.exception("Reminder processing failed task_id=%s", getattr(task, "id", None))

        if report.notifications_sent or report.failed:
            logger.info(
                "Reminder tick done: candidates=%d reminders=%d overdue=%d gated=%d failed=%d",
                report.candidates,
                report.reminders_sent,
                report.overdue_sent,
                report.gated,
                report.failed,
            )
        return report

    async def _process_task(self, task: Task, now: float, report: TickReport) -> None:
        # Data anomalies are "nothing to do", never errors.
        if task.duration <= 0:
            return
        if not task.has_reminders_configured:
            return

        stages = plan_stages(task, now)
        stage = first_eligible_stage(
            stages, now, task.reminder_stages_sent, tolerance_seconds=self._tolerance_s
        )

        if stage is not None:
            if not is_allowed_to_fire(task, now):
                # Hard stop for the stage walk: a later stage would be a flood too.
                report.gated += 1
                logger.debug(
                    "Anti-flood: task_id=%s stage=%s blocked (last=%.3f gap=%smin)",
                    task.id,
                    stage.label,
                    task.last_reminder_sent_at or 0.0,
                    task.min_gap_minutes,
                )
            else:
                notification = Notification(
                    user_id=task.user_id,
                    task_id=task.id,
                    type=NotificationType.REMINDER,
                    message=reminder_message(task, stage),
                    created_at=now,
                )
                if not self._record(task, stage.label, now, notification):
                    return
                report.reminders_sent += 1
                logger.info("Reminder sent task_id=%s stage=%s", task.id, stage.label)
                await self._deliver(notification)
                return

        await self._maybe_fire_overdue(task, now, report)

    async def _maybe_fire_overdue(self, task: Task, now: float, report: TickReport) -> None:
        label = Overdue().label
        if not now > task.due_at or label in task.reminder_stages_sent:
            return

        # Not throttled by the anti-flood gate: it fires at most once per task.
        notification = Notification(
            user_id=task.user_id,
            task_id=task.id,
            type=NotificationType.OVERDUE,
            message=overdue_message(task),
            created_at=now,
        )
        if not self._record(task, label, now, notification):
            return
        report.overdue_sent += 1
        logger.info("Overdue alert sent task_id=%s", task.id)
        await self._deliver(notification)

    def _record(self, task: Task, label: str, now: float, notification: Notification) -> bool:
        """
        Persist a firing. Store errors propagate to the per-task handler;
        a refused update (already recorded elsewhere) is logged and skipped.
        """
        ok = self._store.atomic_update_stage_and_notify(
            task.id,
            stage_label=label,
            sent_at=now,
            notification=notification,
        )
        if not ok:
            logger.warning("Stage update refused task_id=%s stage=%s; skipping", task.id, label)
            return False
        task.reminder_stages_sent.add(label)
        if task.last_reminder_sent_at is None or now > task.last_reminder_sent_at:
            task.last_reminder_sent_at = now
        return True

    async def _deliver(self, notification: Notification) -> None:
        """Fire-and-forget delivery: bounded by a timeout, errors are logged and dropped."""
        if self._sink is None:
            return
        try:
            await asyncio.wait_for(
                self._sink.deliver(
                    user_id=notification.user_id,
                    task_id=notification.task_id,
                    message=notification.message,
                ),
                timeout=self._delivery_timeout_s,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Delivery timed out task_id=%s after %.1fs",
                notification.task_id,
                self._delivery_timeout_s,
            )
        except Exception:
            logger.exception("Delivery failed task_id=%s", notification.task_id)
