# src/taskpulse/notifications/sink.py

from __future__ import annotations

import logging
import time
from datetime import datetime

from ..core.ports import ChatDirectory, OutboundMessenger, TaskLookup
from ..tasks.task_models import Task

logger = logging.getLogger(__name__)

DESCRIPTION_PREVIEW_CHARS = 50
SNOOZE_CHOICES_HOURS = (1, 3, 6, 12)


def _fmt_local(ts: float) -> str:
    return datetime.fromtimestamp(ts).astimezone().strftime("%Y-%m-%d %H:%M")


def render_chat_message(task: Task | None, message: str, *, now: float | None = None) -> str:
    """
    Chat text for one notification.

    The stored notification message stays the source of truth; the chat text adds
    task context (title, short description, due time) and the snooze hint.
    """
    if task is None:
        return message

    now_ts = time.time() if now is None else now
    header = "OVERDUE" if now_ts > task.due_at else "REMINDER"

    lines = [f"[{header}] {message}", "", f"Task #{task.id}: {task.title}"]

    desc = (task.description or "").strip()
    if desc:
        if len(desc) > DESCRIPTION_PREVIEW_CHARS:
            desc = desc[:DESCRIPTION_PREVIEW_CHARS] + "..."
        lines.append(f"Description: {desc}")

    lines.append(f"Due: {_fmt_local(task.due_at)}")
    choices = "|".join(str(h) for h in SNOOZE_CHOICES_HOURS)
    lines.append(f"Snooze: /snooze {task.id} {choices}h")
    return "\n".join(lines)


class ChatNotificationSink:
    """
    Delivers notifications to the owner's linked chat room.

    Delivery is best-effort: a missing link is skipped, lookup and transport
    errors are logged and never propagate to the caller.
    """

    def __init__(
        self,
        directory: ChatDirectory,
        messenger: OutboundMessenger,
        tasks: TaskLookup | None = None,
    ) -> None:
        self._directory = directory
        self._messenger = messenger
        self._tasks = tasks

    async def deliver(self, *, user_id: str, task_id: int, message: str) -> None:
        try:
            room_id = self._directory.get_chat_room(user_id)
        except Exception:
            logger.exception("Chat room lookup failed user=%s", user_id)
            return

        if not room_id:
            logger.debug("No chat linked for user=%s; task_id=%s delivery skipped", user_id, task_id)
            return

        task: Task | None = None
        if self._tasks is not None:
            try:
                task = self._tasks.get_task(task_id)
            except Exception:
                logger.debug("Task lookup failed task_id=%s; sending bare message", task_id, exc_info=True)

        text = render_chat_message(task, message)

        try:
            await self._messenger.send_text(text=text, room_id=room_id, to_user_id=user_id)
            logger.info("Notification delivered task_id=%s room=%s", task_id, room_id)
        except Exception:
            logger.exception("Notification delivery failed task_id=%s room=%s", task_id, room_id)
