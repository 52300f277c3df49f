# src/taskpulse/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the reminder core.

The engine depends on Protocols instead of concrete implementations.
This keeps storage and chat transports swappable and makes testing easier.
"""

from typing import Awaitable, Protocol

from ..tasks.task_models import Notification, Task


class OutboundMessenger(Protocol):
    """
    Connector-side port: how services (the notification sink) send text outward.

    The connector decides how to interpret:
    - room_id (can be None)
    - to_user_id (can be None)
    """

    def send_text(
            self,
            *,
            text: str,
            room_id: str | None = None,
            to_user_id: str | None = None,
    ) -> Awaitable[None]: ...


class ReminderTaskRepo(Protocol):
    """The slice of the task store the reminder engine reads and writes."""

    def find_pending_candidates(self, now_ts: float) -> list[Task]: ...

    def atomic_update_stage_and_notify(
            self,
            task_id: int,
            *,
            stage_label: str | None,
            sent_at: float,
            notification: Notification,
    ) -> bool: ...


class NotificationSink(Protocol):
    """Best-effort external delivery. Implementations must not raise."""

    def deliver(self, *, user_id: str, task_id: int, message: str) -> Awaitable[None]: ...


class ChatDirectory(Protocol):
    """Maps an owner to the chat room reminders are delivered to."""

    def get_chat_room(self, user_id: str) -> str | None: ...


class TaskLookup(Protocol):
    def get_task(self, task_id: int) -> Task | None: ...



class CompletedTaskRepo(Protocol):
    def purge_completed_tasks(self, older_than_ts: float) -> int: ...
