# src/taskpulse/cli/commands.py

from __future__ import annotations

import inspect
import logging
import re
import time
from collections.abc import Callable
from datetime import datetime
from typing import cast

from ..core.state import AppState
from ..tasks import task_api
from ..tasks.task_models import ReminderDefaults, Task, describe_stage_label

CommandEmitter = Callable[[str], None]
CommandHandler4 = Callable[[AppState, list[str], str | None, str | None], str]
CommandHandler5 = Callable[
    [AppState, list[str], str | None, str | None, CommandEmitter | None], str
]
CommandHandler = CommandHandler4 | CommandHandler5

logger = logging.getLogger(__name__)

_OFFSET_RE = re.compile(r"^(\d+(?:\.\d+)?)([mhd])$", re.IGNORECASE)
_UNIT_SECONDS = {"m": 60.0, "h": 3600.0, "d": 86400.0}


class CommandRegistry:
    """Simple slash-command registry used by connectors (/help, /add, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(
        self,
        state: AppState,
        line: str,
        user_id: str | None = None,
        room_id: str | None = None,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except Exception:
            nparams = 5

        try:
            if nparams >= 5:
                h5 = cast(CommandHandler5, handler)
                return h5(state, args, user_id, room_id, emit)

            h4 = cast(CommandHandler4, handler)
            return h4(state, args, user_id, room_id)
        except ValueError as e:
            return f"Error: {e}"
        except LookupError as e:
            return str(e.args[0]) if e.args else "Not found."

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _fmt_local(ts: float) -> str:
    return datetime.fromtimestamp(ts).astimezone().strftime("%Y-%m-%d %H:%M")


def parse_due(raw: str, *, now_ts: float | None = None) -> float:
    """
    "30m" / "2h" / "1.5d" -> now + offset;
    "2026-10-20T18:00" (local time unless an offset is given) -> that instant.
    """
    now = time.time() if now_ts is None else now_ts
    m = _OFFSET_RE.match(raw.strip())
    if m:
        return now + float(m.group(1)) * _UNIT_SECONDS[m.group(2).lower()]
    try:
        dt = datetime.fromisoformat(raw.strip())
    except ValueError:
        raise ValueError(f"Cannot parse due time {raw!r}. Use 30m, 2h, 1d or YYYY-MM-DDTHH:MM.") from None
    if dt.tzinfo is None:
        dt = dt.astimezone()
    return dt.timestamp()


def _parse_minutes(raw: str) -> float:
    m = _OFFSET_RE.match(raw.strip())
    if m:
        return float(m.group(1)) * _UNIT_SECONDS[m.group(2).lower()] / 60.0
    try:
        # A bare number means hours, matching the snooze buttons (1/3/6/12).
        return float(raw) * 60.0
    except ValueError:
        raise ValueError(f"Cannot parse duration {raw!r}. Use 1, 3h or 30m.") from None


def _parse_id(raw: str, what: str) -> int:
    try:
        return int(raw.lstrip("#"))
    except ValueError:
        raise ValueError(f"{what} id must be a number, got {raw!r}") from None


def _render_task_line(task: Task) -> str:
    stages = ", ".join(describe_stage_label(label) for label in task.reminder_stages_sent) or "-"
    snoozed = ""
    if task.snoozed_until and task.snoozed_until > time.time():
        snoozed = f" (snoozed until {_fmt_local(task.snoozed_until)})"
    return f"#{task.id} {task.title} - due {_fmt_local(task.due_at)}{snoozed} [sent: {stages}]"


def cmd_help(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
    emit: CommandEmitter | None = None,
) -> str:
    return registry.build_help()


def cmd_add(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
    emit: CommandEmitter | None = None,
) -> str:
    """
    /add <due> <title...>
      due: 30m | 2h | 1d | YYYY-MM-DDTHH:MM
    """
    if not user_id:
        return "No user_id in this context."
    if len(args) < 2:
        return "Usage: /add <30m|2h|1d|YYYY-MM-DDTHH:MM> <title>"

    due_at = parse_due(args[0])
    title = " ".join(args[1:])
    task_id = task_api.create_task(state, user_id=user_id, title=title, due_at=due_at)
    return f"Task #{task_id} added, due {_fmt_local(due_at)}."


def cmd_tasks(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
) -> str:
    if not user_id:
        return "No user_id in this context."
    tasks = state.task_store.list_tasks_for_user(user_id, limit=50)
    if not tasks:
        return "No pending tasks."
    return "\n".join(["Pending tasks:"] + [_render_task_line(t) for t in tasks])


def cmd_done(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
) -> str:
    if not user_id:
        return "No user_id in this context."
    if not args:
        return "Usage: /done <task_id>"
    task = task_api.complete_task(state, user_id, _parse_id(args[0], "Task"))
    return f"Task #{task.id} completed."


def cmd_snooze(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
) -> str:
    """
    /snooze <task_id> <1|3|6|12|Nh|Nm>
    /snooze n<notification_id> <duration>  -> snooze via a notification (marks it read)
    """
    if not user_id:
        return "No user_id in this context."
    if len(args) < 2:
        return "Usage: /snooze <task_id> <1|3|6|12h|30m>"

    minutes = _parse_minutes(args[1])
    target = args[0]
    if target.lower().startswith("n"):
        until = task_api.snooze_notification(
            state, user_id, _parse_id(target[1:], "Notification"), minutes
        )
    else:
        until = task_api.snooze_task(state, user_id, _parse_id(target, "Task"), minutes)
    return f"Snoozed until {_fmt_local(until)}."


def cmd_notifications(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
) -> str:
    if not user_id:
        return "No user_id in this context."
    page = int(args[0]) if args and args[0].isdigit() else 1
    result = task_api.list_notifications(state, user_id, page=page, limit=10)
    items = result["notifications"]
    if not items:
        return "No notifications."
    lines = [f"Notifications (page {result['current_page']}/{max(1, result['total_pages'])}):"]
    for n in items:
        mark = " " if n.read else "*"
        lines.append(f"{mark} n{n.id} [{n.type.value}] {_fmt_local(n.created_at)} {n.message}")
    return "\n".join(lines)


def cmd_read(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
) -> str:
    if not user_id:
        return "No user_id in this context."
    if not args:
        return "Usage: /read <notification_id>"
    n = task_api.mark_notification_read(state, user_id, _parse_id(args[0].lstrip("nN"), "Notification"))
    return f"Notification n{n.id} marked as read."


def cmd_link(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
) -> str:
    if not user_id or not room_id:
        return "This command is only available in a chat context (missing user/room)."
    state.task_store.link_chat(user_id, room_id)
    return "Reminders for your tasks will be delivered to this chat."


def _parse_int_list(raw: str, what: str) -> list[int]:
    if raw in ("-", "none"):
        return []
    try:
        return [int(p) for p in raw.split(",") if p.strip()]
    except ValueError:
        raise ValueError(f"{what} must be comma separated integers, got {raw!r}") from None


def _render_defaults(d: ReminderDefaults) -> str:
    hours = ", ".join(f"{h:g}h" for h in d.notify_before_hours) or "-"
    percent = ", ".join(f"{p:g}%" for p in d.notify_percentage) or "-"
    return (
        "Reminder defaults:\n"
        f"  Before due: {hours}\n"
        f"  Elapsed: {percent}\n"
        f"  Min gap: {d.min_gap_minutes} min"
    )


def cmd_defaults(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
) -> str:
    """
    /defaults                          -> show
    /defaults <hours> <percent> <gap>  e.g. /defaults 1,3 20,80 58  ("-" = none)
    """
    if not user_id:
        return "No user_id in this context."
    if not args:
        return _render_defaults(task_api.get_reminder_defaults(state, user_id))
    if len(args) != 3:
        return "Usage: /defaults <hours|-> <percent|-> <gap_minutes>  (hours: 1,3,6,12,24; percent: 20,40,60,80,90)"

    try:
        gap = int(args[2])
    except ValueError:
        raise ValueError(f"gap must be an integer, got {args[2]!r}") from None
    defaults = task_api.update_reminder_defaults(
        state,
        user_id,
        notify_before_hours=_parse_int_list(args[0], "hours"),
        notify_percentage=_parse_int_list(args[1], "percent"),
        min_gap_minutes=gap,
    )
    return "Saved. " + _render_defaults(defaults)


def cmd_health(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
) -> str:
    scheduler = state.scheduler
    if scheduler is None:
        return "Reminder scheduler is not running."
    h = scheduler.health()
    last_run = _fmt_local(h["last_run_at"]) if h["last_run_at"] else "never"
    duration = f"{h['last_duration_ms']:.0f}ms" if h["last_duration_ms"] is not None else "-"
    return (
        "Reminder health:\n"
        f"  Status: {h['status']}\n"
        f"  Runs: {h['total_runs']} (skipped: {h['skipped_runs']})\n"
        f"  Last run: {last_run} ({duration})\n"
        f"  Last error: {h['last_error'] or '-'}\n"
        f"  Uptime: {h['uptime_seconds']}s"
    )


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("add", cmd_add, help_text="Add a task: /add <30m|2h|1d|YYYY-MM-DDTHH:MM> <title>.")
registry.register("tasks", cmd_tasks, help_text="List your pending tasks.", aliases=["list"])
registry.register("done", cmd_done, help_text="Complete a task: /done <task_id>.")
registry.register("snooze", cmd_snooze, help_text="Snooze reminders: /snooze <task_id> <1|3|6|12h|30m>.")
registry.register(
    "notifications", cmd_notifications, help_text="Recent notifications: /notifications [page].", aliases=["n"]
)
registry.register("read", cmd_read, help_text="Mark a notification read: /read <notification_id>.")
registry.register(
    "defaults", cmd_defaults, help_text="Show or set reminder defaults: /defaults [<hours> <percent> <gap>]."
)
registry.register("link", cmd_link, help_text="Deliver reminders to this chat.")
registry.register("health", cmd_health, help_text="Reminder scheduler health.")
