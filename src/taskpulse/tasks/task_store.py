# src/taskpulse/tasks/task_store.py

from __future__ import annotations

import contextlib
import json
import logging
import math
import sqlite3
import time
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from .task_models import (
    Notification,
    NotificationType,
    ReminderDefaults,
    SentStages,
    Task,
    TaskStatus,
    clean_before_hours,
    clean_percentages,
)

logger = logging.getLogger(__name__)


class TaskStore:
    """
    SQLite task store.

    The schema is intentionally simple and migration-safe:
    - create tables if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Stage arrays and sent-stage labels are stored as JSON arrays.

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "tasks.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        try:
            total = self.count_tasks()
        except Exception:
            total = -1
        logger.info("TaskStore ready db=%s total=%s", self._db_path, total)

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(Exception):
            conn.execute("PRAGMA journal_mode=WAL")

    @contextlib.contextmanager
    def _immediate(self) -> Iterator[sqlite3.Connection]:
        """
        One write transaction (BEGIN IMMEDIATE ... COMMIT).

        Everything executed inside the block is committed together or rolled back together.
        """
        conn = self._get_conn()
        conn.isolation_level = None
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT,
                    status TEXT NOT NULL DEFAULT 'pending',
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL,
                    due_at REAL NOT NULL,
                    snoozed_until REAL,
                    notify_before_hours TEXT NOT NULL DEFAULT '[]',
                    notify_percentage TEXT NOT NULL DEFAULT '[]',
                    min_gap_minutes INTEGER NOT NULL DEFAULT 58,
                    reminder_stages_sent TEXT NOT NULL DEFAULT '[]',
                    last_reminder_sent_at REAL,
                    completed_at REAL
                )
                """
            )

            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("TaskStore migration: added column %s", name)

            add_col("description", "TEXT")
            add_col("snoozed_until", "REAL")
            add_col("notify_before_hours", "TEXT NOT NULL DEFAULT '[]'")
            add_col("notify_percentage", "TEXT NOT NULL DEFAULT '[]'")
            add_col("min_gap_minutes", "INTEGER NOT NULL DEFAULT 58")
            add_col("reminder_stages_sent", "TEXT NOT NULL DEFAULT '[]'")
            add_col("last_reminder_sent_at", "REAL")
            add_col("completed_at", "REAL")

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS notifications (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    task_id INTEGER NOT NULL,
                    type TEXT NOT NULL,
                    message TEXT NOT NULL,
                    created_at REAL NOT NULL,
                    read INTEGER NOT NULL DEFAULT 0
                )
                """
            )

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS chat_links (
                    user_id TEXT PRIMARY KEY,
                    room_id TEXT NOT NULL,
                    linked_at REAL NOT NULL
                )
                """
            )

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS user_settings (
                    user_id TEXT PRIMARY KEY,
                    notify_before_hours TEXT NOT NULL DEFAULT '[]',
                    notify_percentage TEXT NOT NULL DEFAULT '[]',
                    min_gap_minutes INTEGER NOT NULL DEFAULT 58,
                    updated_at REAL NOT NULL
                )
                """
            )

            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_tasks_status_snooze ON tasks(status, snoozed_until)"
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_user ON tasks(user_id, status)")
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_notifications_user "
                "ON notifications(user_id, created_at)"
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_notifications_task ON notifications(task_id)")

            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _list_to_str(values: list[Any] | None) -> str:
        try:
            return json.dumps(list(values or []), ensure_ascii=False)
        except Exception:
            logger.exception("Failed to JSON-encode list; storing [].")
            return "[]"

    @staticmethod
    def _str_to_list(s: str | None) -> list[Any]:
        if not s:
            return []
        try:
            val = json.loads(s)
            return val if isinstance(val, list) else []
        except Exception:
            return []

    def _str_to_labels(self, s: str | None) -> list[str]:
        return [v for v in self._str_to_list(s) if isinstance(v, str)]

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        return Task(
            id=int(row["id"]),
            user_id=str(row["user_id"] or ""),
            title=str(row["title"] or ""),
            status=TaskStatus.from_db(row["status"]),
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
            due_at=float(row["due_at"] or 0.0),
            description=row["description"],
            snoozed_until=float(row["snoozed_until"]) if row["snoozed_until"] is not None else None,
            notify_before_hours=clean_before_hours(self._str_to_list(row["notify_before_hours"])),
            notify_percentage=clean_percentages(self._str_to_list(row["notify_percentage"])),
            min_gap_minutes=int(row["min_gap_minutes"] if row["min_gap_minutes"] is not None else 58),
            reminder_stages_sent=SentStages(self._str_to_labels(row["reminder_stages_sent"])),
            last_reminder_sent_at=(
                float(row["last_reminder_sent_at"]) if row["last_reminder_sent_at"] is not None else None
            ),
            completed_at=float(row["completed_at"]) if row["completed_at"] is not None else None,
        )

    @staticmethod
    def _row_to_notification(row: sqlite3.Row) -> Notification:
        return Notification(
            id=int(row["id"]),
            user_id=str(row["user_id"]),
            task_id=int(row["task_id"]),
            type=NotificationType(row["type"]),
            message=str(row["message"]),
            created_at=float(row["created_at"]),
            read=bool(row["read"]),
        )

    # ---- tasks ----

    def count_tasks(self) -> int:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT COUNT(*) FROM tasks")
            (n,) = cur.fetchone()
            return int(n)
        finally:
            conn.close()

    def add_task(
        self,
        *,
        user_id: str,
        title: str,
        due_at: float,
        description: str | None = None,
        notify_before_hours: list[float] | None = None,
        notify_percentage: list[float] | None = None,
        min_gap_minutes: int = 58,
        status: TaskStatus = TaskStatus.PENDING,
        created_at: float | None = None,
    ) -> int:
        if not user_id or not user_id.strip():
            raise ValueError("user_id is required")
        if not title or not title.strip():
            raise ValueError("title is required")
        if not math.isfinite(float(due_at)):
            raise ValueError("due_at must be a finite timestamp")

        now = time.time() if created_at is None else float(created_at)

        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO tasks(
                    user_id, title, description, status,
                    created_at, updated_at, due_at,
                    notify_before_hours, notify_percentage, min_gap_minutes,
                    reminder_stages_sent
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, '[]')
                """,
                (
                    user_id.strip(),
                    title.strip(),
                    (description or "").strip() or None,
                    status.value,
                    now,
                    now,
                    float(due_at),
                    self._list_to_str(clean_before_hours(notify_before_hours)),
                    self._list_to_str(clean_percentages(notify_percentage)),
                    int(min_gap_minutes),
                ),
            )
            conn.commit()
            rowid = cur.lastrowid
            if rowid is None:
                raise RuntimeError("SQLite did not return lastrowid for tasks insert")
            task_id = int(rowid)
            logger.debug("Task added id=%s user=%s due_at=%s", task_id, user_id, due_at)
            return task_id
        finally:
            conn.close()

    def get_task(self, task_id: int) -> Task | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (int(task_id),)).fetchone()
            return self._row_to_task(row) if row else None
        finally:
            conn.close()

    def list_tasks_for_user(
        self, user_id: str, *, include_completed: bool = False, limit: int = 50
    ) -> list[Task]:
        if not user_id:
            return []

        status_filter = "" if include_completed else "AND status = 'pending'"
        conn = self._get_conn()
        try:
            cur = conn.execute(
                f"""
                SELECT *
                FROM tasks
                WHERE user_id = ? {status_filter}
                ORDER BY due_at ASC, id ASC
                    LIMIT ?
                """,
                (user_id, int(limit)),
            )
            return [self._row_to_task(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def update_task_status(
        self, task_id: int, new_status: TaskStatus, *, now_ts: float | None = None
    ) -> bool:
        """Completing stamps completed_at; reopening clears it."""
        now = time.time() if now_ts is None else float(now_ts)
        completed_at = now if new_status == TaskStatus.COMPLETED else None
        conn = self._get_conn()
        try:
            cur = conn.execute(
                "UPDATE tasks SET status = ?, completed_at = ?, updated_at = ? WHERE id = ?",
                (new_status.value, completed_at, now, int(task_id)),
            )
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    def set_snoozed_until(self, task_id: int, snoozed_until: float | None) -> bool:
        now = time.time()
        conn = self._get_conn()
        try:
            cur = conn.execute(
                "UPDATE tasks SET snoozed_until = ?, updated_at = ? WHERE id = ?",
                (snoozed_until, now, int(task_id)),
            )
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    # ---- reminder engine API ----

    def find_pending_candidates(self, now_ts: float) -> list[Task]:
        """
        Tasks the reminder engine should look at:
        - status = pending
        - not snoozed, or the snooze has expired (snoozed_until <= now)
        """
        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                SELECT *
                FROM tasks
                WHERE status = 'pending'
                  AND (snoozed_until IS NULL OR snoozed_until <= ?)
                ORDER BY due_at ASC, id ASC
                """,
                (float(now_ts),),
            )
            return [self._row_to_task(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def atomic_update_stage_and_notify(
        self,
        task_id: int,
        *,
        stage_label: str | None,
        sent_at: float,
        notification: Notification,
    ) -> bool:
        """
        Record a firing in one transaction:
          append stage_label (if given) + last_reminder_sent_at + notification row

        Returns False (and writes nothing) when the task is gone, no longer pending,
        snoozed past sent_at, or already carries stage_label.
        Storage errors propagate after rollback. On success notification.id is filled in.
        """
        with self._immediate() as conn:
            row = conn.execute(
                "SELECT status, snoozed_until, reminder_stages_sent FROM tasks WHERE id = ?",
                (int(task_id),),
            ).fetchone()
            if row is None or TaskStatus.from_db(row["status"]) != TaskStatus.PENDING:
                return False
            if row["snoozed_until"] is not None and float(row["snoozed_until"]) > float(sent_at):
                return False

            sent = SentStages(self._str_to_labels(row["reminder_stages_sent"]))
            if stage_label is not None and not sent.add(stage_label):
                return False

            # last_reminder_sent_at never moves backwards.
            conn.execute(
                """
                UPDATE tasks
                SET reminder_stages_sent = ?,
                    last_reminder_sent_at = MAX(COALESCE(last_reminder_sent_at, ?), ?),
                    updated_at = ?
                WHERE id = ?
                """,
                (self._list_to_str(sent.as_list()), float(sent_at), float(sent_at), time.time(), int(task_id)),
            )
            cur = conn.execute(
                """
                INSERT INTO notifications(user_id, task_id, type, message, created_at, read)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    notification.user_id,
                    int(notification.task_id),
                    notification.type.value,
                    notification.message,
                    float(notification.created_at),
                    int(bool(notification.read)),
                ),
            )
            notification.id = int(cur.lastrowid) if cur.lastrowid is not None else None
            return True

    def purge_completed_tasks(self, older_than_ts: float) -> int:
        """
        Delete COMPLETED tasks whose completed_at is at or before older_than_ts,
        together with their notifications. Returns the number of tasks deleted.
        """
        with self._immediate() as conn:
            ids = [
                int(r["id"])
                for r in conn.execute(
                    """
                    SELECT id FROM tasks
                    WHERE status = 'completed'
                      AND completed_at IS NOT NULL
                      AND completed_at <= ?
                    """,
                    (float(older_than_ts),),
                ).fetchall()
            ]
            if not ids:
                return 0
            marks = ",".join("?" for _ in ids)
            conn.execute(f"DELETE FROM notifications WHERE task_id IN ({marks})", ids)
            conn.execute(f"DELETE FROM tasks WHERE id IN ({marks})", ids)
        logger.info("Purged %d completed tasks", len(ids))
        return len(ids)

    # ---- per-user reminder defaults ----

    def get_reminder_defaults(self, user_id: str) -> ReminderDefaults | None:
        if not user_id:
            return None
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM user_settings WHERE user_id = ?", (user_id,)
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        return ReminderDefaults(
            notify_before_hours=clean_before_hours(self._str_to_list(row["notify_before_hours"])),
            notify_percentage=clean_percentages(self._str_to_list(row["notify_percentage"])),
            min_gap_minutes=int(row["min_gap_minutes"]),
        )

    def set_reminder_defaults(self, user_id: str, defaults: ReminderDefaults) -> None:
        if not user_id:
            raise ValueError("user_id is required")
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO user_settings(user_id, notify_before_hours, notify_percentage, min_gap_minutes, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    notify_before_hours = excluded.notify_before_hours,
                    notify_percentage = excluded.notify_percentage,
                    min_gap_minutes = excluded.min_gap_minutes,
                    updated_at = excluded.updated_at
                """,
                (
                    user_id,
                    self._list_to_str(defaults.notify_before_hours),
                    self._list_to_str(defaults.notify_percentage),
                    int(defaults.min_gap_minutes),
                    time.time(),
                ),
            )
            conn.commit()
            logger.info("Reminder defaults updated user=%s", user_id)
        finally:
            conn.close()

    # ---- notifications ----

    def list_notifications(
        self, user_id: str, *, page: int = 1, limit: int = 20
    ) -> tuple[list[Notification], int]:
        """Newest first. Returns (page items, total count for the user)."""
        page = max(1, int(page))
        limit = max(1, int(limit))
        conn = self._get_conn()
        try:
            (total,) = conn.execute(
                "SELECT COUNT(*) FROM notifications WHERE user_id = ?", (user_id,)
            ).fetchone()
            cur = conn.execute(
                """
                SELECT *
                FROM notifications
                WHERE user_id = ?
                ORDER BY created_at DESC, id DESC
                    LIMIT ? OFFSET ?
                """,
                (user_id, limit, (page - 1) * limit),
            )
            return [self._row_to_notification(r) for r in cur.fetchall()], int(total)
        finally:
            conn.close()

    def notifications_for_task(self, task_id: int) -> list[Notification]:
        conn = self._get_conn()
        try:
            cur = conn.execute(
                "SELECT * FROM notifications WHERE task_id = ? ORDER BY created_at ASC, id ASC",
                (int(task_id),),
            )
            return [self._row_to_notification(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def get_notification(self, user_id: str, notification_id: int) -> Notification | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM notifications WHERE id = ? AND user_id = ?",
                (int(notification_id), user_id),
            ).fetchone()
            return self._row_to_notification(row) if row else None
        finally:
            conn.close()

    def mark_notification_read(self, user_id: str, notification_id: int, *, read: bool = True) -> bool:
        conn = self._get_conn()
        try:
            cur = conn.execute(
                "UPDATE notifications SET read = ? WHERE id = ? AND user_id = ?",
                (int(read), int(notification_id), user_id),
            )
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    # ---- chat links ----

    def link_chat(self, user_id: str, room_id: str) -> None:
        if not user_id or not room_id:
            raise ValueError("user_id and room_id are required")
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO chat_links(user_id, room_id, linked_at)
                VALUES (?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET room_id = excluded.room_id, linked_at = excluded.linked_at
                """,
                (user_id, room_id, time.time()),
            )
            conn.commit()
            logger.info("Chat linked user=%s room=%s", user_id, room_id)
        finally:
            conn.close()

    def get_chat_room(self, user_id: str) -> str | None:
        if not user_id:
            return None
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT room_id FROM chat_links WHERE user_id = ?", (user_id,)
            ).fetchone()
            return str(row["room_id"]) if row else None
        finally:
            conn.close()
