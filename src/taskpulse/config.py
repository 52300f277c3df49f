# src/taskpulse/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- No secrets required at import time.
- Reminder engine tuning lives here, not in the engine modules.
"""

from __future__ import annotations

import math
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "TASKPULSE"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


# Real environment variables win over .env entries.
load_dotenv(override=False)


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        val = float(raw)
    except ValueError:
        return default
    return val if math.isfinite(val) else default


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    parts = [p.strip() for p in raw.replace(",", " ").split() if p.strip()]
    return parts


def _env_numbers(name: str, default: list[float]) -> list[float]:
    """Comma/space separated numbers; unparsable items are dropped."""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    out: list[float] = []
    for part in _env_list(name, []):
        try:
            val = float(part)
        except ValueError:
            continue
        if math.isfinite(val):
            out.append(val)
    return out


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Connector flags ----
    console_enabled: bool
    matrix_enabled: bool
    console_user_id: str

    # ---- Matrix ----
    matrix_homeserver: str
    matrix_user_id: str
    matrix_password: str
    matrix_rooms: list[str]

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    matrix_store_path: Path
    tasks_db_path: Path

    # ---- Reminder engine ----
    reminder_interval_seconds: float
    reminder_tolerance_seconds: float
    reminder_batch_warning: int
    delivery_timeout_seconds: float
    cleanup_interval_seconds: float
    completed_retention_hours: float

    # ---- Per-user reminder defaults (applied on task creation) ----
    default_notify_before_hours: list[float]
    default_notify_percentage: list[float]
    default_min_gap_minutes: int

    @staticmethod
    def from_env() -> "Settings":
        app_name = _first_env(_k("APP_NAME"), default="taskpulse") or "taskpulse"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)
        matrix_enabled = _env_bool(_k("MATRIX_ENABLED"), False)
        console_user_id = _env(_k("CONSOLE_USER_ID"), "console").strip() or "console"

        matrix_homeserver = (_first_env(_k("MATRIX_HOMESERVER"), "MATRIX_HOMESERVER", default="") or "").strip()
        matrix_user_id = (_first_env(_k("MATRIX_USER_ID"), "MATRIX_USER_ID", default="") or "").strip()
        matrix_password = (_first_env(_k("MATRIX_PASSWORD"), "MATRIX_PASSWORD", default="") or "").strip()
        matrix_rooms = _env_list(_k("MATRIX_ROOMS"), [])

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/taskpulse"))
        matrix_store_path = _env_path(_k("MATRIX_STORE_PATH"), data_dir / "matrix_store")
        tasks_db_path = _env_path(_k("TASKS_DB_PATH"), data_dir / "tasks.sqlite3")

        reminder_interval_seconds = max(1.0, _env_float(_k("REMINDER_INTERVAL_SECONDS"), 60.0))
        reminder_tolerance_seconds = max(1.0, _env_float(_k("REMINDER_TOLERANCE_SECONDS"), 60.0))
        reminder_batch_warning = _env_int(_k("REMINDER_BATCH_WARNING"), 5000)
        delivery_timeout_seconds = max(0.1, _env_float(_k("DELIVERY_TIMEOUT_SECONDS"), 10.0))
        cleanup_interval_seconds = max(60.0, _env_float(_k("CLEANUP_INTERVAL_SECONDS"), 3600.0))
        completed_retention_hours = max(0.0, _env_float(_k("COMPLETED_RETENTION_HOURS"), 24.0))

        default_notify_before_hours = _env_numbers(_k("DEFAULT_NOTIFY_BEFORE_HOURS"), [1.0])
        default_notify_percentage = _env_numbers(_k("DEFAULT_NOTIFY_PERCENTAGE"), [50.0])
        default_min_gap_minutes = _env_int(_k("DEFAULT_MIN_GAP_MINUTES"), 58)
        if not 0 <= default_min_gap_minutes <= 1440:
            default_min_gap_minutes = 58

        return Settings(
            app_name=app_name,
            log_level=log_level,
            console_enabled=console_enabled,
            matrix_enabled=matrix_enabled,
            console_user_id=console_user_id,
            matrix_homeserver=matrix_homeserver,
            matrix_user_id=matrix_user_id,
            matrix_password=matrix_password,
            matrix_rooms=matrix_rooms,
            data_dir=data_dir,
            matrix_store_path=matrix_store_path,
            tasks_db_path=tasks_db_path,
            reminder_interval_seconds=reminder_interval_seconds,
            reminder_tolerance_seconds=reminder_tolerance_seconds,
            reminder_batch_warning=reminder_batch_warning,
            delivery_timeout_seconds=delivery_timeout_seconds,
            cleanup_interval_seconds=cleanup_interval_seconds,
            completed_retention_hours=completed_retention_hours,
            default_notify_before_hours=default_notify_before_hours,
            default_notify_percentage=default_notify_percentage,
            default_min_gap_minutes=default_min_gap_minutes,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
