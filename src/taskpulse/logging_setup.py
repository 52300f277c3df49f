# src/taskpulse/logging_setup.py

from __future__ import annotations

import logging
import sys
from pathlib import Path

LOG_FILE_NAME = "taskpulse.log"

# Library loggers are capped here instead of per call site.
LIBRARY_LEVELS: dict[str, int] = {
    "nio": logging.INFO,
    "nio.crypto": logging.ERROR,
    "aiohttp": logging.WARNING,
    "asyncio": logging.WARNING,
}

_REMINDER_LOGGERS = ("taskpulse.reminders", "taskpulse.notifications")


class ReminderConsoleFilter(logging.Filter):
    """
    Console view of a running reminder service.

    Reminder outcomes (sent, gated, overdue, cleanup) show at INFO; per-tick
    DEBUG chatter stays in the log file. Matrix transport logs only surface
    as warnings, other libraries only as errors.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name
        if name.startswith(_REMINDER_LOGGERS):
            return record.levelno >= logging.INFO
        if name.startswith("taskpulse.connectors.matrix_"):
            return record.levelno >= logging.WARNING
        if name.startswith("taskpulse."):
            return True
        return record.levelno >= logging.ERROR


def parse_level(name: str | None, default: int = logging.INFO) -> int:
    level = logging.getLevelName(str(name or "").strip().upper())
    return level if isinstance(level, int) else default


def setup_logging(
    *,
    log_dir: str | Path = ".local/taskpulse",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> Path:
    """
    Console handler (filtered) on stderr, full log under log_dir.

    Safe to call more than once: handlers installed by a previous call are
    replaced. Returns the log file path.
    """
    log_path = Path(log_dir) / LOG_FILE_NAME
    log_path.parent.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(
        "%(asctime)s.%(msecs)03d %(levelname)-7s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(formatter)
    console.addFilter(ReminderConsoleFilter())

    logfile = logging.FileHandler(log_path, encoding="utf-8")
    logfile.setLevel(file_level)
    logfile.setFormatter(formatter)

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(min(console_level, file_level))
    root.addHandler(console)
    root.addHandler(logfile)

    for name, level in LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(level)

    logging.captureWarnings(True)
    return log_path
