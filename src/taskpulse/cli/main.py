# src/taskpulse/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then starts:
- the reminder scheduler in a background thread (inside the Matrix connector when
  Matrix is enabled, otherwise delivering to the console),
- the console REPL in the main thread (optional).
"""

from __future__ import annotations

import logging
import signal
import threading

from ..cli.bootstrap import build_reminder_scheduler, create_initial_state
from ..config import get_settings
from ..connectors.console_connector import CONSOLE_ROOM_ID, ConsoleMessenger, run_console_loop
from ..connectors.runner import BackgroundLoopRunner, start_loop_in_background
from ..logging_setup import parse_level, setup_logging

logger = logging.getLogger(__name__)


def main() -> None:
    settings = get_settings()

    setup_logging(
        log_dir=getattr(settings, "data_dir", ".local/taskpulse"),
        console_level=parse_level(getattr(settings, "log_level", "INFO")),
    )
    logger.info("Starting %s...", getattr(settings, "app_name", "taskpulse"))

    state = create_initial_state(settings=settings)

    runner: BackgroundLoopRunner | None
    if settings.matrix_enabled:
        from ..connectors.matrix_connector import start_matrix_in_background

        runner = start_matrix_in_background(state)
    else:
        if settings.console_enabled and state.task_store.get_chat_room(settings.console_user_id) is None:
            state.task_store.link_chat(settings.console_user_id, CONSOLE_ROOM_ID)
        scheduler = build_reminder_scheduler(state, ConsoleMessenger())
        runner = start_loop_in_background("reminders", scheduler.run_forever)

    stop_main = threading.Event()

    def _handle_signal(signum, _frame) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        stop_main.set()

    try:
        signal.signal(signal.SIGINT, _handle_signal)
        signal.signal(signal.SIGTERM, _handle_signal)
    except Exception:
        # Some platforms may not support SIGTERM, etc.
        pass

    try:
        if settings.console_enabled:
            run_console_loop(state)
            stop_main.set()
        else:
            logger.info("Console disabled. Running reminders only. Press Ctrl+C to stop.")
            stop_main.wait()
    finally:
        if runner is not None:
            runner.stop()
            runner.join(timeout=10.0)

        state.task_store.close()
        logger.info("Bye.")


if __name__ == "__main__":
    main()
