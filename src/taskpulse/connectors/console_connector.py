# src/taskpulse/connectors/console_connector.py

from __future__ import annotations

import logging
import sys
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.state import AppState

logger = logging.getLogger(__name__)

CONSOLE_ROOM_ID = "console"


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _rewrite_prev_line(line: str) -> None:
    """
    Replace the last terminal line with `line`.
    Best-effort: if not a TTY, just print a new line.
    """
    try:
        if sys.stdout.isatty():
            sys.stdout.write("\033[1A\033[2K\r")
            sys.stdout.write(line + "\n")
            sys.stdout.flush()
        else:
            print(line)
    except Exception:
        print(line)


class ConsoleMessenger:
    """OutboundMessenger that prints reminders to the terminal."""

    async def send_text(
        self,
        *,
        text: str,
        room_id: str | None = None,
        to_user_id: str | None = None,
    ) -> None:
        print(f"\n[{_ts_local()}] {text}\n", flush=True)


def run_console_loop(state: AppState) -> None:
    settings = getattr(state, "settings", None)
    user_id = str(getattr(settings, "console_user_id", "console"))
    logger.info("Console connector started (user=%s).", user_id)
    print(f"[{_ts_local()}] [CONSOLE] Manage tasks with slash commands. Use /help, /exit to quit.\n")

    def emit(text: str) -> None:
        print(f"[{_ts_local()}] {text}", flush=True)

    while True:
        try:
            user_input = input(">>> ").strip()
            _rewrite_prev_line(f"[{_ts_local()}] >>> {user_input}")
        except EOFError:
            logger.info("Console EOF received, exiting.")
            break
        except KeyboardInterrupt:
            logger.info("Console KeyboardInterrupt, exiting.")
            print()
            break

        if not user_input:
            continue

        if user_input.lower() in ("/exit", "/quit"):
            logger.info("Console exit command received.")
            break

        try:
            with state.lock:
                response = command_registry.handle(
                    state, user_input, user_id=user_id, room_id=CONSOLE_ROOM_ID, emit=emit
                )
        except Exception:
            logger.exception("Command handler crashed.")
            response = "Internal error while handling a command."

        if response is None:
            response = "Not a command. Use /help to list available commands."
        print(f"[{_ts_local()}] {response}")

    logger.info("Console connector finished.")
