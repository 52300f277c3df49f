# src/taskpulse/connectors/matrix_connector.py

from __future__ import annotations

import asyncio
import contextlib
import logging
import time

from nio import MatrixRoom, RoomMessageText, exceptions

from ..cli.bootstrap import build_reminder_scheduler
from ..cli.commands import CommandRegistry
from ..cli.commands import registry as command_registry
from ..core.ports import OutboundMessenger
from ..core.state import AppState
from .matrix_client import MatrixMessenger, login_matrix_client
from .runner import BackgroundLoopRunner, start_loop_in_background

logger = logging.getLogger(__name__)

SYNC_TIMEOUT_MS = 30_000


class MatrixCommandBridge:
    """
    Turns room messages into slash commands and posts the replies back.

    Only fresh messages count: anything sent before `since_ms` (history replayed
    by the first sync) or by the bot itself is ignored, as is any room outside
    `allowed_rooms` when an allowlist is configured.
    """

    def __init__(
        self,
        state: AppState,
        messenger: OutboundMessenger,
        *,
        bot_user_id: str,
        allowed_rooms: list[str] | None = None,
        since_ms: int | None = None,
        registry: CommandRegistry = command_registry,
    ) -> None:
        self._state = state
        self._messenger = messenger
        self._bot_user_id = bot_user_id
        rooms = {r.strip() for r in (allowed_rooms or []) if str(r).strip()}
        self._allowed_rooms = rooms or None
        self._since_ms = int(time.time() * 1000) if since_ms is None else since_ms
        self._registry = registry

    def accepts(self, room_id: str, sender: str, body: str, server_ts: int | None) -> bool:
        if server_ts is not None and server_ts <= self._since_ms:
            return False
        if sender == self._bot_user_id:
            return False
        if self._allowed_rooms is not None and room_id not in self._allowed_rooms:
            return False
        return body.startswith("/")

    def reply_for(self, room_id: str, sender: str, body: str) -> str | None:
        try:
            with self._state.lock:
                return self._registry.handle(self._state, body, user_id=sender, room_id=room_id)
        except Exception:
            logger.exception("Command %r from %s failed.", body, sender)
            return "Internal error while handling a command."

    async def on_message(self, room: MatrixRoom, event: RoomMessageText) -> None:
        body = (event.body or "").strip()
        if not self.accepts(room.room_id, event.sender, body, getattr(event, "server_timestamp", None)):
            return

        logger.info("Matrix command in %s from %s: %r", room.room_id, event.sender, body)
        reply = self.reply_for(room.room_id, event.sender, body)
        if not reply:
            return
        try:
            await self._messenger.send_text(text=reply, room_id=room.room_id, to_user_id=event.sender)
        except exceptions.OlmUnverifiedDeviceError:
            logger.warning("Reply to %s dropped: unverified device.", event.sender)
        except Exception:
            logger.exception("Failed to send reply to %s.", event.sender)


async def run_matrix_service(state: AppState, stop_event: asyncio.Event) -> None:
    """Reminder scheduler and command bridge sharing one Matrix client until stop_event."""
    client = await login_matrix_client(state.settings)
    if client is None:
        logger.error("Matrix connector not started: no client.")
        return

    messenger = MatrixMessenger(client)
    bridge = MatrixCommandBridge(
        state,
        messenger,
        bot_user_id=client.user_id,
        allowed_rooms=getattr(state.settings, "matrix_rooms", None),
    )
    client.add_event_callback(bridge.on_message, RoomMessageText)

    scheduler = build_reminder_scheduler(state, messenger)
    scheduler_task = asyncio.create_task(scheduler.run_forever(stop_event))

    try:
        await client.sync(timeout=SYNC_TIMEOUT_MS, full_state=True)
        logger.info("Matrix ready, %d joined rooms.", len(client.rooms))
        while not stop_event.is_set():
            await client.sync(timeout=SYNC_TIMEOUT_MS)
    except asyncio.CancelledError:
        logger.info("Matrix connector cancelled.")
    except Exception:
        logger.exception("Matrix sync loop crashed.")
    finally:
        stop_event.set()
        with contextlib.suppress(Exception):
            await scheduler_task
        await client.close()
        logger.info("Matrix connector stopped.")


def start_matrix_in_background(state: AppState) -> BackgroundLoopRunner | None:
    return start_loop_in_background("matrix", lambda stop: run_matrix_service(state, stop))
