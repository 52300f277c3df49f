# src/taskpulse/connectors/runner.py

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

LoopMain = Callable[[asyncio.Event], Awaitable[None]]


@dataclass
class BackgroundLoopRunner:
    """An asyncio loop running `main(stop_event)` in a daemon thread."""

    name: str
    thread: threading.Thread
    loop: asyncio.AbstractEventLoop
    stop_event: asyncio.Event

    def stop(self) -> None:
        try:
            self.loop.call_soon_threadsafe(self.stop_event.set)
        except Exception:
            logger.debug("Failed to signal %s stop.", self.name, exc_info=True)

    def join(self, timeout: float | None = None) -> None:
        self.thread.join(timeout=timeout)


def start_loop_in_background(name: str, main: LoopMain) -> BackgroundLoopRunner | None:
    """
    Start `main` on a fresh event loop in a background thread.

    The console REPL is blocking (input()), so async services (scheduler, Matrix sync)
    get their own loop.
    """
    ready = threading.Event()
    holder: dict[str, object] = {}

    def runner() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        stop_event = asyncio.Event()

        holder["loop"] = loop
        holder["stop_event"] = stop_event
        ready.set()

        try:
            loop.run_until_complete(main(stop_event))
        except Exception:
            logger.exception("%s loop crashed.", name)
        finally:
            with contextlib.suppress(Exception):
                loop.stop()
            with contextlib.suppress(Exception):
                loop.close()

    t = threading.Thread(target=runner, name=name, daemon=True)
    t.start()

    ready.wait(timeout=5.0)
    loop = holder.get("loop")
    stop_event = holder.get("stop_event")

    if not isinstance(loop, asyncio.AbstractEventLoop) or not isinstance(stop_event, asyncio.Event):
        logger.error("%s thread did not initialize properly.", name)
        return None

    logger.info("%s background thread started.", name)
    return BackgroundLoopRunner(name=name, thread=t, loop=loop, stop_event=stop_event)
