# src/blockreceipt/cli/background.py

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
import threading
from dataclasses import dataclass

from ..core.state import AppState
from ..tasks.task_api import cleanup_older_than
from ..tasks.task_scheduler import run_dispatcher

logger = logging.getLogger(__name__)


@dataclass
class DispatcherBackgroundRunner:
    thread: threading.Thread
    loop: asyncio.AbstractEventLoop
    stop_event: asyncio.Event

    def stop(self) -> None:
        try:
            self.loop.call_soon_threadsafe(self.stop_event.set)
        except RuntimeError:
            logger.debug("Failed to signal dispatcher stop (loop closed).", exc_info=True)

    def join(self, timeout: float | None = None) -> None:
        self.thread.join(timeout=timeout)


def start_dispatcher_in_background(state: AppState) -> DispatcherBackgroundRunner | None:
    """
    Start the dispatcher loop in a background thread (so the console REPL can run in parallel).

    Why a thread:
    - console REPL is blocking (input()).
    - the dispatcher is async and wants its own event loop.
    """
    settings = state.settings
    ready = threading.Event()
    holder: dict[str, object] = {}

    retention = float(getattr(settings, "retention_seconds", 0.0) or 0.0)
    sweep_every = float(getattr(settings, "cleanup_interval_seconds", 0.0) or 0.0)
    sweep = functools.partial(cleanup_older_than, state.task_store, retention) if retention > 0 else None

    def runner() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        stop_event = asyncio.Event()

        holder["loop"] = loop
        holder["stop_event"] = stop_event
        ready.set()

        try:
            loop.run_until_complete(
                run_dispatcher(
                    state.dispatcher,
                    stop_event=stop_event,
                    sweep=sweep,
                    sweep_interval_seconds=sweep_every if sweep else 0.0,
                )
            )
        except Exception:
            logger.exception("Dispatcher loop crashed.")
        finally:
            with contextlib.suppress(Exception):
                loop.stop()
            with contextlib.suppress(Exception):
                loop.close()

    t = threading.Thread(target=runner, name="dispatcher", daemon=True)
    t.start()

    ready.wait(timeout=5.0)
    loop = holder.get("loop")
    stop_event = holder.get("stop_event")

    if not isinstance(loop, asyncio.AbstractEventLoop) or not isinstance(stop_event, asyncio.Event):
        logger.error("Dispatcher thread did not initialize properly.")
        return None

    logger.info("Dispatcher background thread started.")
    return DispatcherBackgroundRunner(thread=t, loop=loop, stop_event=stop_event)
