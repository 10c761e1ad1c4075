# src/blockreceipt/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then starts:
- the dispatcher loop in a background thread,
- the console REPL in the main thread (optional).
"""

from __future__ import annotations

import logging
import signal
import threading

from ..cli.background import start_dispatcher_in_background
from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..logging_setup import level_from_name, setup_logging

logger = logging.getLogger(__name__)


def _shutdown(state) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    try:
        state.workflow.detach()
    except Exception:
        logger.debug("Workflow detach failed.", exc_info=True)

    try:
        state.task_store.close()
    except Exception:
        logger.debug("Task store close failed.", exc_info=True)


def main() -> None:
    settings = get_settings()

    log_file = setup_logging(
        log_dir=settings.data_dir,
        console_level=level_from_name(settings.log_level),
    )

    logger.info(
        "Starting %s (task backend: %s, log file: %s)...",
        settings.app_name,
        settings.task_backend,
        log_file,
    )

    # IMPORTANT: reuse same settings object
    state = create_initial_state(settings=settings)

    runner = start_dispatcher_in_background(state)
    if runner is None:
        logger.error("Dispatcher failed to start; exiting.")
        _shutdown(state)
        return

    # Use an Event so main can wait without a busy while-loop.
    stop_main = threading.Event()

    def _handle_signal(signum, _frame) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        stop_main.set()

    try:
        signal.signal(signal.SIGINT, _handle_signal)
        signal.signal(signal.SIGTERM, _handle_signal)
    except (ValueError, OSError):
        # Some platforms may not support SIGTERM, etc.
        pass

    try:
        if settings.console_enabled:
            run_console_loop(state)
            stop_main.set()
        else:
            logger.info("Console disabled. Running dispatcher only. Press Ctrl+C to stop.")
            stop_main.wait()

    finally:
        runner.stop()
        runner.join(timeout=max(10.0, settings.task_timeout_seconds))
        _shutdown(state)
        logger.info("Bye.")


if __name__ == "__main__":
    main()
