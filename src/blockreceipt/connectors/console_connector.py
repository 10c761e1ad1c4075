# src/blockreceipt/connectors/console_connector.py

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.state import AppState

logger = logging.getLogger(__name__)

EXIT_COMMANDS = ("/exit", "/quit")
NOT_A_COMMAND = "Not a command. Use /help to list available commands."


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _banner(state: AppState) -> str:
    s = state.settings
    return (
        f"[{s.app_name}] backend={s.task_backend} max_concurrent={s.max_concurrent} "
        f"timeout={s.task_timeout_seconds:g}s. Type /help for commands, /exit to quit.\n"
    )


def run_console_loop(
    state: AppState,
    *,
    read_line: Callable[[str], str] = input,
    write: Callable[[str], None] = print,
) -> None:
    """
    Blocking operator REPL. Every line must be a slash command.

    The dispatcher runs on its own thread; commands only read the store or
    create root tasks, which the store serializes. `read_line`/`write` are
    swappable for tests.
    """

    def say(text: str) -> None:
        write(f"[{_ts_local()}] {text}")

    logger.info("Console connector started.")
    say(_banner(state))

    while True:
        try:
            line = read_line(">>> ").strip()
        except EOFError:
            logger.info("Console EOF received, exiting.")
            break
        except KeyboardInterrupt:
            logger.info("Console KeyboardInterrupt, exiting.")
            write("")
            break

        if not line:
            continue
        if line.lower() in EXIT_COMMANDS:
            logger.info("Console exit command received.")
            break

        try:
            reply = command_registry.handle(state, line)
        except Exception:
            logger.exception("Command %r crashed.", line.split()[0])
            reply = "Internal error while handling a command."

        say(NOT_A_COMMAND if reply is None else reply)

    logger.info("Console connector finished.")
