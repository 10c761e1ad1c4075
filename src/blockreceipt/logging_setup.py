# src/blockreceipt/logging_setup.py

from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path

LOG_FILE_NAME = "blockreceipt.log"

# Loggers that speak once per admitted task; console shows them only at WARNING+.
_CHATTY = (
    "blockreceipt.tasks.task_scheduler",
    "blockreceipt.saga.http_collaborators",
)


class _ConsoleFilter(logging.Filter):
    """
    Keep the operator console readable while the dispatcher thread is busy.

    The file handler is unfiltered; this only trims what reaches stderr.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name

        if name.startswith(_CHATTY):
            return record.levelno >= logging.WARNING
        if name == "blockreceipt" or name.startswith("blockreceipt."):
            return True
        if name == "py.warnings":
            return record.levelno >= logging.ERROR
        return record.levelno >= logging.WARNING


def level_from_name(name: str | None, default: int = logging.INFO) -> int:
    """'debug' / 'INFO' / '20' -> logging level; unknown names give `default`."""
    if not name:
        return default
    raw = str(name).strip()
    if raw.isdigit():
        return int(raw)
    level = logging.getLevelName(raw.upper())
    return level if isinstance(level, int) else default


def setup_logging(
    *,
    log_dir: str | Path = ".local/blockreceipt",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
) -> Path:
    """
    Console handler (filtered) + rotating file handler (everything).

    The dispatcher logs from its own thread, so records carry the thread name.
    Returns the log file path. Call once, before the first log line.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s [%(threadName)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(fmt)
    console.addFilter(_ConsoleFilter())
    root.addHandler(console)

    file_handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(file_level)
    file_handler.setFormatter(fmt)
    root.addHandler(file_handler)

    logging.captureWarnings(True)

    # httpx logs every request at INFO
    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return log_file
