# src/blockreceipt/config.py

"""Settings for the task engine, read from BLOCKRECEIPT_* environment variables.

A .env in the working directory is loaded first but never overrides the real
environment. Every service URL is optional: empty means "use the offline
stand-in". Components receive Settings by injection; only the composition
root calls get_settings().
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

import dotenv

logger = logging.getLogger(__name__)

ENV_PREFIX = "BLOCKRECEIPT"

TASK_BACKENDS = ("memory", "sqlite")


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _load_local_dotenv() -> None:
    """Load .env from the working directory (never overrides variables already in the environment)."""
    dotenv.load_dotenv(dotenv.find_dotenv(usecwd=True), override=False)


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


_N = TypeVar("_N", int, float)


def _env_number(name: str, default: _N, cast: Callable[[str], _N]) -> _N:
    """Parse a numeric env var; blank or malformed values log a warning and give `default`."""
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError:
        logger.warning("Ignoring malformed %s=%r; using %s", name, raw, default)
        return default


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
    console_enabled: bool

    # ---- Task storage ----
    task_backend: str
    data_dir: Path
    tasks_db_path: Path

    # ---- Dispatcher ----
    max_concurrent: int
    tick_interval_seconds: float
    task_timeout_seconds: float
    task_retention_hours: float
    cleanup_interval_seconds: float

    # ---- External collaborators (empty => offline stand-ins) ----
    marketplace_url: str
    minter_url: str
    metadata_url: str
    http_connect_timeout_seconds: float
    http_read_timeout_seconds: float

    @staticmethod
    def from_env(*, load_dotenv: bool = True) -> "Settings":
        if load_dotenv:
            _load_local_dotenv()

        app_name = _env(_k("APP_NAME"), "blockreceipt") or "blockreceipt"
        log_level = _env(_k("LOG_LEVEL"), "INFO")
        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)

        task_backend = _env(_k("TASK_BACKEND"), "memory").strip().lower()
        if task_backend not in TASK_BACKENDS:
            logger.warning("Unknown task backend %r; using memory", task_backend)
            task_backend = "memory"

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/blockreceipt"))
        tasks_db_path = _env_path(_k("TASKS_DB_PATH"), data_dir / "tasks.sqlite3")

        max_concurrent = max(1, _env_number(_k("MAX_CONCURRENT"), 3, int))
        tick_interval_seconds = max(0.05, _env_number(_k("TICK_INTERVAL_SECONDS"), 1.0, float))
        task_timeout_seconds = _env_number(_k("TASK_TIMEOUT_SECONDS"), 120.0, float)
        task_retention_hours = _env_number(_k("TASK_RETENTION_HOURS"), 24.0, float)
        cleanup_interval_seconds = _env_number(_k("CLEANUP_INTERVAL_SECONDS"), 3600.0, float)

        return Settings(
            app_name=app_name,
            log_level=log_level,
            console_enabled=console_enabled,
            task_backend=task_backend,
            data_dir=data_dir,
            tasks_db_path=tasks_db_path,
            max_concurrent=max_concurrent,
            tick_interval_seconds=tick_interval_seconds,
            task_timeout_seconds=task_timeout_seconds,
            task_retention_hours=task_retention_hours,
            cleanup_interval_seconds=cleanup_interval_seconds,
            marketplace_url=_env(_k("MARKETPLACE_URL"), "").strip(),
            minter_url=_env(_k("MINTER_URL"), "").strip(),
            metadata_url=_env(_k("METADATA_URL"), "").strip(),
            http_connect_timeout_seconds=_env_number(_k("HTTP_CONNECT_TIMEOUT_SECONDS"), 5.0, float),
            http_read_timeout_seconds=_env_number(_k("HTTP_READ_TIMEOUT_SECONDS"), 30.0, float),
        )

    @property
    def retention_seconds(self) -> float:
        return max(0.0, self.task_retention_hours) * 3600.0


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = Settings.from_env()
    return _SETTINGS
