# tests/conftest.py

from __future__ import annotations

import os
from collections.abc import Iterator
from dataclasses import replace
from pathlib import Path

import pytest

from blockreceipt.cli.bootstrap import create_initial_state
from blockreceipt.config import Settings
from blockreceipt.core.state import AppState
from blockreceipt.saga.workflow import WorkflowController
from blockreceipt.tasks.task_registry import HandlerRegistry
from blockreceipt.tasks.task_scheduler import Dispatcher
from blockreceipt.tasks.task_store import InMemoryTaskStore

from .fakes import FakeClock


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store(clock: FakeClock) -> InMemoryTaskStore:
    return InMemoryTaskStore(clock=clock)


@pytest.fixture()
def registry() -> HandlerRegistry:
    return HandlerRegistry()


@pytest.fixture()
def dispatcher(store: InMemoryTaskStore, registry: HandlerRegistry) -> Dispatcher:
    return Dispatcher(store, registry, max_concurrent=3, interval_seconds=0.01, task_timeout_seconds=5.0)


@pytest.fixture()
def workflow(store: InMemoryTaskStore) -> Iterator[WorkflowController]:
    wf = WorkflowController(store)
    wf.attach()
    yield wf
    wf.detach()


@pytest.fixture()
def settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Settings:
    """
    Settings built from a clean environment, pointed at a tmp data dir.

    No .env loading and no service URLs, so bootstrap wires offline collaborators.
    """
    for name in list(os.environ):
        if name.startswith("BLOCKRECEIPT_"):
            monkeypatch.delenv(name, raising=False)
    base = Settings.from_env(load_dotenv=False)
    return replace(
        base,
        data_dir=tmp_path,
        tasks_db_path=tmp_path / "tasks.sqlite3",
        tick_interval_seconds=0.05,
        task_timeout_seconds=5.0,
    )


@pytest.fixture()
def state(settings: Settings) -> Iterator[AppState]:
    """Fully wired app state (offline collaborators, in-memory store)."""
    app = create_initial_state(settings=settings)
    yield app
    app.workflow.detach()
    app.task_store.close()
