# tests/test_bootstrap.py

from __future__ import annotations

import json
import time
from dataclasses import replace

import pytest

from blockreceipt.cli.background import start_dispatcher_in_background
from blockreceipt.cli.bootstrap import build_collaborators, build_task_store, create_initial_state
from blockreceipt.config import Settings
from blockreceipt.core.state import AppState
from blockreceipt.saga.http_collaborators import HttpAcquisitionStrategy, HttpMetadataStore
from blockreceipt.saga.offline import InMemoryMetadataStore, OfflineMarketplace, OfflineMinter
from blockreceipt.tasks.task_api import get_latest_for_subject, poll_response, project, submit_receipt
from blockreceipt.tasks.task_models import TaskStatus
from blockreceipt.tasks.task_store import InMemoryTaskStore
from blockreceipt.tasks.task_store_sqlite import SqliteTaskStore


def test_offline_wiring_by_default(state: AppState) -> None:
    assert isinstance(state.task_store, InMemoryTaskStore)
    assert isinstance(state.acquisition, OfflineMarketplace)
    assert isinstance(state.fallback, OfflineMinter)
    assert isinstance(state.metadata_store, InMemoryMetadataStore)
    assert state.registry.kinds() == ["acquire", "fallback-mint", "finalize-metadata"]
    assert state.dispatcher.max_concurrent == state.settings.max_concurrent


def test_backend_and_http_selection(settings: Settings) -> None:
    sqlite_settings = replace(
        settings,
        task_backend="sqlite",
        marketplace_url="http://market.test",
        minter_url="http://mint.test",
        metadata_url="http://meta.test",
    )

    assert isinstance(build_task_store(sqlite_settings), SqliteTaskStore)
    assert sqlite_settings.tasks_db_path.exists()

    acquisition, fallback, metadata = build_collaborators(sqlite_settings)
    assert isinstance(acquisition, HttpAcquisitionStrategy)
    assert isinstance(fallback, HttpAcquisitionStrategy)
    assert isinstance(metadata, HttpMetadataStore)


@pytest.mark.asyncio
async def test_offline_saga_end_to_end(state: AppState) -> None:
    encryption = {"ciphertext": "ct", "capsule_id": "cap", "policy_id": "pol"}
    submit_receipt(state.task_store, receipt_id="R1", wallet="0xABC", total=42.0, encryption=encryption)

    for _ in range(5):
        await state.dispatcher.tick()
        await state.dispatcher.drain()

    saga = state.task_store.by_correlation("R1")
    assert [(t.kind, t.status.value) for t in saga] == [
        ("finalize-metadata", "completed"),
        ("fallback-mint", "completed"),
        ("acquire", "failed"),
    ]
    assert saga[2].error == "no listing under budget"

    nft = project(saga[1]).nft
    assert nft is not None and nft.token_id == "1"
    assert nft.marketplace == "offline-mint"

    stored = state.metadata_store.records["1"]
    assert stored.owner_key == "0xABC"
    assert json.loads(stored.bundle)["capsule"] == "cap"


@pytest.mark.asyncio
async def test_sqlite_backed_saga(settings: Settings) -> None:
    app = create_initial_state(settings=replace(settings, task_backend="sqlite"))
    try:
        submit_receipt(app.task_store, receipt_id="R1", wallet="0xABC")
        for _ in range(3):
            await app.dispatcher.tick()
            await app.dispatcher.drain()

        latest = get_latest_for_subject(app.task_store, "R1")
        assert latest.kind == "fallback-mint"
        assert poll_response(project(latest))["completed"] is True
    finally:
        app.workflow.detach()


def test_background_runner_processes_and_stops(state: AppState) -> None:
    runner = start_dispatcher_in_background(state)
    assert runner is not None
    try:
        task = submit_receipt(state.task_store, receipt_id="R1", wallet="0xABC")

        deadline = time.monotonic() + 5.0
        while time.monotonic() < deadline:
            latest = state.task_store.latest_by_correlation("R1")
            if latest.id != task.id and latest.status.is_terminal:
                break
            time.sleep(0.02)

        assert state.task_store.get_task(task.id).status == TaskStatus.FAILED
        assert latest.kind == "fallback-mint"
        assert latest.status == TaskStatus.COMPLETED
    finally:
        runner.stop()
        runner.join(timeout=5.0)

    assert not runner.thread.is_alive()
