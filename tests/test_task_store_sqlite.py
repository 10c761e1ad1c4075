# tests/test_task_store_sqlite.py

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from blockreceipt.errors import InvalidTransitionError, TaskNotFoundError
from blockreceipt.tasks.task_models import TaskEvent, TaskKind, TaskStatus
from blockreceipt.tasks.task_store_sqlite import SqliteTaskStore

from .fakes import FakeClock


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "nested" / "tasks.sqlite3"


@pytest.fixture()
def sqlite_store(db_path: Path, clock: FakeClock) -> SqliteTaskStore:
    return SqliteTaskStore(db_path, clock=clock)


def test_lifecycle_round_trip(sqlite_store: SqliteTaskStore) -> None:
    task = sqlite_store.create_task(
        TaskKind.ACQUIRE, {"receipt_id": "R1", "wallet": "0xABC", "total": 42.0}
    )
    assert task.status == TaskStatus.PENDING
    assert task.correlation_key == "R1"
    assert task.payload == {"receipt_id": "R1", "wallet": "0xABC", "total": 42.0}

    sqlite_store.update_task(task.id, status=TaskStatus.PROCESSING)
    done = sqlite_store.update_task(
        task.id, status=TaskStatus.COMPLETED, result={"token_id": "77", "name": "Ünïcode"}
    )

    assert done.status == TaskStatus.COMPLETED
    assert done.result == {"token_id": "77", "name": "Ünïcode"}
    assert done.completed_at == done.updated_at

    with pytest.raises(InvalidTransitionError):
        sqlite_store.update_task(task.id, status=TaskStatus.FAILED)
    with pytest.raises(InvalidTransitionError):
        sqlite_store.update_task(task.id, error="late")


def test_state_survives_reopen(db_path: Path, clock: FakeClock) -> None:
    first = SqliteTaskStore(db_path, clock=clock)
    task = first.create_task("acquire", {"receipt_id": "R1"})
    first.update_task(task.id, status=TaskStatus.PROCESSING)
    first.update_task(task.id, status=TaskStatus.FAILED, error="boom", error_kind="strategy")

    reopened = SqliteTaskStore(db_path, clock=clock)
    again = reopened.get_task(task.id)

    assert again is not None
    assert again.status == TaskStatus.FAILED
    assert again.error == "boom"
    assert again.error_kind == "strategy"
    assert reopened.count_tasks() == 1


def test_unknown_task(sqlite_store: SqliteTaskStore) -> None:
    assert sqlite_store.get_task("task_missing") is None
    with pytest.raises(TaskNotFoundError):
        sqlite_store.update_task("task_missing", status=TaskStatus.PROCESSING)


def test_queries_match_in_memory_ordering(sqlite_store: SqliteTaskStore) -> None:
    a = sqlite_store.create_task("acquire", {"receipt_id": "R1", "wallet": "0xA"})
    b = sqlite_store.create_task("acquire", {"receipt_id": "R2", "wallet": "0xB"})
    c = sqlite_store.create_task("fallback-mint", {"receipt_id": "R1", "wallet": "0xA"})
    sqlite_store.update_task(b.id, status=TaskStatus.PROCESSING)

    assert [t.id for t in sqlite_store.by_status(TaskStatus.PENDING)] == [a.id, c.id]
    assert [t.id for t in sqlite_store.by_correlation("R1")] == [c.id, a.id]
    assert sqlite_store.latest_by_correlation("R1").id == c.id
    assert sqlite_store.latest_by_correlation("R3") is None
    assert [t.id for t in sqlite_store.by_owner("0xA")] == [c.id, a.id]
    assert [t.id for t in sqlite_store.all_tasks()] == [a.id, b.id, c.id]


def test_same_timestamp_ties_use_insertion_order(db_path: Path) -> None:
    store = SqliteTaskStore(db_path, clock=lambda: 100.0)
    first = store.create_task("acquire", {"receipt_id": "R1"})
    second = store.create_task("fallback-mint", {"receipt_id": "R1"})

    assert store.latest_by_correlation("R1").id == second.id
    assert [t.id for t in store.by_status(TaskStatus.PENDING)] == [first.id, second.id]


def test_delete_terminal_before(sqlite_store: SqliteTaskStore, clock: FakeClock) -> None:
    done = sqlite_store.create_task("acquire", {})
    sqlite_store.update_task(done.id, status=TaskStatus.PROCESSING)
    sqlite_store.update_task(done.id, status=TaskStatus.COMPLETED, result=None)
    active = sqlite_store.create_task("acquire", {})

    cutoff = clock.now + 0.5
    assert sqlite_store.delete_terminal_before(cutoff) == 1
    assert sqlite_store.get_task(done.id) is None
    assert sqlite_store.get_task(active.id) is not None


def test_id_collision_draws_a_new_id(db_path: Path) -> None:
    ids = iter(["task_dup", "task_dup", "task_fresh"])
    store = SqliteTaskStore(db_path, id_factory=lambda _now: next(ids))

    assert store.create_task("acquire", {}).id == "task_dup"
    assert store.create_task("acquire", {}).id == "task_fresh"


def test_events_are_published(sqlite_store: SqliteTaskStore) -> None:
    seen: list[TaskEvent] = []
    sqlite_store.subscribe(seen.append)

    task = sqlite_store.create_task("acquire", {})
    sqlite_store.update_task(task.id, status=TaskStatus.FAILED, error="no handler")

    assert [e.event for e in seen] == ["created", "updated"]
    assert seen[1].became_terminal


def test_migrates_older_schema(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.execute(
        """
        CREATE TABLE tasks (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            id TEXT NOT NULL UNIQUE,
            kind TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            payload TEXT NOT NULL DEFAULT '{}',
            correlation_key TEXT NOT NULL DEFAULT '',
            created_at REAL NOT NULL,
            updated_at REAL NOT NULL
        )
        """
    )
    conn.execute(
        "INSERT INTO tasks(id, kind, status, payload, correlation_key, created_at, updated_at) "
        "VALUES ('task_old', 'acquire', 'pending', '{\"receipt_id\": \"R0\"}', 'R0', 1.0, 1.0)"
    )
    conn.commit()
    conn.close()

    store = SqliteTaskStore(db_path)
    old = store.get_task("task_old")

    assert old is not None
    assert old.payload == {"receipt_id": "R0"}
    assert old.completed_at is None and old.result is None and old.error_kind is None

    store.update_task("task_old", status=TaskStatus.PROCESSING)
    failed = store.update_task("task_old", status=TaskStatus.FAILED, error="x", error_kind="handler")
    assert failed.error_kind == "handler"
    assert failed.completed_at is not None


def test_row_vanishing_after_write_raises(sqlite_store: SqliteTaskStore, monkeypatch: pytest.MonkeyPatch) -> None:
    task = sqlite_store.create_task(TaskKind.ACQUIRE, {"receipt_id": "R1"})
    real_fetch = SqliteTaskStore._fetch
    reads: list[str] = []

    # first read (the current row) works, the read-back after the write finds nothing
    def flaky_fetch(conn: sqlite3.Connection, task_id: str):
        reads.append(task_id)
        return real_fetch(conn, task_id) if len(reads) == 1 else None

    monkeypatch.setattr(sqlite_store, "_fetch", flaky_fetch)

    with pytest.raises(TaskNotFoundError):
        sqlite_store.update_task(task.id, status=TaskStatus.PROCESSING)

    reads.clear()
    monkeypatch.setattr(sqlite_store, "_fetch", lambda conn, task_id: None)
    with pytest.raises(TaskNotFoundError):
        sqlite_store.create_task(TaskKind.ACQUIRE, {"receipt_id": "R2"})
