# src/blockreceipt/tasks/task_store_sqlite.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import time
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

from ..errors import TaskNotFoundError
from .task_models import Task, TaskEvent, TaskStatus, check_transition
from .task_store import UNSET, TaskEventHub, TaskListener, derive_correlation_key, generate_task_id

logger = logging.getLogger(__name__)

_ID_ATTEMPTS = 5

_SCHEMA = """
CREATE TABLE IF NOT EXISTS tasks (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    kind TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    payload TEXT NOT NULL DEFAULT '{}',
    correlation_key TEXT NOT NULL DEFAULT '',
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL,
    completed_at REAL,
    result TEXT,
    error TEXT,
    error_kind TEXT
)
"""

# Columns added after the first schema; older files get them via ALTER TABLE.
_LATE_COLUMNS = (
    ("completed_at", "REAL"),
    ("result", "TEXT"),
    ("error", "TEXT"),
    ("error_kind", "TEXT"),
)


def _dumps(value: Any) -> str | None:
    return None if value is None else json.dumps(value, ensure_ascii=False)


def _loads(raw: str | None) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Undecodable JSON column; returning None")
        return None


def _row_to_task(row: sqlite3.Row) -> Task:
    payload = _loads(row["payload"])
    completed_at = row["completed_at"]
    return Task(
        id=str(row["id"]),
        kind=str(row["kind"]),
        status=TaskStatus.from_db(row["status"]),
        payload=payload if isinstance(payload, dict) else {},
        correlation_key=str(row["correlation_key"] or ""),
        created_at=float(row["created_at"] or 0.0),
        updated_at=float(row["updated_at"] or 0.0),
        completed_at=None if completed_at is None else float(completed_at),
        result=_loads(row["result"]),
        error=row["error"],
        error_kind=row["error_kind"],
        seq=int(row["seq"]),
    )


class SqliteTaskStore:
    """
    Persistent task store with the same contract as InMemoryTaskStore.

    - one short-lived connection per call, so the dispatcher thread and the
      console thread never share a connection
    - status changes are compare-and-set (UPDATE ... WHERE status = <read status>)
    - payload/result are stored as JSON text
    - `seq` (AUTOINCREMENT) breaks created_at ties, as in the in-memory store

    Tasks left in `processing` by a crashed run stay there; nothing re-queues them.
    """

    def __init__(
        self,
        db_path: str | Path = "tasks.sqlite3",
        *,
        clock: Callable[[], float] = time.time,
        id_factory: Callable[[float], str] = generate_task_id,
    ) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        self._id_factory = id_factory
        self._events = TaskEventHub()
        self._migrate()
        logger.info("SqliteTaskStore ready db=%s tasks=%d", self._db_path, self.count_tasks())

    def close(self) -> None:
        """Nothing to release: connections never outlive a call."""
        return

    def subscribe(self, listener: TaskListener) -> Callable[[], None]:
        return self._events.subscribe(listener)

    @contextlib.contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        try:
            yield conn
        finally:
            conn.close()

    def _migrate(self) -> None:
        with self._connect() as conn:
            conn.execute(_SCHEMA)
            present = {row["name"] for row in conn.execute("PRAGMA table_info(tasks)")}
            for name, decl in _LATE_COLUMNS:
                if name not in present:
                    conn.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                    logger.info("SqliteTaskStore migration: added column %s", name)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status, created_at)")
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_tasks_correlation ON tasks(correlation_key, created_at)"
            )
            conn.commit()

    def _select(self, where: str = "", params: tuple[Any, ...] = (), *, newest_first: bool = False) -> list[Task]:
        order = "DESC" if newest_first else "ASC"
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM tasks {where} ORDER BY created_at {order}, seq {order}",
                params,
            ).fetchall()
        return [_row_to_task(r) for r in rows]

    @staticmethod
    def _fetch(conn: sqlite3.Connection, task_id: str) -> Task | None:
        row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return _row_to_task(row) if row is not None else None

    # ---- writes ----

    def create_task(
        self,
        kind: str,
        payload: dict[str, Any] | None = None,
        correlation_key: str | None = None,
    ) -> Task:
        kind = str(kind or "").strip()
        if not kind:
            raise ValueError("kind is required")

        payload = dict(payload or {})
        key = derive_correlation_key(payload, correlation_key)
        encoded = json.dumps(payload, ensure_ascii=False)

        with self._connect() as conn:
            for _ in range(_ID_ATTEMPTS):
                now = self._clock()
                task_id = self._id_factory(now)
                try:
                    conn.execute(
                        "INSERT INTO tasks(id, kind, status, payload, correlation_key, created_at, updated_at) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?)",
                        (task_id, kind, TaskStatus.PENDING.value, encoded, key, now, now),
                    )
                except sqlite3.IntegrityError:
                    continue
                break
            else:
                raise RuntimeError("Could not allocate a unique task id")
            conn.commit()
            task = self._fetch(conn, task_id)

        if task is None:
            raise TaskNotFoundError(task_id)
        logger.info("Task created: %s kind=%s correlation=%s", task.id, kind, key or "-")
        self._events.publish([TaskEvent("created", task.snapshot())])
        return task

    def update_task(
        self,
        task_id: str,
        *,
        status: TaskStatus | None = None,
        result: Any = UNSET,
        error: Any = UNSET,
        error_kind: Any = UNSET,
    ) -> Task:
        with self._connect() as conn:
            current = self._fetch(conn, task_id)
            if current is None:
                raise TaskNotFoundError(task_id)

            previous = current.status
            target = TaskStatus(status) if status is not None else previous
            # a terminal task is frozen, even for field-only updates
            if status is not None or previous.is_terminal:
                check_transition(task_id, previous, target)

            now = self._clock()
            assignments: dict[str, Any] = {"status": target.value, "updated_at": now}
            if result is not UNSET:
                assignments["result"] = _dumps(result)
            if error is not UNSET:
                assignments["error"] = error
            if error_kind is not UNSET:
                assignments["error_kind"] = error_kind
            if target.is_terminal and current.completed_at is None:
                assignments["completed_at"] = now

            sets = ", ".join(f"{col} = ?" for col in assignments)
            cur = conn.execute(
                f"UPDATE tasks SET {sets} WHERE id = ? AND status = ?",
                (*assignments.values(), task_id, previous.value),
            )
            if cur.rowcount != 1:
                # lost a race with another writer; report it as that writer left it
                conn.rollback()
                raced = self._fetch(conn, task_id)
                if raced is None:
                    raise TaskNotFoundError(task_id)
                check_transition(task_id, raced.status, target)
                raise RuntimeError(f"Concurrent update of task {task_id}")
            conn.commit()
            task = self._fetch(conn, task_id)

        if task is None:
            raise TaskNotFoundError(task_id)
        if status is not None:
            logger.info("Task %s -> %s", task_id, task.status.value)
        self._events.publish([TaskEvent("updated", task.snapshot(), previous)])
        return task

    def delete_terminal_before(self, cutoff: float) -> int:
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM tasks WHERE status IN (?, ?) AND completed_at IS NOT NULL AND completed_at < ?",
                (TaskStatus.COMPLETED.value, TaskStatus.FAILED.value, float(cutoff)),
            )
            conn.commit()
            removed = int(cur.rowcount)

        if removed:
            logger.info("Cleaned up %d completed/failed tasks", removed)
        return removed

    # ---- reads ----

    def get_task(self, task_id: str) -> Task | None:
        with self._connect() as conn:
            return self._fetch(conn, task_id)

    def count_tasks(self) -> int:
        with self._connect() as conn:
            (n,) = conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
        return int(n)

    def all_tasks(self) -> list[Task]:
        return self._select()

    def by_status(self, status: TaskStatus) -> list[Task]:
        return self._select("WHERE status = ?", (TaskStatus(status).value,))

    def by_correlation(self, correlation_key: str) -> list[Task]:
        return self._select("WHERE correlation_key = ?", (correlation_key,), newest_first=True)

    def latest_by_correlation(self, correlation_key: str) -> Task | None:
        tasks = self.by_correlation(correlation_key)
        return tasks[0] if tasks else None

    def by_owner(self, wallet: str) -> list[Task]:
        if not wallet:
            return []
        # wallet lives inside the JSON payload; filter in Python
        return [t for t in self._select(newest_first=True) if t.wallet == wallet]
