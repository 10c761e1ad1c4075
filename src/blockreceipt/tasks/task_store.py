# src/blockreceipt/tasks/task_store.py

from __future__ import annotations

import copy
import logging
import secrets
import threading
import time
from collections.abc import Callable, Iterable
from typing import Any

from ..errors import TaskNotFoundError
from .task_models import Task, TaskEvent, TaskStatus, check_transition

logger = logging.getLogger(__name__)

TaskListener = Callable[[TaskEvent], None]

# Sentinel for "field not given" in update_task (None is a valid value for result).
UNSET: Any = object()


def generate_task_id(now_ts: float | None = None) -> str:
    if now_ts is None:
        now_ts = time.time()
    return f"task_{int(now_ts * 1000)}_{secrets.token_hex(4)}"


def derive_correlation_key(payload: dict[str, Any], correlation_key: str | None) -> str:
    if correlation_key:
        return str(correlation_key)
    rid = payload.get("receipt_id")
    return str(rid) if rid else ""


class TaskEventHub:
    """
    Minimal observer list for store notifications.

    Listeners run synchronously on the thread that changed the store, after the
    store lock has been released. A failing listener is logged and skipped.
    """

    def __init__(self) -> None:
        self._listeners: list[TaskListener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: TaskListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def publish(self, events: Iterable[TaskEvent]) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for event in events:
            for listener in listeners:
                try:
                    listener(event)
                except Exception:
                    logger.exception(
                        "Task listener failed event=%s task_id=%s", event.event, event.task.id
                    )


class InMemoryTaskStore:
    """
    Process-local task store.

    Every method returns detached copies. Mutations are serialized with a single
    re-entrant lock: the dispatcher loop and the operator console live on
    different threads. Nothing survives a restart (see SqliteTaskStore).
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        id_factory: Callable[[float], str] = generate_task_id,
    ) -> None:
        self._tasks: dict[str, Task] = {}
        self._lock = threading.RLock()
        self._seq = 0
        self._clock = clock
        self._id_factory = id_factory
        self._events = TaskEventHub()
        logger.info("InMemoryTaskStore ready")

    def close(self) -> None:
        """Compatibility hook for shutdown (nothing to release)."""
        return

    def subscribe(self, listener: TaskListener) -> Callable[[], None]:
        return self._events.subscribe(listener)

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

        payload = copy.deepcopy(payload) if payload else {}
        key = derive_correlation_key(payload, correlation_key)

        with self._lock:
            now = self._clock()
            task_id = self._id_factory(now)
            while task_id in self._tasks:
                task_id = self._id_factory(now)

            self._seq += 1
            task = Task(
                id=task_id,
                kind=kind,
                status=TaskStatus.PENDING,
                payload=payload,
                correlation_key=key,
                created_at=now,
                updated_at=now,
                seq=self._seq,
            )
            self._tasks[task_id] = task
            out = task.snapshot()

        logger.info("Task created: %s kind=%s correlation=%s", task_id, kind, key or "-")
        self._events.publish([TaskEvent("created", out.snapshot())])
        return out

    def update_task(
        self,
        task_id: str,
        *,
        status: TaskStatus | None = None,
        result: Any = UNSET,
        error: Any = UNSET,
        error_kind: Any = UNSET,
    ) -> Task:
        """
        Merge fields into a task and stamp updated_at.

        Status changes must follow the lifecycle (see TaskStatus); a terminal task
        cannot be changed at all. completed_at is stamped once, on the first move
        into completed/failed.
        """
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                raise TaskNotFoundError(task_id)

            previous = task.status
            if status is not None:
                check_transition(task_id, previous, TaskStatus(status))
            elif previous.is_terminal:
                # terminal tasks are frozen, even for field-only updates
                check_transition(task_id, previous, previous)

            now = self._clock()
            if status is not None:
                task.status = TaskStatus(status)
            if result is not UNSET:
                task.result = copy.deepcopy(result)
            if error is not UNSET:
                task.error = error
            if error_kind is not UNSET:
                task.error_kind = error_kind
            task.updated_at = now
            if task.status.is_terminal and task.completed_at is None:
                task.completed_at = now

            out = task.snapshot()

        if status is not None:
            logger.info("Task %s -> %s", task_id, out.status.value)
        self._events.publish([TaskEvent("updated", out.snapshot(), previous)])
        return out

    def delete_terminal_before(self, cutoff: float) -> int:
        """Remove completed/failed tasks with completed_at < cutoff. Returns the count."""
        with self._lock:
            doomed = [
                tid
                for tid, t in self._tasks.items()
                if t.status.is_terminal and t.completed_at is not None and t.completed_at < cutoff
            ]
            for tid in doomed:
                del self._tasks[tid]

        if doomed:
            logger.info("Cleaned up %d completed/failed tasks", len(doomed))
        return len(doomed)

    # ---- reads ----

    def get_task(self, task_id: str) -> Task | None:
        with self._lock:
            task = self._tasks.get(task_id)
            return task.snapshot() if task else None

    def count_tasks(self) -> int:
        with self._lock:
            return len(self._tasks)

    def all_tasks(self) -> list[Task]:
        with self._lock:
            return [t.snapshot() for t in sorted(self._tasks.values(), key=_oldest_first)]

    def by_status(self, status: TaskStatus) -> list[Task]:
        """Tasks with the given status, oldest first."""
        with self._lock:
            matching = [t for t in self._tasks.values() if t.status == status]
            return [t.snapshot() for t in sorted(matching, key=_oldest_first)]

    def by_correlation(self, correlation_key: str) -> list[Task]:
        """Tasks sharing a correlation key, newest first."""
        with self._lock:
            matching = [t for t in self._tasks.values() if t.correlation_key == correlation_key]
            return [t.snapshot() for t in sorted(matching, key=_oldest_first, reverse=True)]

    def latest_by_correlation(self, correlation_key: str) -> Task | None:
        tasks = self.by_correlation(correlation_key)
        return tasks[0] if tasks else None

    def by_owner(self, wallet: str) -> list[Task]:
        """Tasks whose payload names this wallet, newest first."""
        if not wallet:
            return []
        with self._lock:
            matching = [t for t in self._tasks.values() if t.wallet == wallet]
            return [t.snapshot() for t in sorted(matching, key=_oldest_first, reverse=True)]


def _oldest_first(task: Task) -> tuple[float, int]:
    return (task.created_at, task.seq)
