# src/blockreceipt/saga/workflow.py

"""
Receipt -> NFT saga chaining.

The controller listens to store notifications. When a task reaches a terminal
status it looks up (kind, outcome) in a rule table and creates the follow-up
tasks the matching rules ask for. It only ever creates tasks; the dispatcher
owns every status change.

Default table:

    acquire        failed    -> fallback-mint      (payload is fallback-eligible)
    acquire        succeeded -> finalize-metadata  (payload carries an encryption bundle)
    fallback-mint  succeeded -> finalize-metadata  (payload carries an encryption bundle)

Nothing follows a failed fallback-mint or any finalize-metadata task, so a
receipt produces at most three tasks.
"""

from __future__ import annotations

import copy
import logging
import threading
from collections import OrderedDict
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from ..core.ports import TaskRepo
from ..tasks.task_models import Task, TaskEvent, TaskKind, TaskStatus, parse_kind

logger = logging.getLogger(__name__)

# How many originating task ids to remember for once-only firing.
_FIRED_MEMORY = 10_000


class Outcome(StrEnum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @classmethod
    def of(cls, task: Task) -> Outcome:
        return cls.SUCCEEDED if task.status == TaskStatus.COMPLETED else cls.FAILED


PayloadBuilder = Callable[[Task], "dict[str, Any] | None"]


@dataclass(frozen=True, slots=True)
class SpawnRule:
    """Spawn one `spawn` task; `build_payload` returns None to decline."""

    spawn: TaskKind
    build_payload: PayloadBuilder


RuleTable = Mapping[tuple[TaskKind, Outcome], tuple[SpawnRule, ...]]


_NO_FALLBACK_KINDS = frozenset({"configuration", "cancelled"})


def is_fallback_eligible(task: Task) -> bool:
    # no handler, or the dispatcher was stopped
    if task.error_kind in _NO_FALLBACK_KINDS:
        return False
    payload = task.payload or {}
    if payload.get("allow_fallback") is False:
        return False
    return bool(payload.get("wallet"))


def fallback_payload(task: Task) -> dict[str, Any] | None:
    if not is_fallback_eligible(task):
        return None
    return copy.deepcopy(task.payload)


def finalize_payload(task: Task) -> dict[str, Any] | None:
    payload = task.payload or {}
    bundle = payload.get("encryption")
    if not bundle:
        return None

    result = task.result if isinstance(task.result, Mapping) else {}
    return {
        "encryption": copy.deepcopy(bundle),
        "token_id": result.get("token_id"),
        "wallet": payload.get("wallet"),
        "receipt_id": payload.get("receipt_id") or task.correlation_key,
    }


DEFAULT_RULES: RuleTable = {
    (TaskKind.ACQUIRE, Outcome.FAILED): (SpawnRule(TaskKind.FALLBACK_MINT, fallback_payload),),
    (TaskKind.ACQUIRE, Outcome.SUCCEEDED): (SpawnRule(TaskKind.FINALIZE_METADATA, finalize_payload),),
    (TaskKind.FALLBACK_MINT, Outcome.SUCCEEDED): (
        SpawnRule(TaskKind.FINALIZE_METADATA, finalize_payload),
    ),
}


class WorkflowController:
    def __init__(self, task_store: TaskRepo, rules: RuleTable | None = None) -> None:
        self._store = task_store
        self._rules: RuleTable = dict(rules if rules is not None else DEFAULT_RULES)
        self._fired: OrderedDict[str, None] = OrderedDict()
        self._lock = threading.Lock()
        self._unsubscribe: Callable[[], None] | None = None

    def attach(self) -> None:
        """Start reacting to store notifications (idempotent)."""
        if self._unsubscribe is None:
            self._unsubscribe = self._store.subscribe(self.on_event)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def on_event(self, event: TaskEvent) -> None:
        if event.became_terminal:
            self.handle_terminal(event.task)

    def handle_terminal(self, task: Task) -> list[Task]:
        """Apply the rule table to a finished task. Returns the tasks created."""
        if not task.status.is_terminal:
            return []

        with self._lock:
            if task.id in self._fired:
                logger.debug("Rules already applied for task %s", task.id)
                return []
            self._fired[task.id] = None
            while len(self._fired) > _FIRED_MEMORY:
                self._fired.popitem(last=False)

        kind = parse_kind(task.kind)
        if kind is None:
            return []

        outcome = Outcome.of(task)
        spawned: list[Task] = []
        for rule in self._rules.get((kind, outcome), ()):
            payload = rule.build_payload(task)
            if payload is None:
                continue
            child = self._store.create_task(rule.spawn, payload, correlation_key=task.correlation_key)
            spawned.append(child)
            logger.info(
                "Saga %s: %s %s -> spawned %s (%s)",
                task.correlation_key or "-",
                kind.value,
                outcome.value,
                rule.spawn.value,
                child.id,
            )

        if not spawned:
            logger.info(
                "Saga %s: %s %s -> no follow-up",
                task.correlation_key or "-",
                kind.value,
                outcome.value,
            )
        return spawned
