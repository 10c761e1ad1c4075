# src/blockreceipt/tasks/task_models.py

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass, replace
from enum import StrEnum
from typing import Any

from ..errors import InvalidTransitionError


class TaskStatus(StrEnum):
    """
    Task lifecycle status.

    Allowed transitions:
    - pending -> processing
    - pending -> failed (rejected at admission, e.g. no handler registered)
    - processing -> completed | failed

    completed/failed are terminal.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.PENDING
        try:
            return cls(raw)
        except ValueError:
            return cls.PENDING


_ALLOWED: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.PROCESSING, TaskStatus.FAILED}),
    TaskStatus.PROCESSING: frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
}


def check_transition(task_id: str, current: TaskStatus, new: TaskStatus) -> None:
    if new not in _ALLOWED[current]:
        raise InvalidTransitionError(task_id, current.value, new.value)


class TaskKind(StrEnum):
    """Task kinds used by the receipt -> NFT saga."""

    ACQUIRE = "acquire"
    FALLBACK_MINT = "fallback-mint"
    FINALIZE_METADATA = "finalize-metadata"

    @property
    def is_acquisition(self) -> bool:
        return self in (TaskKind.ACQUIRE, TaskKind.FALLBACK_MINT)


def parse_kind(raw: str) -> TaskKind | None:
    try:
        return TaskKind(raw)
    except ValueError:
        return None


@dataclass(slots=True)
class Task:
    id: str
    kind: str
    status: TaskStatus
    payload: dict[str, Any]
    correlation_key: str

    created_at: float
    updated_at: float
    completed_at: float | None = None

    result: Any = None
    error: str | None = None
    error_kind: str | None = None

    # insertion order; breaks created_at ties
    seq: int = 0

    @property
    def wallet(self) -> str | None:
        w = self.payload.get("wallet")
        return str(w) if w else None

    def snapshot(self) -> Task:
        """Detached copy: callers never get a reference to stored state."""
        return replace(
            self,
            payload=copy.deepcopy(self.payload),
            result=copy.deepcopy(self.result),
        )


@dataclass(slots=True, frozen=True)
class TaskEvent:
    """Store notification. `event` is "created" or "updated"."""

    event: str
    task: Task
    previous_status: TaskStatus | None = None

    @property
    def became_terminal(self) -> bool:
        if self.event != "updated" or not self.task.status.is_terminal:
            return False
        return self.previous_status is None or not self.previous_status.is_terminal


def _pick(data: Mapping[str, Any], *names: str) -> Any:
    for n in names:
        v = data.get(n)
        if v is not None:
            return v
    return None


def _opt_str(v: Any) -> str | None:
    return None if v is None else str(v)


@dataclass(slots=True, frozen=True)
class StrategyOutcome:
    """
    Result of an acquisition or fallback attempt.

    External services answer in camelCase JSON; both spellings are accepted.
    """

    success: bool
    token_id: str | None = None
    contract_address: str | None = None
    name: str | None = None
    image_url: str | None = None
    marketplace: str | None = None
    tx_hash: str | None = None
    error: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> StrategyOutcome:
        return cls(
            success=bool(data.get("success", False)),
            token_id=_opt_str(_pick(data, "token_id", "tokenId")),
            contract_address=_opt_str(_pick(data, "contract_address", "contractAddress")),
            name=_opt_str(data.get("name")),
            image_url=_opt_str(_pick(data, "image_url", "imageUrl")),
            marketplace=_opt_str(data.get("marketplace")),
            tx_hash=_opt_str(_pick(data, "tx_hash", "txHash", "transactionHash")),
            error=_opt_str(data.get("error")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "token_id": self.token_id,
            "contract_address": self.contract_address,
            "name": self.name,
            "image_url": self.image_url,
            "marketplace": self.marketplace,
            "tx_hash": self.tx_hash,
        }
