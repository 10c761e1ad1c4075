# src/blockreceipt/tasks/task_api.py

"""
Read-side helpers for pollers plus a couple of write conveniences.

Pollers either hold a task id (get_status) or only the receipt id
(get_latest_for_subject); both see the same projection.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from ..core.ports import TaskRepo
from .task_models import Task, TaskKind, TaskStatus, parse_kind

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class NftSummary:
    token_id: str | None
    name: str | None
    image_url: str | None
    contract_address: str | None
    marketplace: str | None
    tx_hash: str | None

    @classmethod
    def from_result(cls, result: Mapping[str, Any]) -> NftSummary:
        def s(key: str) -> str | None:
            v = result.get(key)
            return None if v is None else str(v)

        return cls(
            token_id=s("token_id"),
            name=s("name"),
            image_url=s("image_url"),
            contract_address=s("contract_address"),
            marketplace=s("marketplace"),
            tx_hash=s("tx_hash"),
        )

    def to_dict(self) -> dict[str, str | None]:
        return {
            "token_id": self.token_id,
            "name": self.name,
            "image_url": self.image_url,
            "contract_address": self.contract_address,
            "marketplace": self.marketplace,
            "tx_hash": self.tx_hash,
        }


@dataclass(slots=True, frozen=True)
class TaskStatusView:
    id: str
    status: TaskStatus
    kind: str
    correlation_key: str
    result: Any
    error: str | None
    error_kind: str | None
    created_at: float
    updated_at: float
    completed_at: float | None
    nft: NftSummary | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "status": self.status.value,
            "type": self.kind,
            "correlation_key": self.correlation_key,
            "result": self.result,
            "error": self.error,
            "error_kind": self.error_kind,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "completed_at": _iso(self.completed_at),
        }
        if self.nft is not None:
            out["nft"] = self.nft.to_dict()
        return out


def _iso(ts: float | None) -> str | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=UTC).isoformat()


def project(task: Task) -> TaskStatusView:
    """Task -> poller view. The NFT summary only exists for completed acquisitions."""
    nft = None
    kind = parse_kind(task.kind)
    if (
        task.status == TaskStatus.COMPLETED
        and kind is not None
        and kind.is_acquisition
        and isinstance(task.result, Mapping)
    ):
        nft = NftSummary.from_result(task.result)

    return TaskStatusView(
        id=task.id,
        status=task.status,
        kind=task.kind,
        correlation_key=task.correlation_key,
        result=task.result if task.status == TaskStatus.COMPLETED else None,
        error=task.error if task.status == TaskStatus.FAILED else None,
        error_kind=task.error_kind if task.status == TaskStatus.FAILED else None,
        created_at=task.created_at,
        updated_at=task.updated_at,
        completed_at=task.completed_at,
        nft=nft,
    )


def get_status(task_store: TaskRepo, task_id: str) -> TaskStatusView | None:
    task = task_store.get_task(task_id)
    return project(task) if task else None


def get_latest_for_subject(task_store: TaskRepo, correlation_key: str) -> Task | None:
    """Most recently created task for a receipt (or any other correlation key)."""
    if not correlation_key:
        return None
    return task_store.latest_by_correlation(correlation_key)


def poll_response(view: TaskStatusView | None) -> dict[str, Any]:
    """
    Shape handed to HTTP pollers.

    A failed saga is an expected business outcome: it is rendered as a normal,
    finished response (completed=False, failed=True), never as a server error.
    """
    if view is None:
        return {"found": False, "completed": False, "failed": False, "error": None}

    return {
        "found": True,
        "task_id": view.id,
        "type": view.kind,
        "status": view.status.value,
        "completed": view.status == TaskStatus.COMPLETED,
        "failed": view.status == TaskStatus.FAILED,
        "error": view.error,
        "nft": view.nft.to_dict() if view.nft else None,
    }


def cleanup(task_store: TaskRepo, cutoff: float) -> int:
    """Delete completed/failed tasks that finished before `cutoff` (epoch seconds)."""
    return task_store.delete_terminal_before(cutoff)


def cleanup_older_than(
    task_store: TaskRepo,
    max_age_seconds: float,
    *,
    now: float | None = None,
) -> int:
    if now is None:
        now = time.time()
    return cleanup(task_store, now - max(0.0, float(max_age_seconds)))


def submit_receipt(
    task_store: TaskRepo,
    *,
    receipt_id: str,
    wallet: str,
    receipt: Mapping[str, Any] | None = None,
    total: float | None = None,
    encryption: Mapping[str, Any] | None = None,
    allow_fallback: bool = True,
) -> Task:
    """
    Convenience helper: start the receipt -> NFT saga with an acquire task.

    Re-submitting the same receipt starts a second saga; there is no
    deduplication by receipt id.
    """
    if not receipt_id:
        raise ValueError("receipt_id is required")
    if not wallet:
        raise ValueError("wallet is required")

    payload: dict[str, Any] = {"receipt_id": receipt_id, "wallet": wallet}
    if total is not None:
        payload["total"] = float(total)
    if receipt:
        payload["receipt"] = dict(receipt)
    if encryption:
        payload["encryption"] = dict(encryption)
    if not allow_fallback:
        payload["allow_fallback"] = False

    task = task_store.create_task(TaskKind.ACQUIRE, payload, correlation_key=receipt_id)
    logger.info("Receipt %s submitted for wallet %s (task %s)", receipt_id, wallet, task.id)
    return task
