# src/blockreceipt/saga/handlers.py

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

from ..core.ports import AcquisitionStrategy, MetadataStore
from ..errors import InfrastructureError, StrategyFailure, ValidationError
from ..tasks.task_models import StrategyOutcome, Task, TaskKind
from ..tasks.task_registry import HandlerRegistry, TaskHandler

logger = logging.getLogger(__name__)

ACQUIRE_FAILED_MESSAGE = "NFT marketplace purchase failed"
FALLBACK_FAILED_MESSAGE = "Fallback NFT minting failed"

_REQUIRED_BUNDLE_FIELDS = ("ciphertext", "capsule_id", "policy_id")


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=UTC).isoformat()


def _short(value: str, n: int = 15) -> str:
    return value if len(value) <= n else value[:n] + "..."


def _normalize(raw: StrategyOutcome | Mapping[str, Any] | None) -> StrategyOutcome:
    if isinstance(raw, StrategyOutcome):
        return raw
    if isinstance(raw, Mapping):
        return StrategyOutcome.from_mapping(raw)
    return StrategyOutcome(success=False, error="Strategy returned no result")


def _strategy_handler(strategy: AcquisitionStrategy, *, label: str, default_error: str) -> TaskHandler:
    async def handler(task: Task) -> dict[str, Any]:
        logger.info(
            "Processing %s task %s receipt=%s wallet=%s",
            label,
            task.id,
            task.correlation_key or "-",
            task.wallet or "-",
        )
        outcome = _normalize(await strategy.attempt(task.payload))
        if not outcome.success:
            raise StrategyFailure(outcome.error or default_error)
        return outcome.to_dict()

    return handler


def make_acquire_handler(strategy: AcquisitionStrategy) -> TaskHandler:
    """Primary strategy: buy a listed NFT and transfer it to the receipt owner."""
    return _strategy_handler(strategy, label="acquire", default_error=ACQUIRE_FAILED_MESSAGE)


def make_fallback_handler(strategy: AcquisitionStrategy) -> TaskHandler:
    """Secondary strategy: mint from our own collection."""
    return _strategy_handler(strategy, label="fallback-mint", default_error=FALLBACK_FAILED_MESSAGE)


def missing_finalize_fields(payload: Mapping[str, Any]) -> list[str]:
    bundle = payload.get("encryption")
    bundle = bundle if isinstance(bundle, Mapping) else {}
    missing = [f"encryption.{name}" for name in _REQUIRED_BUNDLE_FIELDS if not bundle.get(name)]
    if not payload.get("token_id"):
        missing.append("token_id")
    return missing


def make_finalize_handler(
    metadata_store: MetadataStore,
    *,
    clock: Callable[[], float] = time.time,
) -> TaskHandler:
    """
    Bind the encrypted receipt bundle to the now-known token id.

    The payload must carry encryption.{ciphertext, capsule_id, policy_id} and
    token_id; anything missing fails the task before the store is touched.
    The store receives a JSON persistence bundle plus a preview that holds no
    ciphertext material.
    """

    async def handler(task: Task) -> dict[str, Any]:
        payload = task.payload
        missing = missing_finalize_fields(payload)
        if missing:
            raise ValidationError(
                f"Invalid encryption metadata (missing {', '.join(missing)})",
                missing=missing,
            )

        bundle = payload["encryption"]
        token_id = str(payload["token_id"])
        owner = str(payload.get("wallet") or "")
        receipt_id = payload.get("receipt_id") or task.correlation_key
        now = clock()

        persisted = json.dumps(
            {
                "policy_public_key": bundle["policy_id"],
                "capsule": bundle["capsule_id"],
                "ciphertext": bundle["ciphertext"],
                "token_id": token_id,
                "receipt_id": receipt_id,
                "encrypted_at": _iso(now),
            },
            ensure_ascii=False,
        )
        preview = {
            "receipt_id": receipt_id,
            "token_id": token_id,
            "wallet": owner,
            "timestamp": _iso(now),
            "status": "encrypted",
        }

        try:
            stored = await metadata_store.store(token_id, owner, persisted, preview)
        except Exception as exc:
            raise InfrastructureError(f"Metadata store unavailable: {exc}") from exc

        if not stored:
            raise InfrastructureError("Failed to store encrypted metadata")

        logger.info(
            "Stored encrypted metadata receipt=%s token=%s policy=%s capsule=%s",
            receipt_id,
            token_id,
            _short(str(bundle["policy_id"])),
            _short(str(bundle["capsule_id"])),
        )
        return {"token_id": token_id, "status": "stored"}

    return handler


def register_saga_handlers(
    registry: HandlerRegistry,
    *,
    acquisition: AcquisitionStrategy,
    fallback: AcquisitionStrategy,
    metadata_store: MetadataStore,
) -> None:
    registry.register(TaskKind.ACQUIRE, make_acquire_handler(acquisition))
    registry.register(TaskKind.FALLBACK_MINT, make_fallback_handler(fallback))
    registry.register(TaskKind.FINALIZE_METADATA, make_finalize_handler(metadata_store))
