# src/blockreceipt/saga/offline.py

from __future__ import annotations

import hashlib
import itertools
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from ..tasks.task_models import StrategyOutcome


class OfflineMarketplace:
    """
    Marketplace stand-in used when no MARKETPLACE_URL is configured.

    Never finds a listing, so every saga exercises the fallback path.
    """

    async def attempt(self, payload: Mapping[str, Any]) -> StrategyOutcome:
        return StrategyOutcome(success=False, error="no listing under budget")


class OfflineMinter:
    """Deterministic fallback minter: sequential token ids, fake tx hashes."""

    def __init__(self, *, contract_address: str = "0x" + "0" * 39 + "1", start: int = 1) -> None:
        self._ids = itertools.count(start)
        self._contract = contract_address

    async def attempt(self, payload: Mapping[str, Any]) -> StrategyOutcome:
        token_id = str(next(self._ids))
        receipt_id = str(payload.get("receipt_id") or "")
        digest = hashlib.sha256(f"{receipt_id}:{token_id}".encode()).hexdigest()
        return StrategyOutcome(
            success=True,
            token_id=token_id,
            contract_address=self._contract,
            name=f"Receipt #{receipt_id or token_id}",
            image_url=None,
            marketplace="offline-mint",
            tx_hash="0x" + digest,
        )


@dataclass(slots=True)
class StoredMetadata:
    token_id: str
    owner_key: str
    bundle: str
    preview: dict[str, Any]


@dataclass(slots=True)
class InMemoryMetadataStore:
    """Keeps stored bundles in a dict keyed by token id."""

    records: dict[str, StoredMetadata] = field(default_factory=dict)

    async def store(
        self,
        token_id: str,
        owner_key: str,
        bundle: str,
        preview: Mapping[str, Any],
    ) -> bool:
        self.records[token_id] = StoredMetadata(token_id, owner_key, bundle, dict(preview))
        return True
