# src/blockreceipt/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The engine depends on Protocols instead of concrete implementations.
This keeps storage and the external collaborators (marketplace, minter,
metadata store) swappable and makes testing easier.
"""

from collections.abc import Callable, Mapping
from typing import Any, Awaitable, Protocol

from ..tasks.task_models import StrategyOutcome, Task, TaskEvent, TaskStatus


class TaskRepo(Protocol):
    """Task storage contract shared by InMemoryTaskStore and SqliteTaskStore."""

    def subscribe(self, listener: Callable[[TaskEvent], None]) -> Callable[[], None]: ...

    def create_task(
            self,
            kind: str,
            payload: dict[str, Any] | None = None,
            correlation_key: str | None = None,
    ) -> Task: ...

    def update_task(
            self,
            task_id: str,
            *,
            status: TaskStatus | None = None,
            result: Any = ...,
            error: Any = ...,
            error_kind: Any = ...,
    ) -> Task: ...

    def get_task(self, task_id: str) -> Task | None: ...
    def count_tasks(self) -> int: ...
    def all_tasks(self) -> list[Task]: ...
    def by_status(self, status: TaskStatus) -> list[Task]: ...
    def by_correlation(self, correlation_key: str) -> list[Task]: ...
    def latest_by_correlation(self, correlation_key: str) -> Task | None: ...
    def by_owner(self, wallet: str) -> list[Task]: ...
    def delete_terminal_before(self, cutoff: float) -> int: ...
    def close(self) -> None: ...


class AcquisitionStrategy(Protocol):
    """
    Gets an NFT to the owner named in the payload.

    Used for both the primary marketplace purchase and the fallback mint.
    May answer with a StrategyOutcome or a plain mapping of the same fields
    (success, tokenId/token_id, contractAddress, name, imageUrl, marketplace,
    txHash, error).
    """

    def attempt(self, payload: Mapping[str, Any]) -> Awaitable[StrategyOutcome | Mapping[str, Any]]: ...


class MetadataStore(Protocol):
    """Persists the encrypted receipt bundle next to a minted token."""

    def store(
            self,
            token_id: str,
            owner_key: str,
            bundle: str,
            preview: Mapping[str, Any],
    ) -> Awaitable[bool]: ...
