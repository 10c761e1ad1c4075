# tests/fakes.py

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from blockreceipt.tasks.task_models import StrategyOutcome, Task


class FakeClock:
    """
    Manually driven clock for the stores.

    Each call advances by `step` so consecutive creations get distinct,
    increasing timestamps.
    """

    def __init__(self, start: float = 1_700_000_000.0, step: float = 1.0) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> float:
        self.now += self.step
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedStrategy:
    """
    Acquisition/fallback strategy returning pre-scripted outcomes in order.

    - Captures payloads for assertions
    - Repeats the last outcome once the script runs out
    """

    def __init__(self, *outcomes: StrategyOutcome | Mapping[str, Any] | Exception) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[dict[str, Any]] = []

    async def attempt(self, payload: Mapping[str, Any]) -> StrategyOutcome | Mapping[str, Any]:
        self.calls.append(dict(payload))
        idx = min(len(self.calls), len(self.outcomes)) - 1
        outcome = self.outcomes[idx]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@dataclass(slots=True)
class StoreCall:
    token_id: str
    owner_key: str
    bundle: str
    preview: dict[str, Any]


@dataclass(slots=True)
class FakeMetadataStore:
    """Metadata store double: records calls, answers `answer` or raises `error`."""

    answer: bool = True
    error: Exception | None = None
    calls: list[StoreCall] = field(default_factory=list)

    async def store(
        self,
        token_id: str,
        owner_key: str,
        bundle: str,
        preview: Mapping[str, Any],
    ) -> bool:
        self.calls.append(StoreCall(token_id, owner_key, bundle, dict(preview)))
        if self.error is not None:
            raise self.error
        return self.answer


class BlockingHandler:
    """
    Task handler that parks until released.

    Used to pin dispatcher slots and observe the concurrency ceiling.
    """

    def __init__(self) -> None:
        self.started: list[str] = []
        self._gates: dict[str, asyncio.Event] = {}

    async def __call__(self, task: Task) -> dict[str, Any]:
        gate = asyncio.Event()
        self._gates[task.id] = gate
        self.started.append(task.id)
        await gate.wait()
        return {"released": task.id}

    def release(self, task_id: str) -> None:
        self._gates[task_id].set()

    def release_all(self) -> None:
        for gate in self._gates.values():
            gate.set()


async def wait_until(predicate: Callable[[], bool], *, timeout: float = 2.0) -> None:
    """Yield to the loop until predicate() is true (fails the test on timeout)."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.001)
