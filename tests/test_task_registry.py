# tests/test_task_registry.py

from __future__ import annotations

import pytest

from blockreceipt.errors import DuplicateHandlerError
from blockreceipt.tasks.task_models import Task, TaskKind
from blockreceipt.tasks.task_registry import HandlerRegistry


async def _first(task: Task) -> str:
    return "first"


async def _second(task: Task) -> str:
    return "second"


def test_register_and_lookup_by_enum_or_string() -> None:
    registry = HandlerRegistry()
    registry.register(TaskKind.ACQUIRE, _first)

    assert registry.get("acquire") is _first
    assert registry.get(TaskKind.ACQUIRE) is _first
    assert "acquire" in registry
    assert registry.get("fallback-mint") is None
    assert len(registry) == 1


def test_duplicate_register_is_refused() -> None:
    registry = HandlerRegistry()
    registry.register("acquire", _first)

    with pytest.raises(DuplicateHandlerError):
        registry.register("acquire", _second)

    assert registry.get("acquire") is _first


def test_replace_swaps_and_returns_previous() -> None:
    registry = HandlerRegistry()
    assert registry.replace("acquire", _first) is None
    assert registry.replace("acquire", _second) is _first
    assert registry.get("acquire") is _second


def test_unregister_and_kinds() -> None:
    registry = HandlerRegistry()
    registry.register("finalize-metadata", _first)
    registry.register("acquire", _second)

    assert registry.kinds() == ["acquire", "finalize-metadata"]

    registry.unregister("acquire")
    registry.unregister("never-registered")

    assert registry.kinds() == ["finalize-metadata"]
    assert "acquire" not in registry
