# src/blockreceipt/tasks/task_registry.py

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from ..errors import DuplicateHandlerError
from .task_models import Task

TaskHandler = Callable[[Task], Awaitable[Any]]

logger = logging.getLogger(__name__)


class HandlerRegistry:
    """
    Task kind -> async handler.

    One handler per kind. register() refuses to overwrite an existing handler;
    use replace() when swapping is intended.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, TaskHandler] = {}

    def register(self, kind: str, handler: TaskHandler) -> None:
        key = str(kind)
        if key in self._handlers:
            raise DuplicateHandlerError(f"Handler already registered for task type: {key}")
        self._handlers[key] = handler
        logger.info("Registered handler for task type: %s", key)

    def replace(self, kind: str, handler: TaskHandler) -> TaskHandler | None:
        key = str(kind)
        previous = self._handlers.get(key)
        self._handlers[key] = handler
        logger.info("Replaced handler for task type: %s (had_previous=%s)", key, previous is not None)
        return previous

    def unregister(self, kind: str) -> None:
        self._handlers.pop(str(kind), None)

    def get(self, kind: str) -> TaskHandler | None:
        return self._handlers.get(str(kind))

    def kinds(self) -> list[str]:
        return sorted(self._handlers)

    def __contains__(self, kind: object) -> bool:
        return str(kind) in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)
