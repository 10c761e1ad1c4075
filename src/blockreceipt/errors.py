# src/blockreceipt/errors.py

"""
Error taxonomy for the task engine.

Handler-side errors carry an `error_kind` tag. The dispatcher copies the tag onto
the failed task so operators can tell "bad input" from "dependency unavailable"
without parsing messages. Store/registry misuse raises to the caller instead.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all errors raised by the task engine."""

    error_kind: str = "handler"


class ConfigurationError(PipelineError):
    """No handler is registered for a task kind."""

    error_kind = "configuration"


class StrategyFailure(PipelineError):
    """An acquisition/fallback strategy reported success=False."""

    error_kind = "strategy"


class ValidationError(PipelineError):
    """A task payload is missing required fields."""

    error_kind = "validation"

    def __init__(self, message: str, *, missing: list[str] | None = None) -> None:
        super().__init__(message)
        self.missing = list(missing or [])


class InfrastructureError(PipelineError):
    """An external dependency (metadata store, ...) failed or is unavailable."""

    error_kind = "infrastructure"


class TaskTimeoutError(PipelineError):
    error_kind = "timeout"


class DuplicateHandlerError(PipelineError):
    """register() was called for a kind that already has a handler."""

    error_kind = "configuration"


class TaskNotFoundError(PipelineError, KeyError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id

    def __str__(self) -> str:
        return str(self.args[0])


class InvalidTransitionError(PipelineError):
    def __init__(self, task_id: str, current: str, requested: str) -> None:
        super().__init__(f"Illegal transition for task {task_id}: {current} -> {requested}")
        self.task_id = task_id
        self.current = current
        self.requested = requested
