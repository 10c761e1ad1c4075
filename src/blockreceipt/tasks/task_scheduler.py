# src/blockreceipt/tasks/task_scheduler.py

from __future__ import annotations

"""
Task dispatcher.

A small polling loop that:
- fetches pending tasks,
- rejects tasks nobody can run (no handler registered),
- claims up to `max_concurrent - in_flight` of the rest,
- runs their handlers as asyncio tasks so the loop never waits on I/O,
- records the outcome (completed + result, or failed + error).

Chaining follow-up tasks is not the dispatcher's business; see saga/workflow.py.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from ..core.ports import TaskRepo
from ..errors import (
    ConfigurationError,
    InfrastructureError,
    InvalidTransitionError,
    PipelineError,
    TaskNotFoundError,
    TaskTimeoutError,
)
from .task_models import Task, TaskStatus
from .task_registry import HandlerRegistry, TaskHandler

logger = logging.getLogger(__name__)


class Dispatcher:
    def __init__(
            self,
            task_store: TaskRepo,
            registry: HandlerRegistry,
            *,
            max_concurrent: int = 3,
            interval_seconds: float = 1.0,
            task_timeout_seconds: float | None = 120.0,
    ) -> None:
        self._store = task_store
        self._registry = registry
        self.max_concurrent = max(1, int(max_concurrent))
        self.interval_seconds = float(interval_seconds)
        self.task_timeout_seconds = (
            float(task_timeout_seconds) if task_timeout_seconds and task_timeout_seconds > 0 else None
        )
        self._in_flight = 0
        # job -> id of the task it claimed
        self._running: dict[asyncio.Task[None], str] = {}
        self._completed = 0
        self._failed = 0

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def stats(self) -> dict[str, Any]:
        return {
            "in_flight": self._in_flight,
            "max_concurrent": self.max_concurrent,
            "completed": self._completed,
            "failed": self._failed,
            "handlers": self._registry.kinds(),
        }

    async def tick(self) -> list[str]:
        """
        One admission pass. Returns ids of the tasks started in this pass.

        Tasks without a handler are failed right away and do not take a slot.
        """
        free = self.max_concurrent - self._in_flight
        if free <= 0:
            return []

        try:
            pending = self._store.by_status(TaskStatus.PENDING)
        except Exception:
            logger.exception("by_status(pending) failed")
            return []

        admitted: list[str] = []
        for task in pending:
            if len(admitted) >= free:
                break

            handler = self._registry.get(task.kind)
            if handler is None:
                self._reject(task)
                continue

            # Claim; losing the race (or a vanished task) just means someone else owns it.
            try:
                claimed = self._store.update_task(task.id, status=TaskStatus.PROCESSING)
            except (InvalidTransitionError, TaskNotFoundError):
                logger.debug("Task %s no longer claimable", task.id)
                continue

            self._in_flight += 1
            job = asyncio.create_task(self._execute(claimed, handler), name=f"task:{task.id}")
            self._running[job] = claimed.id
            job.add_done_callback(self._job_done)
            admitted.append(task.id)
            logger.debug("Admitted task %s kind=%s in_flight=%d", task.id, task.kind, self._in_flight)

        return admitted

    async def drain(self) -> None:
        """Wait for every in-flight handler to settle."""
        while self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel in-flight handlers; their tasks end failed."""
        for job in list(self._running):
            job.cancel()
        await self.drain()

    def _reject(self, task: Task) -> None:
        err = ConfigurationError(f"No handler registered for task type: {task.kind}")
        logger.warning("Task %s rejected: %s", task.id, err)
        self._settle(task.id, status=TaskStatus.FAILED, error=str(err), error_kind=err.error_kind)

    async def _execute(self, task: Task, handler: TaskHandler) -> None:
        try:
            if self.task_timeout_seconds is None:
                result = await handler(task)
            else:
                result = await asyncio.wait_for(handler(task), timeout=self.task_timeout_seconds)
        except asyncio.CancelledError:
            self._settle_cancelled(task.id)
            raise
        except TimeoutError:
            # wait_for cancelled our coroutine, not whatever it already sent out.
            logger.warning(
                "Task %s kind=%s timed out after %ss; external side effects may still land",
                task.id,
                task.kind,
                self.task_timeout_seconds,
            )
            err = TaskTimeoutError(f"Task exceeded timeout of {self.task_timeout_seconds:g}s")
            self._settle(task.id, status=TaskStatus.FAILED, error=str(err), error_kind=err.error_kind)
        except Exception as exc:
            kind = exc.error_kind if isinstance(exc, PipelineError) else "handler"
            logger.info("Task %s kind=%s failed (%s): %s", task.id, task.kind, kind, exc)
            self._settle(
                task.id,
                status=TaskStatus.FAILED,
                error=str(exc) or exc.__class__.__name__,
                error_kind=kind,
            )
        else:
            self._settle(task.id, status=TaskStatus.COMPLETED, result=result)

    def _job_done(self, job: asyncio.Task[None]) -> None:
        # Also runs for jobs cancelled before _execute took its first step.
        task_id = self._running.pop(job, None)
        self._in_flight -= 1
        if task_id is None or not job.cancelled():
            return
        try:
            current = self._store.get_task(task_id)
        except Exception:
            logger.exception("Could not re-read cancelled task_id=%s", task_id)
            return
        if current is not None and current.status == TaskStatus.PROCESSING:
            self._settle_cancelled(task_id)

    def _settle_cancelled(self, task_id: str) -> None:
        self._settle(
            task_id,
            status=TaskStatus.FAILED,
            error="Dispatcher stopped before the task finished",
            error_kind="cancelled",
        )

    def _settle(self, task_id: str, *, status: TaskStatus, **fields: Any) -> None:
        try:
            self._store.update_task(task_id, status=status, **fields)
        except Exception as exc:
            logger.exception("Failed to record outcome task_id=%s status=%s", task_id, status.value)
            if status != TaskStatus.COMPLETED:
                return
            # An unstorable result still has to end the task.
            err = InfrastructureError(f"result could not be stored: {exc}")
            try:
                self._store.update_task(
                    task_id, status=TaskStatus.FAILED, error=str(err), error_kind=err.error_kind
                )
            except Exception:
                logger.exception("Failed to record failure task_id=%s", task_id)
                return
            status = TaskStatus.FAILED
        if status == TaskStatus.COMPLETED:
            self._completed += 1
        else:
            self._failed += 1


async def run_dispatcher(
        dispatcher: Dispatcher,
        *,
        stop_event: asyncio.Event | None = None,
        sweep: Callable[[], Any] | None = None,
        sweep_interval_seconds: float = 0.0,
) -> None:
    """
    Recurring admission loop.

    Every dispatcher.interval_seconds:
    - run one tick (admission pass)
    - run the retention sweep when it is due (sweep_interval_seconds > 0)

    Stops when stop_event is set (in-flight handlers are drained first) or when
    the coroutine is cancelled.
    """
    sleep_s = max(0.01, dispatcher.interval_seconds)
    loop = asyncio.get_running_loop()
    next_sweep = loop.time() + sweep_interval_seconds if sweep and sweep_interval_seconds > 0 else None

    logger.info(
        "Dispatcher started max_concurrent=%d interval=%.2fs timeout=%s",
        dispatcher.max_concurrent,
        sleep_s,
        dispatcher.task_timeout_seconds,
    )

    while stop_event is None or not stop_event.is_set():
        try:
            await dispatcher.tick()
        except Exception:
            logger.exception("dispatcher tick failed")

        if next_sweep is not None and sweep is not None and loop.time() >= next_sweep:
            try:
                sweep()
            except Exception:
                logger.exception("retention sweep failed")
            next_sweep = loop.time() + sweep_interval_seconds

        if stop_event is None:
            await asyncio.sleep(sleep_s)
        else:
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=sleep_s)
            except TimeoutError:
                pass

    await dispatcher.drain()
    logger.info("Dispatcher stopped")
