# src/blockreceipt/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..saga.workflow import WorkflowController
from ..tasks.task_registry import HandlerRegistry
from ..tasks.task_scheduler import Dispatcher
from .ports import AcquisitionStrategy, MetadataStore, TaskRepo


@dataclass
class AppState:
    # Store Settings on the state for easy access in other modules later.
    settings: Any

    task_store: TaskRepo
    registry: HandlerRegistry
    dispatcher: Dispatcher
    workflow: WorkflowController

    acquisition: AcquisitionStrategy
    fallback: AcquisitionStrategy
    metadata_store: MetadataStore
