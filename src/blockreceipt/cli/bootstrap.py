# src/blockreceipt/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- picks the task store backend,
- wires collaborators (HTTP when URLs are configured, offline otherwise),
- registers the saga handlers and attaches the workflow controller.
"""

from __future__ import annotations

import logging

from ..config import Settings, get_settings
from ..core.ports import AcquisitionStrategy, MetadataStore, TaskRepo
from ..core.state import AppState
from ..saga.handlers import register_saga_handlers
from ..saga.http_collaborators import HttpAcquisitionStrategy, HttpMetadataStore, make_timeout
from ..saga.offline import InMemoryMetadataStore, OfflineMarketplace, OfflineMinter
from ..saga.workflow import WorkflowController
from ..tasks.task_registry import HandlerRegistry
from ..tasks.task_scheduler import Dispatcher
from ..tasks.task_store import InMemoryTaskStore
from ..tasks.task_store_sqlite import SqliteTaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings: Settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    if settings.task_backend == "sqlite":
        settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)


def build_task_store(settings: Settings) -> TaskRepo:
    if settings.task_backend == "sqlite":
        return SqliteTaskStore(settings.tasks_db_path)
    return InMemoryTaskStore()


def build_collaborators(
    settings: Settings,
) -> tuple[AcquisitionStrategy, AcquisitionStrategy, MetadataStore]:
    timeout = make_timeout(settings.http_connect_timeout_seconds, settings.http_read_timeout_seconds)

    acquisition: AcquisitionStrategy
    if settings.marketplace_url:
        acquisition = HttpAcquisitionStrategy(settings.marketplace_url, path="/purchase", timeout=timeout)
    else:
        logger.info("No marketplace URL configured; using offline marketplace.")
        acquisition = OfflineMarketplace()

    fallback: AcquisitionStrategy
    if settings.minter_url:
        fallback = HttpAcquisitionStrategy(settings.minter_url, path="/mint", timeout=timeout)
    else:
        logger.info("No minter URL configured; using offline minter.")
        fallback = OfflineMinter()

    metadata_store: MetadataStore
    if settings.metadata_url:
        metadata_store = HttpMetadataStore(settings.metadata_url, timeout=timeout)
    else:
        logger.info("No metadata URL configured; keeping metadata in memory.")
        metadata_store = InMemoryMetadataStore()

    return acquisition, fallback, metadata_store


def create_initial_state(
    *,
    settings: Settings | None = None,
    task_store: TaskRepo | None = None,
    acquisition: AcquisitionStrategy | None = None,
    fallback: AcquisitionStrategy | None = None,
    metadata_store: MetadataStore | None = None,
) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings and collaborators injectable makes the app easier to test
    and avoids hidden global config reads. If settings is None, falls back to
    get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    store = task_store if task_store is not None else build_task_store(settings)

    default_acq, default_fb, default_meta = build_collaborators(settings)
    acquisition = acquisition or default_acq
    fallback = fallback or default_fb
    metadata_store = metadata_store or default_meta

    registry = HandlerRegistry()
    register_saga_handlers(
        registry,
        acquisition=acquisition,
        fallback=fallback,
        metadata_store=metadata_store,
    )

    workflow = WorkflowController(store)
    workflow.attach()

    dispatcher = Dispatcher(
        store,
        registry,
        max_concurrent=settings.max_concurrent,
        interval_seconds=settings.tick_interval_seconds,
        task_timeout_seconds=settings.task_timeout_seconds,
    )

    return AppState(
        settings=settings,
        task_store=store,
        registry=registry,
        dispatcher=dispatcher,
        workflow=workflow,
        acquisition=acquisition,
        fallback=fallback,
        metadata_store=metadata_store,
    )
