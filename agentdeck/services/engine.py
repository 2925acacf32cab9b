from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..config import config
from .backend_registry import BackendRegistry
from .orchestration.run_executor import RunExecutor
from .orchestration.run_service import RunService
from .platform.run_scheduler import RunScheduler
from .ports import ContextLinker, EventEmitter, LoggingEventEmitter, RunReporter
from .session.session_manager import SessionManager
from .session.session_reconciler import SessionReconciler
from .session.session_store import JsonFileSessionStore, SessionStore
from .session.tmux_client import TmuxClient

logger = logging.getLogger(__name__)


@dataclass
class Engine:
    """Composition root: one instance of each service, wired together."""
    registry: BackendRegistry
    scheduler: RunScheduler
    run_service: RunService
    session_manager: SessionManager
    reconciler: SessionReconciler

    async def start(self) -> None:
        await self.session_manager.start()
        self.reconciler.start()

    async def stop(self) -> None:
        self.reconciler.stop()
        await self.session_manager.shutdown()


def build_engine(
    *,
    registry: Optional[BackendRegistry] = None,
    store: Optional[SessionStore] = None,
    tmux: Optional[TmuxClient] = None,
    emitter: Optional[EventEmitter] = None,
    context_linker: Optional[ContextLinker] = None,
    reporter: Optional[RunReporter] = None,
) -> Engine:
    registry = registry or BackendRegistry.from_directory()
    emitter = emitter or LoggingEventEmitter()
    scheduler = RunScheduler(int(config.RUNS.MAX_CONCURRENT))
    run_service = RunService(
        registry,
        scheduler,
        RunExecutor(),
        emitter=emitter,
        reporter=reporter,
    )
    if store is None:
        store = JsonFileSessionStore(Path(config.SYSTEM.DATA_DIR) / config.SESSIONS.STORE_FILE)
    session_manager = SessionManager(
        tmux or TmuxClient(),
        store,
        registry,
        emitter=emitter,
        context_linker=context_linker,
    )
    logger.info(
        "Engine built: backends=%s max_concurrent=%s",
        ",".join(registry.names()),
        scheduler.max_concurrent,
    )
    return Engine(
        registry=registry,
        scheduler=scheduler,
        run_service=run_service,
        session_manager=session_manager,
        reconciler=SessionReconciler(session_manager),
    )
