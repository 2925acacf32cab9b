import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore[import-untyped]

from ...config import config
from .session_manager import SessionManager

logger = logging.getLogger(__name__)


class SessionReconciler:
    """
    Background job keeping session records in line with tmux.

    Periodically closes sessions whose tmux target died or that sat idle too
    long, and registers prefixed tmux sessions started outside the engine.
    """

    def __init__(self, manager: SessionManager, interval_sec: Optional[int] = None) -> None:
        self._manager = manager
        self._interval_sec = int(interval_sec if interval_sec is not None else config.SESSIONS.RECONCILE_INTERVAL_SEC)
        self.scheduler = AsyncIOScheduler()

    def start(self) -> None:
        if self._interval_sec <= 0:
            logger.info("Session reconcile scheduler disabled (interval <= 0)")
            return
        self.scheduler.add_job(
            self.reconcile,
            "interval",
            seconds=self._interval_sec,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    async def reconcile(self) -> bool:
        try:
            changed = await self._manager.reconcile_sessions()
        except Exception:
            logger.exception("Session reconcile failed")
            return False
        if changed:
            logger.info("Session reconcile applied changes")
        return changed
