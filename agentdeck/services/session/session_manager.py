import asyncio
import logging
import os
import re
import time
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from ...config import config
from ...models import (
    DiscoveredSession,
    InteractiveTaskResult,
    SessionEventType,
    SessionRecord,
    SessionStatus,
)
from ...runtime.terminal.extractor import extract_result_from_buffer
from ...runtime.terminal.signals import detect_idle_prompt, has_background_activity
from ..backend_registry import BackendRegistry
from ..ports import ContextLinker, EventEmitter, LoggingEventEmitter, NullContextLinker, safe_emit
from .session_pipeline import PipelineSettings, ScreenDelta, SessionPipeline
from .session_store import SessionStore
from .tmux_client import TmuxClient, TmuxCommandError, validate_target

logger = logging.getLogger(__name__)


class SessionNotFoundError(LookupError):
    pass


class SessionValidationError(ValueError):
    pass


class SessionRuntimeError(RuntimeError):
    pass


_SHELL_METACHARS_RE = re.compile(r"[`$;&|<>\\]")
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")
_SEND_ATTEMPTS = 3
_SEND_RETRY_DELAY_SEC = 0.3


def sanitize_input(text: str) -> str:
    """Flatten input to one line and drop shell metacharacters and control characters."""
    flattened = re.sub(r"[\r\n\t]+", " ", text or "")
    flattened = _CONTROL_CHARS_RE.sub("", flattened)
    return _SHELL_METACHARS_RE.sub("", flattened).strip()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _SessionRuntime:
    pipeline: SessionPipeline
    output_buffer: Deque[str]
    poll_task: Optional["asyncio.Task[None]"] = None

    def dispose(self) -> None:
        task = self.poll_task
        self.poll_task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
        self.pipeline.dispose()


class SessionManager:
    """
    Interactive agent sessions hosted in tmux.

    Every active session owns one `SessionPipeline` and one polling task.
    Records are persisted through the injected store so a restarted process
    can pick live sessions back up.
    """

    def __init__(
        self,
        tmux: TmuxClient,
        store: SessionStore,
        registry: BackendRegistry,
        *,
        emitter: Optional[EventEmitter] = None,
        context_linker: Optional[ContextLinker] = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = _utc_now,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        pipeline_settings: Optional[PipelineSettings] = None,
        poll_interval_sec: Optional[float] = None,
    ) -> None:
        cfg = config.SESSIONS
        self._tmux = tmux
        self._store = store
        self._registry = registry
        self._emitter: EventEmitter = emitter or LoggingEventEmitter()
        self._context_linker: ContextLinker = context_linker or NullContextLinker()
        self._clock = clock
        self._now = now
        self._sleep = sleep
        self._pipeline_settings = pipeline_settings or PipelineSettings(
            stabilize_sec=float(cfg.STABILIZE_SEC),
            min_notify_interval_sec=float(cfg.MIN_NOTIFY_INTERVAL_SEC),
            min_change_chars=int(cfg.MIN_CHANGE_CHARS),
        )
        self._poll_interval_sec = float(poll_interval_sec if poll_interval_sec is not None else cfg.POLL_INTERVAL_SEC)
        self._capture_lines = int(cfg.CAPTURE_LINES)
        self._task_capture_lines = int(cfg.TASK_CAPTURE_LINES)
        self._output_buffer_size = int(cfg.OUTPUT_BUFFER_SIZE)
        self._name_prefix = str(cfg.NAME_PREFIX)
        self._idle_timeout_sec = float(cfg.IDLE_TIMEOUT_SEC)
        self._runtimes: Dict[str, _SessionRuntime] = {}

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Resume polling for persisted live sessions and close dead ones."""
        for record in self._store.list():
            if record.status is not SessionStatus.ACTIVE:
                continue
            if await self._is_alive(record):
                self._start_polling(record.id)
                logger.info("Resumed session %s (%s)", record.id, record.tmux_target)
            else:
                logger.info("Closing session %s: tmux target gone after restart", record.id)
                await self.close_session(record.id, reason="target_gone")

    async def shutdown(self) -> None:
        """Stop polling. tmux sessions are left running for the next start."""
        runtimes = list(self._runtimes.values())
        self._runtimes.clear()
        tasks = [runtime.poll_task for runtime in runtimes if runtime.poll_task is not None]
        for runtime in runtimes:
            runtime.dispose()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        return self._store.get(session_id)

    def list_sessions(self, owner: Optional[str] = None, include_closed: bool = False) -> List[SessionRecord]:
        records = [
            record
            for record in self._store.list()
            if (include_closed or record.status is SessionStatus.ACTIVE)
            and (owner is None or record.owner == owner)
        ]
        return sorted(records, key=lambda record: record.created_at)

    def get_output_buffer(self, session_id: str) -> List[str]:
        runtime = self._runtimes.get(session_id)
        return list(runtime.output_buffer) if runtime else []

    def is_polling(self, session_id: str) -> bool:
        return session_id in self._runtimes

    # ------------------------------------------------------------------
    # operations
    # ------------------------------------------------------------------

    async def create_session(
        self,
        owner: str,
        workdir: Optional[str] = None,
        name: str = "main",
        provider: Optional[str] = None,
    ) -> SessionRecord:
        name = (name or "").strip()
        if not name:
            raise SessionValidationError("session name must not be empty")
        provider_name = provider or config.RUNS.DEFAULT_PROVIDER
        backend = self._registry.get(provider_name)
        if backend is None:
            raise SessionValidationError(f"Unknown provider: {provider_name}")

        for existing in self.list_sessions(owner=owner):
            if existing.name != name:
                continue
            if await self._is_alive(existing):
                self._start_polling(existing.id)
                return existing
            await self.close_session(existing.id, reason="target_gone")

        resolved_workdir = workdir or os.getcwd()
        if not Path(resolved_workdir).is_dir():
            raise SessionValidationError(f"workdir does not exist: {resolved_workdir}")

        session_id = uuid.uuid4().hex[:8]
        tmux_name = f"{self._name_prefix}-{session_id}"
        try:
            await self._tmux.new_session(tmux_name, resolved_workdir, backend.interactive_command)
        except TmuxCommandError as exc:
            raise SessionRuntimeError(f"Failed to start tmux session: {exc}") from exc

        timestamp = self._now()
        record = SessionRecord(
            id=session_id,
            name=name,
            owner=owner,
            tmux_session=tmux_name,
            workdir=resolved_workdir,
            provider=provider_name,
            created_at=timestamp,
            last_activity_at=timestamp,
        )
        self._link_context(record)
        self._store.save(record)
        self._start_polling(record.id)
        logger.info("Created session %s for owner=%s in %s", record.id, owner, resolved_workdir)
        return record

    async def connect_session(self, target: str, owner: str) -> SessionRecord:
        try:
            validate_target(target)
        except ValueError as exc:
            raise SessionValidationError(str(exc)) from exc

        for existing in self.list_sessions():
            if existing.tmux_target != target:
                continue
            if existing.owner != owner:
                existing.owner = owner
                self._store.save(existing)
            self._start_polling(existing.id)
            return existing

        if not await self._tmux.has_session(target):
            raise SessionNotFoundError(f"tmux target not found: {target}")
        try:
            workdir = await self._tmux.pane_current_path(target)
        except TmuxCommandError:
            logger.warning("Could not read pane path for %s", target, exc_info=True)
            workdir = ""

        session_name, _, window = target.partition(":")
        timestamp = self._now()
        record = SessionRecord(
            id=uuid.uuid4().hex[:8],
            name=target,
            owner=owner,
            tmux_session=session_name,
            tmux_window=window or None,
            workdir=workdir,
            provider=config.RUNS.DEFAULT_PROVIDER,
            created_at=timestamp,
            last_activity_at=timestamp,
        )
        self._link_context(record)
        self._store.save(record)
        self._start_polling(record.id)
        logger.info("Connected session %s to tmux target %s", record.id, target)
        return record

    async def send_input(self, session_id: str, text: str) -> bool:
        record = self._store.get(session_id)
        if record is None or record.status is not SessionStatus.ACTIVE:
            return False
        if not await self._is_alive(record):
            await self.close_session(session_id, reason="target_gone")
            return False

        payload = sanitize_input(text)
        target = record.tmux_target
        try:
            if payload:
                await self._with_retry(lambda: self._tmux.send_literal(target, payload))
            await self._with_retry(lambda: self._tmux.send_key(target, "Enter"))
        except TmuxCommandError as exc:
            logger.warning("Failed to send input to session %s: %s", session_id, exc)
            safe_emit(
                self._emitter,
                SessionEventType.ERROR.value,
                {"session_id": session_id, "error": str(exc)},
            )
            return False

        self._touch(session_id)
        return True

    async def close_session(self, session_id: str, reason: str = "requested") -> bool:
        record = self._store.get(session_id)
        if record is None or record.status is SessionStatus.CLOSED:
            return False

        runtime = self._runtimes.pop(session_id, None)
        if runtime is not None:
            runtime.dispose()

        try:
            if record.tmux_window:
                await self._tmux.kill_window(record.tmux_target)
            else:
                await self._tmux.kill_session(record.tmux_session)
        except TmuxCommandError as exc:
            logger.info("tmux teardown for session %s skipped: %s", session_id, exc)

        record.status = SessionStatus.CLOSED
        record.last_activity_at = self._now()
        self._store.save(record)
        safe_emit(
            self._emitter,
            SessionEventType.CLOSED.value,
            {"session_id": session_id, "reason": reason},
        )
        logger.info("Closed session %s (%s)", session_id, reason)
        return True

    async def execute_task(
        self,
        session_id: str,
        prompt: str,
        timeout_sec: Optional[float] = None,
    ) -> InteractiveTaskResult:
        """Send `prompt` and wait until the agent is idle again; return its clean response."""
        record = self._store.get(session_id)
        if record is None or record.status is not SessionStatus.ACTIVE:
            raise SessionNotFoundError(f"session not found: {session_id}")

        cfg = config.SESSIONS
        limit = float(timeout_sec if timeout_sec is not None else cfg.TASK_TIMEOUT_SEC)
        started = self._clock()
        echoed_prompt = sanitize_input(prompt)
        if not await self.send_input(session_id, prompt):
            return InteractiveTaskResult(success=False, text="", duration_ms=0)

        target = record.tmux_target
        screen = ""
        background_markers = -1
        last_background_at: Optional[float] = None
        idle_since: Optional[float] = None
        timed_out = False
        while True:
            await self._sleep(self._poll_interval_sec)
            now = self._clock()
            try:
                screen = await self._tmux.capture_pane(target, self._task_capture_lines)
            except TmuxCommandError as exc:
                if exc.transient:
                    continue
                logger.warning("Capture failed during task on session %s: %s", session_id, exc)
                return InteractiveTaskResult(
                    success=False,
                    text=self._extract(screen, echoed_prompt),
                    duration_ms=int((now - started) * 1000),
                )

            markers = sum(1 for line in screen.splitlines() if has_background_activity(line))
            if background_markers >= 0 and markers > background_markers:
                last_background_at = now
            background_markers = markers

            elapsed = now - started
            if elapsed >= limit:
                timed_out = True
                break
            if elapsed < float(cfg.TASK_MIN_EXEC_SEC):
                continue
            if last_background_at is not None and now - last_background_at < float(cfg.BACKGROUND_COOLDOWN_SEC):
                idle_since = None
                continue
            if not detect_idle_prompt(screen):
                idle_since = None
                continue
            if idle_since is None:
                idle_since = now
            if now - idle_since >= float(cfg.TASK_SETTLE_SEC):
                break

        self._touch(session_id)
        return InteractiveTaskResult(
            success=not timed_out,
            text=self._extract(screen, echoed_prompt),
            duration_ms=int((self._clock() - started) * 1000),
            timed_out=timed_out,
        )

    async def discover_sessions(self) -> List[DiscoveredSession]:
        known = {record.tmux_session for record in self.list_sessions()}
        return [
            DiscoveredSession(tmux_session=name, workdir=path, registered=name in known)
            for name, path in await self._tmux.list_sessions()
        ]

    async def reconcile_sessions(self) -> bool:
        """Close dead or idle sessions and register unknown prefixed tmux sessions."""
        changed = False
        for record in self.list_sessions():
            if not await self._is_alive(record):
                changed |= await self.close_session(record.id, reason="target_gone")
                continue
            if self._idle_timeout_sec > 0:
                idle_for = (self._now() - record.last_activity_at).total_seconds()
                if idle_for > self._idle_timeout_sec:
                    changed |= await self.close_session(record.id, reason="idle_timeout")
                    continue
            self._start_polling(record.id)

        known = {record.tmux_session for record in self.list_sessions()}
        try:
            discovered = await self._tmux.list_sessions()
        except TmuxCommandError:
            logger.warning("tmux session discovery failed", exc_info=True)
            return changed
        for name, path in discovered:
            if not name.startswith(f"{self._name_prefix}-") or name in known:
                continue
            timestamp = self._now()
            record = SessionRecord(
                id=uuid.uuid4().hex[:8],
                name=name,
                owner="",
                tmux_session=name,
                workdir=path,
                provider=config.RUNS.DEFAULT_PROVIDER,
                created_at=timestamp,
                last_activity_at=timestamp,
            )
            self._store.save(record)
            self._start_polling(record.id)
            logger.info("Registered discovered tmux session %s as %s", name, record.id)
            changed = True
        return changed

    # ------------------------------------------------------------------
    # polling
    # ------------------------------------------------------------------

    async def poll_once(self, session_id: str) -> Optional[ScreenDelta]:
        """One capture tick. Returns the delivered delta, if any."""
        runtime = self._runtimes.get(session_id)
        record = self._store.get(session_id)
        if runtime is None or record is None:
            return None
        try:
            captured = await self._tmux.capture_pane(record.tmux_target, self._capture_lines)
        except TmuxCommandError as exc:
            if exc.transient:
                return None
            logger.warning("Capture failed for session %s: %s", session_id, exc)
            safe_emit(
                self._emitter,
                SessionEventType.ERROR.value,
                {"session_id": session_id, "error": str(exc)},
            )
            await self.close_session(session_id, reason="capture_failed")
            return None

        if runtime.pipeline.disposed:
            return None
        delta = runtime.pipeline.observe(captured)
        if delta is None:
            return None

        runtime.output_buffer.append(delta.content)
        safe_emit(
            self._emitter,
            SessionEventType.SCREEN_DELTA.value,
            {
                "session_id": session_id,
                "content": delta.content,
                "idle": delta.idle,
                "completed": delta.completed,
                "background_activity": delta.background_activity,
            },
        )
        try:
            self._context_linker.record_output(record, delta.content)
        except Exception:
            logger.warning("Context linker failed to record output for %s", session_id, exc_info=True)
        self._touch(session_id)
        return delta

    async def _poll_loop(self, session_id: str) -> None:
        while session_id in self._runtimes:
            await asyncio.sleep(self._poll_interval_sec)
            if session_id not in self._runtimes:
                return
            try:
                await self.poll_once(session_id)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Unexpected polling failure for session %s", session_id)

    def _start_polling(self, session_id: str) -> None:
        if session_id in self._runtimes:
            return
        runtime = _SessionRuntime(
            pipeline=SessionPipeline(self._pipeline_settings, clock=self._clock),
            output_buffer=deque(maxlen=self._output_buffer_size),
        )
        self._runtimes[session_id] = runtime
        runtime.poll_task = asyncio.ensure_future(self._poll_loop(session_id))

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    async def _is_alive(self, record: SessionRecord) -> bool:
        try:
            return await self._tmux.has_session(record.tmux_target)
        except ValueError:
            return False

    async def _with_retry(self, action: Callable[[], Awaitable[None]]) -> None:
        for attempt in range(_SEND_ATTEMPTS):
            try:
                await action()
                return
            except TmuxCommandError as exc:
                if not exc.transient or attempt == _SEND_ATTEMPTS - 1:
                    raise
                await self._sleep(_SEND_RETRY_DELAY_SEC)

    def _touch(self, session_id: str) -> None:
        record = self._store.get(session_id)
        if record is None or record.status is not SessionStatus.ACTIVE:
            return
        record.last_activity_at = self._now()
        self._store.save(record)

    def _link_context(self, record: SessionRecord) -> None:
        try:
            link = self._context_linker.link_session(record)
        except Exception:
            logger.warning("Context linking failed for session %s", record.id, exc_info=True)
            return
        if link is None:
            return
        record.workspace_context_id = link.workspace_context_id
        record.project_context_id = link.project_context_id
        record.task_context_id = link.task_context_id

    def _extract(self, screen: str, prompt: str) -> str:
        return extract_result_from_buffer(
            screen,
            prompt,
            max_length=int(config.TERMINAL.MAX_RESULT_CHARS),
            truncation_marker=str(config.TERMINAL.TRUNCATION_MARKER),
        )
