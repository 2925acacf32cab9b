import logging
from typing import Optional

from ...config import config
from ...models import ErrorKind, RunError, RunRequest, RunResult, SessionEventType
from ..backend_registry import BackendRegistry
from ..platform.run_scheduler import RunScheduler
from ..ports import EventEmitter, LoggingEventEmitter, NullRunReporter, RunReporter, safe_emit
from .run_executor import RunExecutor

logger = logging.getLogger(__name__)


class RunService:
    """Entry point for one-shot runs: resolve backend, queue, execute, report."""

    def __init__(
        self,
        registry: BackendRegistry,
        scheduler: RunScheduler,
        executor: RunExecutor,
        *,
        emitter: Optional[EventEmitter] = None,
        reporter: Optional[RunReporter] = None,
        default_provider: Optional[str] = None,
    ) -> None:
        self._registry = registry
        self._scheduler = scheduler
        self._executor = executor
        self._emitter: EventEmitter = emitter or LoggingEventEmitter()
        self._reporter: RunReporter = reporter or NullRunReporter()
        self._default_provider = default_provider or config.RUNS.DEFAULT_PROVIDER

    @property
    def scheduler(self) -> RunScheduler:
        return self._scheduler

    def queue_key_for(self, request: RunRequest, provider: str) -> str:
        return request.queue_key or provider

    async def submit_run(self, request: RunRequest) -> RunResult:
        provider = request.provider or self._default_provider
        backend = self._registry.get(provider)
        if backend is None:
            logger.warning("Rejecting run for unknown provider: %s", provider)
            result = RunResult(
                success=False,
                model=request.model or "",
                duration_ms=0,
                error=RunError(kind=ErrorKind.SPAWN_ERROR, message=f"Unknown provider: {provider}"),
            )
            self._emit_completed(request, provider, self.queue_key_for(request, provider), result)
            self._report_result(request, result)
            return result

        key = self.queue_key_for(request, provider)

        async def _execute() -> RunResult:
            safe_emit(
                self._emitter,
                SessionEventType.RUN_STARTED.value,
                {"provider": provider, "queue_key": key, "assignment_id": request.assignment_id},
            )
            self._report_started(request)
            return await self._executor.execute(request, backend)

        try:
            result = await self._scheduler.enqueue(key, _execute)
        except Exception as exc:
            logger.exception("Run execution crashed for provider=%s", provider)
            result = RunResult(
                success=False,
                model=request.model or "",
                error=RunError(kind=ErrorKind.UNKNOWN, message=str(exc) or exc.__class__.__name__),
            )

        self._emit_completed(request, provider, key, result)
        self._report_result(request, result)
        return result

    def _emit_completed(self, request: RunRequest, provider: str, key: str, result: RunResult) -> None:
        safe_emit(
            self._emitter,
            SessionEventType.RUN_COMPLETED.value,
            {
                "provider": provider,
                "queue_key": key,
                "assignment_id": request.assignment_id,
                "success": result.success,
                "error_kind": result.error.kind.value if result.error else None,
            },
        )

    def _report_started(self, request: RunRequest) -> None:
        if not request.assignment_id:
            return
        try:
            self._reporter.report_started(request.assignment_id, request)
        except Exception:
            logger.warning("Run reporter failed on start: %s", request.assignment_id, exc_info=True)

    def _report_result(self, request: RunRequest, result: RunResult) -> None:
        if not request.assignment_id:
            return
        try:
            self._reporter.report_result(request.assignment_id, result)
        except Exception:
            logger.warning("Run reporter failed on result: %s", request.assignment_id, exc_info=True)
