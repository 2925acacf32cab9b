import asyncio
import logging
import os
import signal
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional

from ...config import config
from ...models import ErrorKind, RunError, RunRequest, RunResult, TokenUsage
from ...runtime.backend.command_builder import build_cli_args
from ...runtime.backend.descriptor import BackendDescriptor
from ...runtime.backend.error_classifier import classify_error
from ...runtime.backend.result_parsers import OutputParseError, ParsedOutput, get_output_parser

logger = logging.getLogger(__name__)


@dataclass
class ProcessOutcome:
    exit_code: Optional[int]
    stdout: str
    stderr: str
    timed_out: bool = False
    spawn_error: Optional[str] = None


class RunExecutor:
    """Spawn one backend process, collect its output and normalize the outcome."""

    def __init__(
        self,
        *,
        default_timeout_sec: Optional[float] = None,
        kill_grace_sec: Optional[float] = None,
        error_excerpt_chars: Optional[int] = None,
        env_strip_keys: Optional[Iterable[str]] = None,
    ) -> None:
        self._default_timeout_sec = float(
            default_timeout_sec if default_timeout_sec is not None else config.RUNS.DEFAULT_TIMEOUT_SEC
        )
        self._kill_grace_sec = float(kill_grace_sec if kill_grace_sec is not None else config.RUNS.KILL_GRACE_SEC)
        self._error_excerpt_chars = int(
            error_excerpt_chars if error_excerpt_chars is not None else config.RUNS.ERROR_EXCERPT_CHARS
        )
        self._env_strip_keys = tuple(env_strip_keys if env_strip_keys is not None else config.RUNS.ENV_STRIP_KEYS)

    def build_env(self, base_env: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        env = dict(base_env if base_env is not None else os.environ)
        for key in self._env_strip_keys:
            env.pop(key, None)
        return env

    def resolve_timeout(self, request: RunRequest) -> float:
        if request.timeout_sec is not None and request.timeout_sec > 0:
            return float(request.timeout_sec)
        return self._default_timeout_sec

    async def execute(self, request: RunRequest, backend: BackendDescriptor) -> RunResult:
        argv = [backend.command, *build_cli_args(request, backend)]
        cwd = Path(request.workdir) if request.workdir else Path.cwd()
        timeout_sec = self.resolve_timeout(request)
        prefix = backend.name
        logger.info("[%s] starting run in %s (timeout=%ss)", prefix, cwd, timeout_sec)

        started = time.monotonic()
        outcome = await self._run_process(argv, cwd, timeout_sec, request.on_stream, prefix)
        wall_ms = int((time.monotonic() - started) * 1000)

        result = self._assemble_result(request, backend, outcome, wall_ms)
        logger.info(
            "[%s] run finished success=%s exit=%s duration_ms=%s error=%s",
            prefix,
            result.success,
            outcome.exit_code,
            result.duration_ms,
            result.error.kind.value if result.error else None,
        )
        return result

    def _assemble_result(
        self,
        request: RunRequest,
        backend: BackendDescriptor,
        outcome: ProcessOutcome,
        wall_ms: int,
    ) -> RunResult:
        parser = get_output_parser(backend.output_format)

        if outcome.spawn_error is not None:
            text = f"spawn failed: {outcome.spawn_error}"
            return RunResult(
                success=False,
                model=request.model or "",
                duration_ms=wall_ms,
                error=RunError(kind=classify_error(None, text, False), message=text),
            )

        if outcome.timed_out or outcome.exit_code != 0:
            kind = classify_error(outcome.exit_code, outcome.stderr or outcome.stdout, outcome.timed_out)
            message = outcome.stderr.strip()[: self._error_excerpt_chars] or f"Exit code: {outcome.exit_code}"
            partial = self._parse_partial(parser, outcome.stdout)
            return RunResult(
                success=False,
                text=partial.text if partial else "",
                session_id=(partial.session_id if partial else "") or (request.session_id or ""),
                model=request.model or (partial.model if partial else ""),
                usage=partial.usage if partial else TokenUsage(),
                cost_usd=partial.cost_usd if partial else 0.0,
                duration_ms=wall_ms,
                num_turns=partial.num_turns if partial else 0,
                error=RunError(kind=kind, message=message, exit_code=outcome.exit_code),
            )

        try:
            parsed = parser(outcome.stdout)
        except OutputParseError as exc:
            logger.warning("[%s] could not parse backend output: %s", backend.name, exc)
            return RunResult(
                success=False,
                text=outcome.stdout.strip()[: self._error_excerpt_chars],
                session_id=request.session_id or "",
                model=request.model or "",
                duration_ms=wall_ms,
                error=RunError(
                    kind=ErrorKind.UNKNOWN,
                    message=str(exc),
                    exit_code=outcome.exit_code,
                    parse_failure=exc.reason,
                ),
            )

        error: Optional[RunError] = None
        if parsed.is_error:
            reported = parsed.error_text or parsed.text
            error = RunError(
                kind=classify_error(outcome.exit_code, reported, False),
                message=reported[: self._error_excerpt_chars] or "Backend reported an error",
                exit_code=outcome.exit_code,
            )
        return RunResult(
            success=not parsed.is_error,
            text=parsed.text,
            session_id=parsed.session_id or (request.session_id or ""),
            model=request.model or parsed.model,
            usage=parsed.usage,
            cost_usd=parsed.cost_usd,
            duration_ms=parsed.duration_ms or wall_ms,
            num_turns=parsed.num_turns,
            error=error,
        )

    @staticmethod
    def _parse_partial(parser: Callable[[str], ParsedOutput], stdout: str) -> Optional[ParsedOutput]:
        try:
            return parser(stdout)
        except OutputParseError:
            return None

    async def _run_process(
        self,
        argv: list[str],
        cwd: Path,
        timeout_sec: float,
        on_stream: Optional[Callable[[str], None]],
        prefix: str,
    ) -> ProcessOutcome:
        try:
            proc = await self._create_subprocess(*argv, cwd=cwd, env=self.build_env())
        except OSError as exc:
            logger.error("[%s] failed to spawn %s: %s", prefix, argv[0], exc)
            return ProcessOutcome(exit_code=None, stdout="", stderr="", spawn_error=str(exc))

        stdout_chunks: list[str] = []
        stderr_chunks: list[str] = []

        async def read_stream(stream, chunks: list[str], callback: Optional[Callable[[str], None]]) -> None:
            while True:
                chunk = await stream.read(1024)
                if not chunk:
                    break
                decoded_chunk = chunk.decode("utf-8", errors="replace")
                chunks.append(decoded_chunk)
                if callback is not None:
                    try:
                        callback(decoded_chunk)
                    except Exception:
                        logger.warning("[%s] stream callback failed", prefix, exc_info=True)

        stdout_task = asyncio.create_task(read_stream(proc.stdout, stdout_chunks, on_stream))
        stderr_task = asyncio.create_task(read_stream(proc.stderr, stderr_chunks, None))
        timed_out = False
        try:
            await asyncio.wait_for(proc.wait(), timeout=timeout_sec)
        except asyncio.TimeoutError:
            timed_out = True
            logger.error("[%s] timeout reached (%ss), terminating process", prefix, timeout_sec)
            await self._terminate_process_tree(proc, prefix)
        finally:
            try:
                await asyncio.wait_for(
                    asyncio.gather(stdout_task, stderr_task, return_exceptions=True),
                    timeout=5,
                )
            except asyncio.TimeoutError:
                logger.warning("[%s] stream readers did not finish in time; cancelling", prefix)
                stdout_task.cancel()
                stderr_task.cancel()
                await asyncio.gather(stdout_task, stderr_task, return_exceptions=True)

        return ProcessOutcome(
            exit_code=proc.returncode,
            stdout="".join(stdout_chunks),
            stderr="".join(stderr_chunks),
            timed_out=timed_out,
        )

    async def _create_subprocess(self, *cmd: str, cwd: Path, env: Dict[str, str]):
        kwargs: Dict[str, Any] = {
            "stdin": asyncio.subprocess.DEVNULL,
            "stdout": asyncio.subprocess.PIPE,
            "stderr": asyncio.subprocess.PIPE,
            "cwd": str(cwd),
            "env": env,
        }
        if os.name == "nt":
            kwargs["creationflags"] = int(getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0))
        else:
            kwargs["start_new_session"] = True
        return await asyncio.create_subprocess_exec(*cmd, **kwargs)

    async def _terminate_process_tree(self, proc, prefix: str) -> None:
        """SIGTERM the process group, then SIGKILL after the grace period."""
        if proc.returncode is not None:
            return
        pgid: Optional[int] = None
        if os.name != "nt":
            try:
                pgid = os.getpgid(proc.pid)
            except ProcessLookupError:
                return
            except OSError:
                pgid = None

        if pgid is not None and pgid == proc.pid:
            try:
                os.killpg(pgid, signal.SIGTERM)
                await asyncio.wait_for(proc.wait(), timeout=self._kill_grace_sec)
                return
            except ProcessLookupError:
                return
            except asyncio.TimeoutError:
                logger.warning("[%s] process group SIGTERM timeout, escalating to SIGKILL", prefix)
            try:
                os.killpg(pgid, signal.SIGKILL)
                await asyncio.wait_for(proc.wait(), timeout=5)
                return
            except (ProcessLookupError, asyncio.TimeoutError):
                logger.warning("[%s] process group SIGKILL did not settle", prefix, exc_info=True)
                return

        try:
            proc.terminate()
            await asyncio.wait_for(proc.wait(), timeout=self._kill_grace_sec)
        except ProcessLookupError:
            return
        except asyncio.TimeoutError:
            try:
                proc.kill()
                await asyncio.wait_for(proc.wait(), timeout=5)
            except (ProcessLookupError, asyncio.TimeoutError):
                logger.warning("[%s] fallback terminate/kill failed", prefix, exc_info=True)
