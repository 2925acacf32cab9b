import asyncio
import logging
import re
from typing import List, Optional, Sequence, Tuple

from ...config import config

logger = logging.getLogger(__name__)

_TARGET_RE = re.compile(r"^[A-Za-z0-9_:.-]+$")
_TRANSIENT_MARKERS = ("no current client",)


class TmuxCommandError(RuntimeError):
    def __init__(self, args: Sequence[str], stderr: str, returncode: Optional[int] = None) -> None:
        self.command_args = list(args)
        self.stderr = stderr
        self.returncode = returncode
        super().__init__(f"tmux {' '.join(self.command_args[:2])} failed: {stderr.strip() or returncode}")

    @property
    def transient(self) -> bool:
        lowered = self.stderr.lower()
        return any(marker in lowered for marker in _TRANSIENT_MARKERS)


class TmuxTimeoutError(TmuxCommandError):
    @property
    def transient(self) -> bool:
        return True


def validate_target(target: str) -> str:
    """Reject tmux target names outside the safe allowlist."""
    if not target or not _TARGET_RE.match(target):
        raise ValueError(f"Invalid tmux target: {target!r}")
    return target


class TmuxClient:
    """Async wrapper around the tmux binary. Commands are exec'd, never shelled."""

    def __init__(self, binary: Optional[str] = None, command_timeout_sec: Optional[float] = None) -> None:
        self._binary = binary or config.SESSIONS.TMUX_BINARY
        self._timeout = float(
            command_timeout_sec if command_timeout_sec is not None else config.SESSIONS.COMMAND_TIMEOUT_SEC
        )

    async def _run(self, *args: str, timeout: Optional[float] = None) -> str:
        try:
            proc = await asyncio.create_subprocess_exec(
                self._binary,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise TmuxCommandError(args, str(exc)) from exc
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout or self._timeout)
        except asyncio.TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise TmuxTimeoutError(args, "command timed out") from exc
        if proc.returncode != 0:
            raise TmuxCommandError(args, stderr.decode("utf-8", errors="replace"), proc.returncode)
        return stdout.decode("utf-8", errors="replace")

    async def has_session(self, target: str) -> bool:
        session_name = validate_target(target).split(":", 1)[0]
        try:
            await self._run("has-session", "-t", session_name)
        except TmuxCommandError:
            return False
        if ":" not in target:
            return True
        window = target.split(":", 1)[1]
        try:
            return window in await self.list_windows(session_name)
        except TmuxCommandError:
            return False

    async def list_windows(self, session_name: str) -> List[str]:
        output = await self._run("list-windows", "-t", validate_target(session_name), "-F", "#{window_name}")
        return [line.strip() for line in output.splitlines() if line.strip()]

    async def new_session(self, name: str, workdir: str, command: Sequence[str]) -> None:
        await self._run("new-session", "-d", "-s", validate_target(name), "-c", workdir, *command)
        try:
            await self._run("set-option", "-t", name, "extended-keys", "always")
        except TmuxCommandError:
            logger.debug("tmux extended-keys not supported for %s", name, exc_info=True)

    async def capture_pane(self, target: str, lines: int) -> str:
        return await self._run("capture-pane", "-t", validate_target(target), "-p", "-S", f"-{int(lines)}")

    async def send_literal(self, target: str, text: str) -> None:
        await self._run("send-keys", "-t", validate_target(target), "-l", text)

    async def send_key(self, target: str, key: str) -> None:
        await self._run("send-keys", "-t", validate_target(target), key)

    async def kill_session(self, session_name: str) -> None:
        await self._run("kill-session", "-t", validate_target(session_name))

    async def kill_window(self, target: str) -> None:
        await self._run("kill-window", "-t", validate_target(target))

    async def pane_current_path(self, target: str) -> str:
        output = await self._run("display-message", "-t", validate_target(target), "-p", "#{pane_current_path}")
        return output.strip()

    async def list_sessions(self) -> List[Tuple[str, str]]:
        """Return `(session_name, session_path)` pairs; empty when no server runs."""
        try:
            output = await self._run("list-sessions", "-F", "#{session_name}:#{session_path}")
        except TmuxCommandError as exc:
            if "no server running" in exc.stderr.lower() or "error connecting" in exc.stderr.lower():
                return []
            raise
        sessions: List[Tuple[str, str]] = []
        for line in output.splitlines():
            if not line.strip():
                continue
            name, _, path = line.partition(":")
            sessions.append((name.strip(), path.strip()))
        return sessions
