from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from ...runtime.terminal.screen_filter import diff_screens
from ...runtime.terminal.signals import detect_completion, detect_idle_prompt, has_background_activity


class PipelinePhase(str, Enum):
    CAPTURING = "capturing"      # Screen unchanged since the last decision
    STABILIZING = "stabilizing"  # Screen changed, waiting for it to settle
    NOTIFIED = "notified"        # Last settled change was delivered
    DISPOSED = "disposed"        # Session closed; no further captures accepted


class PipelineEvent:
    SCREEN_CHANGED = "screen.changed"
    DELTA_NOTIFIED = "delta.notified"
    DELTA_SUPPRESSED = "delta.suppressed"
    DISPOSED = "pipeline.disposed"


@dataclass(frozen=True)
class Transition:
    source: PipelinePhase
    event: str
    target: PipelinePhase


TRANSITIONS: tuple[Transition, ...] = (
    Transition(PipelinePhase.CAPTURING, PipelineEvent.SCREEN_CHANGED, PipelinePhase.STABILIZING),
    Transition(PipelinePhase.NOTIFIED, PipelineEvent.SCREEN_CHANGED, PipelinePhase.STABILIZING),
    Transition(PipelinePhase.STABILIZING, PipelineEvent.SCREEN_CHANGED, PipelinePhase.STABILIZING),
    Transition(PipelinePhase.STABILIZING, PipelineEvent.DELTA_NOTIFIED, PipelinePhase.NOTIFIED),
    Transition(PipelinePhase.STABILIZING, PipelineEvent.DELTA_SUPPRESSED, PipelinePhase.CAPTURING),
    Transition(PipelinePhase.CAPTURING, PipelineEvent.DISPOSED, PipelinePhase.DISPOSED),
    Transition(PipelinePhase.STABILIZING, PipelineEvent.DISPOSED, PipelinePhase.DISPOSED),
    Transition(PipelinePhase.NOTIFIED, PipelineEvent.DISPOSED, PipelinePhase.DISPOSED),
)

_TRANSITION_INDEX: Dict[tuple[PipelinePhase, str], Transition] = {
    (row.source, row.event): row for row in TRANSITIONS
}


class PipelineDisposedError(RuntimeError):
    pass


@dataclass(frozen=True)
class PipelineSettings:
    stabilize_sec: float = 1.0
    min_notify_interval_sec: float = 2.0
    min_change_chars: int = 5


@dataclass
class ScreenDelta:
    lines: List[str]
    changed_chars: int
    idle: bool
    completed: bool
    background_activity: bool
    content: str = field(init=False)

    def __post_init__(self) -> None:
        self.content = "\n".join(self.lines)


class SessionPipeline:
    """
    Per-session capture state machine.

    Each capture either restarts stabilization (screen changed) or, once the
    screen has been quiet for `stabilize_sec`, diffs the filtered screen
    against the last delivered one. Small diffs are absorbed; diffs arriving
    within `min_notify_interval_sec` of the previous delivery stay pending
    and are re-evaluated on later captures.
    """

    def __init__(self, settings: PipelineSettings, clock: Callable[[], float] = time.monotonic) -> None:
        self._settings = settings
        self._clock = clock
        self.phase = PipelinePhase.CAPTURING
        self.last_capture: Optional[str] = None
        self.last_notified = ""
        self.changed_at = 0.0
        self.last_notify_at: Optional[float] = None

    def _apply(self, event: str) -> None:
        transition = _TRANSITION_INDEX.get((self.phase, event))
        if transition is None:
            raise RuntimeError(f"Invalid pipeline transition: {self.phase.value} --{event}-->")
        self.phase = transition.target

    @property
    def disposed(self) -> bool:
        return self.phase is PipelinePhase.DISPOSED

    def observe(self, captured: str) -> Optional[ScreenDelta]:
        if self.disposed:
            raise PipelineDisposedError("pipeline already disposed")
        now = self._clock()
        if captured != self.last_capture:
            self.last_capture = captured
            self.changed_at = now
            self._apply(PipelineEvent.SCREEN_CHANGED)
            return None
        if self.phase is not PipelinePhase.STABILIZING:
            return None
        if now - self.changed_at < self._settings.stabilize_sec:
            return None

        lines = diff_screens(self.last_notified, captured)
        changed_chars = sum(len(line) for line in lines)
        if not lines or changed_chars < self._settings.min_change_chars:
            self.last_notified = captured
            self._apply(PipelineEvent.DELTA_SUPPRESSED)
            return None
        if self.last_notify_at is not None and now - self.last_notify_at < self._settings.min_notify_interval_sec:
            return None

        self.last_notified = captured
        self.last_notify_at = now
        self._apply(PipelineEvent.DELTA_NOTIFIED)
        return ScreenDelta(
            lines=lines,
            changed_chars=changed_chars,
            idle=detect_idle_prompt(captured),
            completed=detect_completion(captured),
            background_activity=has_background_activity(captured),
        )

    def dispose(self) -> bool:
        """Release state. Returns False when already disposed."""
        if self.disposed:
            return False
        self._apply(PipelineEvent.DISPOSED)
        self.last_capture = None
        self.last_notified = ""
        return True
