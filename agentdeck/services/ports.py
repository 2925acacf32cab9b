"""
Collaborator ports.

The engine talks to the outside world (event delivery, context storage, fleet
bookkeeping) only through these protocols. Failures inside a collaborator are
logged by the caller and never interrupt a run or a session.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol, Tuple

from ..models import RunRequest, RunResult, SessionContextLink, SessionRecord

logger = logging.getLogger(__name__)


class EventEmitter(Protocol):
    def emit(self, event_type: str, payload: Dict[str, Any]) -> None:
        ...


class ContextLinker(Protocol):
    def link_session(self, session: SessionRecord) -> Optional[SessionContextLink]:
        ...

    def record_output(self, session: SessionRecord, content: str) -> None:
        ...


class RunReporter(Protocol):
    def report_started(self, assignment_id: str, request: RunRequest) -> None:
        ...

    def report_result(self, assignment_id: str, result: RunResult) -> None:
        ...


class LoggingEventEmitter:
    """Default emitter: writes events to the log only."""

    def emit(self, event_type: str, payload: Dict[str, Any]) -> None:
        logger.debug("event %s session=%s", event_type, payload.get("session_id"))


class RecordingEventEmitter:
    """Keeps emitted events in memory; handy for embedding and tests."""

    def __init__(self) -> None:
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    def emit(self, event_type: str, payload: Dict[str, Any]) -> None:
        self.events.append((event_type, dict(payload)))

    def of_type(self, event_type: str) -> List[Dict[str, Any]]:
        return [payload for kind, payload in self.events if kind == event_type]


class NullContextLinker:
    def link_session(self, session: SessionRecord) -> Optional[SessionContextLink]:
        return None

    def record_output(self, session: SessionRecord, content: str) -> None:
        return None


class NullRunReporter:
    def report_started(self, assignment_id: str, request: RunRequest) -> None:
        return None

    def report_result(self, assignment_id: str, result: RunResult) -> None:
        return None


def safe_emit(emitter: EventEmitter, event_type: str, payload: Dict[str, Any]) -> None:
    try:
        emitter.emit(event_type, payload)
    except Exception:
        logger.warning("Event emitter failed for %s", event_type, exc_info=True)
