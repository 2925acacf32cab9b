from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from ...models import ErrorKind


@dataclass(frozen=True)
class ClassificationInput:
    exit_code: Optional[int]
    text: str
    timed_out: bool


@dataclass(frozen=True)
class ErrorRule:
    kind: ErrorKind
    predicate: Callable[[ClassificationInput], bool]


def _mentions_all(*needles: str) -> Callable[[ClassificationInput], bool]:
    return lambda item: all(needle in item.text for needle in needles)


def _mentions_any(*needles: str) -> Callable[[ClassificationInput], bool]:
    return lambda item: any(needle in item.text for needle in needles)


def _missing_session(item: ClassificationInput) -> bool:
    return _mentions_all("session", "not found")(item) or "no such session" in item.text


def _spawn_failure(item: ClassificationInput) -> bool:
    if item.exit_code == 127:
        return True
    return _mentions_any("enoent", "no such file", "file not found", "command not found")(item)


_KILL_EXIT_CODES = frozenset({137, 143, -9, -15})

# First match wins.
ERROR_RULES: tuple[ErrorRule, ...] = (
    ErrorRule(ErrorKind.TIMEOUT, lambda item: item.timed_out),
    ErrorRule(ErrorKind.SESSION_NOT_FOUND, _missing_session),
    ErrorRule(ErrorKind.PERMISSION_DENIED, _mentions_any("permission", "unauthorized", "forbidden")),
    ErrorRule(ErrorKind.API_ERROR, _mentions_any("rate limit", "rate_limit", "overloaded", "429")),
    ErrorRule(ErrorKind.SPAWN_ERROR, _spawn_failure),
    ErrorRule(ErrorKind.KILLED, lambda item: item.exit_code in _KILL_EXIT_CODES),
)


def classify_error(exit_code: Optional[int], error_text: str, timed_out: bool) -> ErrorKind:
    item = ClassificationInput(exit_code=exit_code, text=(error_text or "").lower(), timed_out=timed_out)
    for rule in ERROR_RULES:
        if rule.predicate(item):
            return rule.kind
    return ErrorKind.UNKNOWN
