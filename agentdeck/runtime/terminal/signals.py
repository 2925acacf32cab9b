"""
Terminal signal classifiers.

Pure functions over raw terminal text. None of them raise: unknown or empty
input simply classifies as "no signal".
"""

from __future__ import annotations

from .ansi import strip_ansi
from .patterns import (
    ARTIFACT_PATTERNS,
    BACKGROUND_ACTIVITY_PATTERNS,
    CHROME_PATTERNS,
    COMPLETION_PATTERNS,
    IDLE_PROMPT_PATTERNS,
    SignalPattern,
)

IDLE_WINDOW_CHARS = 5000
COMPLETION_WINDOW_CHARS = 2000


def _first_match(patterns: tuple[SignalPattern, ...], text: str) -> SignalPattern | None:
    for pattern in patterns:
        if pattern.matches(text):
            return pattern
    return None


def detect_idle_prompt(text: str) -> bool:
    """True when the tail of the buffer shows the agent waiting for input."""
    if not text:
        return False
    window = strip_ansi(text[-IDLE_WINDOW_CHARS:])
    return _first_match(IDLE_PROMPT_PATTERNS, window) is not None


def detect_completion(text: str) -> bool:
    """True when the tail of the buffer contains a task-completion phrase."""
    if not text:
        return False
    window = strip_ansi(text[-COMPLETION_WINDOW_CHARS:])
    return _first_match(COMPLETION_PATTERNS, window) is not None


def is_chrome_line(line: str) -> bool:
    trimmed = (line or "").strip()
    if not trimmed:
        return True
    return _first_match(CHROME_PATTERNS, trimmed) is not None


def is_artifact_line(line: str) -> bool:
    if is_chrome_line(line):
        return True
    return _first_match(ARTIFACT_PATTERNS, line.strip()) is not None


def has_background_activity(text: str) -> bool:
    if not text:
        return False
    return _first_match(BACKGROUND_ACTIVITY_PATTERNS, strip_ansi(text)) is not None


def matched_pattern_names(patterns: tuple[SignalPattern, ...], text: str) -> list[str]:
    """Names of every pattern in `patterns` matching `text`. Used for diagnostics."""
    return [pattern.name for pattern in patterns if pattern.matches(text)]
