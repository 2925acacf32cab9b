from __future__ import annotations

from .ansi import strip_ansi
from .signals import is_artifact_line

_RESPONSE_PREFIXES = ("⏺", "⎿")
_USER_INPUT_PREFIX = "❯"


def filter_screen(text: str) -> list[str]:
    """
    Reduce a captured pane to the lines that carry agent content.

    Response (`⏺`) and tool-result (`⎿`) prefixes are unwrapped; echoed user
    input, pipe-delimited status bars and artifact lines are dropped.
    """
    kept: list[str] = []
    for raw_line in strip_ansi(text or "").split("\n"):
        line = raw_line.strip()
        if not line or line.startswith(_USER_INPUT_PREFIX):
            continue
        if line.count("│") >= 3:
            continue
        if line.startswith(_RESPONSE_PREFIXES):
            line = line[1:].strip()
        if not line or is_artifact_line(line):
            continue
        kept.append(line)
    return kept


def diff_screens(previous: str, current: str) -> list[str]:
    """Lines of the filtered current screen that the filtered previous screen lacks."""
    seen = set(filter_screen(previous))
    return [line for line in filter_screen(current) if line not in seen]
