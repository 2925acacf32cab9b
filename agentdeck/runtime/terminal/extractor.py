from __future__ import annotations

from .ansi import strip_ansi
from .patterns import LEADING_SPINNER_RE, PROMPT_ECHO_PREFIX_RE, TRAILING_PROMPT_RE
from .signals import is_artifact_line, is_chrome_line

DEFAULT_MAX_RESULT_CHARS = 8000
DEFAULT_TRUNCATION_MARKER = "...(earlier output truncated)..."
_RESPONSE_PREFIXES = ("⏺", "⎿")


def _after_last_echo(text: str, prompt: str) -> str:
    """Text following the most recent echo of `prompt`; older scrollback is dropped."""
    lines = text.split("\n")
    for index in range(len(lines) - 1, -1, -1):
        typed = PROMPT_ECHO_PREFIX_RE.sub("", lines[index].strip())
        if typed.startswith(prompt):
            return "\n".join(lines[index + 1:])
    echo_at = text.rfind(prompt)
    if echo_at >= 0:
        return text[echo_at + len(prompt):]
    return text


def _unwrap_response_prefix(line: str) -> str:
    stripped = line.lstrip()
    if stripped.startswith(_RESPONSE_PREFIXES):
        return stripped[1:].lstrip()
    return line


def _strip_trailing_prompt_lines(lines: list[str]) -> list[str]:
    while lines:
        tail = lines[-1].strip()
        if not tail or TRAILING_PROMPT_RE.match(tail) or is_chrome_line(tail):
            lines.pop()
            continue
        break
    return lines


def _collapse_blank_runs(lines: list[str]) -> list[str]:
    """Drop runs of two or more adjacent blank lines entirely; single blanks stay."""
    collapsed: list[str] = []
    index = 0
    while index < len(lines):
        if lines[index].strip():
            collapsed.append(lines[index])
            index += 1
            continue
        run_end = index
        while run_end < len(lines) and not lines[run_end].strip():
            run_end += 1
        if run_end - index == 1:
            collapsed.append("")
        index = run_end
    return collapsed


def extract_result_from_buffer(
    buffer: str,
    prompt: str,
    max_length: int = DEFAULT_MAX_RESULT_CHARS,
    truncation_marker: str = DEFAULT_TRUNCATION_MARKER,
) -> str:
    """
    Turn a raw terminal buffer captured after sending `prompt` into the agent's
    clean response text.
    """
    text = strip_ansi(buffer or "")
    if prompt:
        text = _after_last_echo(text, prompt)

    lines = _strip_trailing_prompt_lines(text.split("\n"))

    kept: list[str] = []
    for raw_line in lines:
        line = raw_line.rstrip("\r")
        if not line.strip():
            kept.append("")
            continue
        line = _unwrap_response_prefix(LEADING_SPINNER_RE.sub("", line))
        if not line.strip() or is_artifact_line(line):
            continue
        kept.append(line)

    kept = _collapse_blank_runs(kept)
    while kept and not kept[0].strip():
        kept.pop(0)
    while kept and not kept[-1].strip():
        kept.pop()

    result = "\n".join(kept).strip()
    if len(result) > max_length:
        result = f"{truncation_marker}\n\n{result[-max_length:]}"
    return result
