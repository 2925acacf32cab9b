from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from ...models import ParseFailure, TokenUsage


class OutputParseError(ValueError):
    """Hard parse failure of a backend's stdout. Fatal to one run only."""

    def __init__(self, reason: ParseFailure, detail: str = "") -> None:
        self.reason = reason
        self.detail = detail
        message = reason.replace("_", " ")
        super().__init__(f"{message}: {detail}" if detail else message)


@dataclass
class ParsedOutput:
    text: str = ""
    session_id: str = ""
    is_error: bool = False
    error_text: str = ""
    cost_usd: float = 0.0
    num_turns: int = 0
    duration_ms: int = 0
    duration_api_ms: int = 0
    model: str = ""
    usage: TokenUsage = field(default_factory=TokenUsage)


def _is_number(value: Any) -> bool:
    # json.loads accepts NaN and Infinity
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def _as_int(value: Any) -> int:
    return int(value) if _is_number(value) else 0


def _as_optional_int(value: Any) -> Optional[int]:
    return int(value) if _is_number(value) else None


def _as_float(value: Any) -> float:
    return float(value) if _is_number(value) else 0.0


def _as_str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def parse_envelope_output(stdout: str) -> ParsedOutput:
    """Parse a backend that prints one JSON object summarizing the whole run."""
    raw = (stdout or "").strip()
    if not raw:
        raise OutputParseError("empty_output")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise OutputParseError("malformed_output", str(exc)) from exc
    if not isinstance(payload, dict):
        raise OutputParseError("malformed_output", "top-level value is not an object")

    usage_raw = payload.get("usage")
    usage_payload: Dict[str, Any] = usage_raw if isinstance(usage_raw, dict) else {}
    model_usage = payload.get("modelUsage")
    model = ""
    if isinstance(model_usage, dict) and model_usage:
        model = str(next(iter(model_usage)))

    text = _as_str(payload.get("result"))
    is_error = payload.get("is_error") is True
    return ParsedOutput(
        text=text,
        session_id=_as_str(payload.get("session_id")),
        is_error=is_error,
        error_text=text if is_error else "",
        cost_usd=_as_float(payload.get("total_cost_usd")),
        num_turns=_as_int(payload.get("num_turns")),
        duration_ms=_as_int(payload.get("duration_ms")),
        duration_api_ms=_as_int(payload.get("duration_api_ms")),
        model=model,
        usage=TokenUsage(
            input_tokens=_as_int(usage_payload.get("input_tokens")),
            output_tokens=_as_int(usage_payload.get("output_tokens")),
            cache_creation_tokens=_as_optional_int(usage_payload.get("cache_creation_input_tokens")),
            cache_read_tokens=_as_optional_int(usage_payload.get("cache_read_input_tokens")),
        ),
    )


def parse_event_stream_output(stdout: str) -> ParsedOutput:
    """Parse a backend that prints one JSON event per line."""
    raw = (stdout or "").strip()
    if not raw:
        raise OutputParseError("empty_output")

    messages: list[str] = []
    errors: list[str] = []
    session_id = ""
    input_tokens = 0
    output_tokens = 0
    cached_tokens: Optional[int] = None
    turns = 0

    for line in raw.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(event, dict):
            continue
        event_type = event.get("type")
        if event_type == "thread.started":
            session_id = _as_str(event.get("thread_id")) or session_id
        elif event_type == "item.completed":
            item = event.get("item")
            if isinstance(item, dict) and item.get("type") == "agent_message":
                text = _as_str(item.get("text"))
                if text:
                    messages.append(text)
        elif event_type == "turn.completed":
            turns += 1
            usage = event.get("usage")
            if isinstance(usage, dict):
                input_tokens += _as_int(usage.get("input_tokens"))
                output_tokens += _as_int(usage.get("output_tokens"))
                cached = _as_optional_int(usage.get("cached_input_tokens"))
                if cached is not None:
                    cached_tokens = (cached_tokens or 0) + cached
        elif event_type == "turn.failed":
            error = event.get("error")
            if isinstance(error, dict):
                errors.append(_as_str(error.get("message")))
        elif event_type == "error":
            errors.append(_as_str(event.get("message")))

    error_text = "\n".join(message for message in errors if message)
    return ParsedOutput(
        text="\n".join(messages),
        session_id=session_id,
        is_error=bool(errors),
        error_text=error_text,
        num_turns=turns,
        usage=TokenUsage(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cache_read_tokens=cached_tokens,
        ),
    )


OUTPUT_PARSERS: Dict[str, Callable[[str], ParsedOutput]] = {
    "json_envelope": parse_envelope_output,
    "jsonl_events": parse_event_stream_output,
}


def get_output_parser(output_format: str) -> Callable[[str], ParsedOutput]:
    parser = OUTPUT_PARSERS.get(output_format)
    if parser is None:
        raise KeyError(f"No output parser for format: {output_format}")
    return parser
