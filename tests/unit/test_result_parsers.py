import json

import pytest

from agentdeck.runtime.backend.result_parsers import (
    OutputParseError,
    get_output_parser,
    parse_envelope_output,
    parse_event_stream_output,
)


def test_envelope_full_payload():
    payload = {
        "type": "result",
        "result": "All good",
        "session_id": "sess-1",
        "is_error": False,
        "total_cost_usd": 0.0123,
        "num_turns": 3,
        "duration_ms": 4200,
        "duration_api_ms": 3900,
        "usage": {
            "input_tokens": 100,
            "output_tokens": 50,
            "cache_creation_input_tokens": 7,
            "cache_read_input_tokens": 0,
        },
        "modelUsage": {"claude-sonnet-4": {"inputTokens": 100}},
    }
    parsed = parse_envelope_output("\n" + json.dumps(payload) + "\n")
    assert parsed.text == "All good"
    assert parsed.session_id == "sess-1"
    assert parsed.is_error is False
    assert parsed.cost_usd == pytest.approx(0.0123)
    assert parsed.num_turns == 3
    assert parsed.duration_ms == 4200
    assert parsed.duration_api_ms == 3900
    assert parsed.usage.input_tokens == 100
    assert parsed.usage.output_tokens == 50
    assert parsed.usage.cache_creation_tokens == 7
    assert parsed.usage.cache_read_tokens == 0
    assert parsed.model == "claude-sonnet-4"


def test_envelope_missing_fields_default():
    parsed = parse_envelope_output('{"result": "hi"}')
    assert parsed.text == "hi"
    assert parsed.session_id == ""
    assert parsed.cost_usd == 0.0
    assert parsed.num_turns == 0
    assert parsed.usage.input_tokens == 0
    assert parsed.usage.cache_creation_tokens is None
    assert parsed.usage.cache_read_tokens is None


def test_envelope_non_finite_numbers_default():
    raw = (
        '{"result": "ok", "total_cost_usd": NaN, "num_turns": Infinity, "duration_ms": -Infinity, '
        '"usage": {"input_tokens": NaN, "cache_read_input_tokens": Infinity}}'
    )
    parsed = parse_envelope_output(raw)
    assert parsed.text == "ok"
    assert parsed.cost_usd == 0.0
    assert parsed.num_turns == 0
    assert parsed.duration_ms == 0
    assert parsed.usage.input_tokens == 0
    assert parsed.usage.cache_read_tokens is None


def test_envelope_is_error_carries_text():
    parsed = parse_envelope_output('{"result": "Rate limit reached", "is_error": true}')
    assert parsed.is_error is True
    assert parsed.error_text == "Rate limit reached"


@pytest.mark.parametrize("raw", ["", "   \n\t "])
def test_envelope_empty(raw):
    with pytest.raises(OutputParseError) as exc_info:
        parse_envelope_output(raw)
    assert exc_info.value.reason == "empty_output"


@pytest.mark.parametrize("raw", ["not json", "[1, 2]", '{"result": '])
def test_envelope_malformed(raw):
    with pytest.raises(OutputParseError) as exc_info:
        parse_envelope_output(raw)
    assert exc_info.value.reason == "malformed_output"


def _lines(*events):
    return "\n".join(json.dumps(event) if isinstance(event, dict) else event for event in events)


def test_event_stream_collects_messages_and_usage():
    stdout = _lines(
        {"type": "thread.started", "thread_id": "th-42"},
        {"type": "turn.started"},
        {"type": "item.completed", "item": {"type": "reasoning", "text": "hmm"}},
        {"type": "item.completed", "item": {"type": "agent_message", "text": "First"}},
        "progress: not json at all",
        {"type": "item.completed", "item": {"type": "agent_message", "text": ""}},
        {"type": "item.completed", "item": {"type": "agent_message", "text": "Second"}},
        {"type": "turn.completed", "usage": {"input_tokens": 10, "output_tokens": 4, "cached_input_tokens": 2}},
        {"type": "turn.completed", "usage": {"input_tokens": 5, "output_tokens": 1, "cached_input_tokens": 3}},
    )
    parsed = parse_event_stream_output(stdout)
    assert parsed.session_id == "th-42"
    assert parsed.text == "First\nSecond"
    assert parsed.usage.input_tokens == 15
    assert parsed.usage.output_tokens == 5
    assert parsed.usage.cache_read_tokens == 5
    assert parsed.usage.cache_creation_tokens is None
    assert parsed.num_turns == 2
    assert parsed.cost_usd == 0.0
    assert parsed.is_error is False


def test_event_stream_without_cache_counter_leaves_it_absent():
    stdout = _lines({"type": "turn.completed", "usage": {"input_tokens": 1, "output_tokens": 1}})
    assert parse_event_stream_output(stdout).usage.cache_read_tokens is None


def test_event_stream_failure_events():
    stdout = _lines(
        {"type": "thread.started", "thread_id": "th-1"},
        {"type": "error", "message": "stream disconnected"},
        {"type": "turn.failed", "error": {"message": "429 Too Many Requests"}},
    )
    parsed = parse_event_stream_output(stdout)
    assert parsed.is_error is True
    assert "429" in parsed.error_text


def test_event_stream_empty():
    with pytest.raises(OutputParseError) as exc_info:
        parse_event_stream_output("\n\n")
    assert exc_info.value.reason == "empty_output"


def test_parser_lookup():
    assert get_output_parser("json_envelope") is parse_envelope_output
    assert get_output_parser("jsonl_events") is parse_event_stream_output
    with pytest.raises(KeyError):
        get_output_parser("xml")
