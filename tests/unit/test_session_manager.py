import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from agentdeck.config import config
from agentdeck.models import SessionContextLink, SessionStatus
from agentdeck.services.backend_registry import BackendRegistry
from agentdeck.services.ports import RecordingEventEmitter
from agentdeck.services.session.session_manager import (
    SessionManager,
    SessionNotFoundError,
    SessionRuntimeError,
    SessionValidationError,
    sanitize_input,
)
from agentdeck.services.session.session_pipeline import PipelineSettings
from agentdeck.services.session.session_store import InMemorySessionStore
from agentdeck.services.session.tmux_client import TmuxCommandError
from tests.common.fake_tmux import FakeTmux


class _Clock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class _Linker:
    def __init__(self, fail=False):
        self.fail = fail
        self.outputs = []

    def link_session(self, session):
        if self.fail:
            raise RuntimeError("context store offline")
        return SessionContextLink(workspace_context_id="ws-1", task_context_id=f"task-{session.id}")

    def record_output(self, session, content):
        if self.fail:
            raise RuntimeError("context store offline")
        self.outputs.append((session.id, content))


@pytest.fixture
def tmux():
    return FakeTmux()


@pytest.fixture
def emitter():
    return RecordingEventEmitter()


@pytest.fixture
def clock():
    return _Clock()


@pytest.fixture
def manager(tmux, emitter, clock):
    return SessionManager(
        tmux,
        InMemorySessionStore(),
        BackendRegistry.from_directory(),
        emitter=emitter,
        context_linker=_Linker(),
        clock=clock,
        pipeline_settings=PipelineSettings(stabilize_sec=1.0, min_notify_interval_sec=2.0, min_change_chars=5),
        poll_interval_sec=3600,
    )


def _cmds(tmux, name):
    return [call for call in tmux.calls if call[0] == name]


def test_sanitize_input():
    assert sanitize_input("echo `rm -rf /`; ls | wc > out && $HOME\\") == "echo rm -rf / ls  wc  out  HOME"
    assert sanitize_input("line one\nline two\r\n\tthree") == "line one line two three"
    assert sanitize_input("\x1b[Aup\x07") == "[Aup"


@pytest.mark.asyncio
async def test_create_session_spawns_tmux_and_links_context(manager, tmux, tmp_path):
    record = await manager.create_session("chat-1", workdir=str(tmp_path), provider="codex")
    try:
        assert record.status is SessionStatus.ACTIVE
        assert record.tmux_session == f"{config.SESSIONS.NAME_PREFIX}-{record.id}"
        assert record.workspace_context_id == "ws-1"
        assert record.task_context_id == f"task-{record.id}"
        assert _cmds(tmux, "new-session") == [("new-session", record.tmux_session, str(tmp_path), ("codex",))]
        assert manager.is_polling(record.id)
        again = await manager.create_session("chat-1", workdir=str(tmp_path), provider="codex")
        assert again.id == record.id
        assert len(_cmds(tmux, "new-session")) == 1
    finally:
        await manager.shutdown()


@pytest.mark.asyncio
async def test_create_session_validation(manager, tmux, tmp_path):
    with pytest.raises(SessionValidationError):
        await manager.create_session("o", workdir=str(tmp_path), provider="mystery")
    with pytest.raises(SessionValidationError):
        await manager.create_session("o", workdir=str(tmp_path / "missing"))
    with pytest.raises(SessionValidationError):
        await manager.create_session("o", workdir=str(tmp_path), name="  ")
    tmux.fail_new_session = True
    with pytest.raises(SessionRuntimeError):
        await manager.create_session("o", workdir=str(tmp_path))


@pytest.mark.asyncio
async def test_context_link_failure_is_not_fatal(tmux, emitter, tmp_path):
    manager = SessionManager(
        tmux,
        InMemorySessionStore(),
        BackendRegistry.from_directory(),
        emitter=emitter,
        context_linker=_Linker(fail=True),
        poll_interval_sec=3600,
    )
    record = await manager.create_session("o", workdir=str(tmp_path))
    assert record.workspace_context_id is None
    await manager.shutdown()


@pytest.mark.asyncio
async def test_connect_existing_tmux_target(manager, tmux):
    tmux.sessions["work"] = "/srv/app"
    tmux.windows["work"] = {"agent"}

    record = await manager.connect_session("work:agent", "chat-9")
    try:
        assert record.tmux_session == "work"
        assert record.tmux_window == "agent"
        assert record.workdir == "/srv/app"
        assert record.tmux_target == "work:agent"

        reowned = await manager.connect_session("work:agent", "chat-10")
        assert reowned.id == record.id
        assert manager.get_session(record.id).owner == "chat-10"
    finally:
        await manager.shutdown()


@pytest.mark.asyncio
async def test_connect_rejects_dead_or_invalid_target(manager):
    with pytest.raises(SessionNotFoundError):
        await manager.connect_session("ghost", "o")
    with pytest.raises(SessionValidationError):
        await manager.connect_session("bad target; rm", "o")


@pytest.mark.asyncio
async def test_send_input_sanitizes_then_submits(manager, tmux, tmp_path):
    record = await manager.create_session("o", workdir=str(tmp_path))
    try:
        assert await manager.send_input(record.id, "run `tests`; now") is True
        sends = [call for call in tmux.calls if call[0] in ("send-literal", "send-key")]
        assert sends == [
            ("send-literal", record.tmux_session, "run tests now"),
            ("send-key", record.tmux_session, "Enter"),
        ]
    finally:
        await manager.shutdown()


@pytest.mark.asyncio
async def test_send_input_retries_transient_errors(manager, tmux, tmp_path):
    manager._sleep = lambda _delay: asyncio.sleep(0)
    record = await manager.create_session("o", workdir=str(tmp_path))
    tmux.send_errors = [TmuxCommandError(["send-keys"], "no current client", 1)]
    try:
        assert await manager.send_input(record.id, "hello") is True
        assert ("send-literal", record.tmux_session, "hello") in tmux.calls
    finally:
        await manager.shutdown()


@pytest.mark.asyncio
async def test_send_input_failure_emits_error(manager, tmux, emitter, tmp_path):
    record = await manager.create_session("o", workdir=str(tmp_path))
    tmux.send_errors = [TmuxCommandError(["send-keys"], "can't find pane", 1)]
    try:
        assert await manager.send_input(record.id, "hello") is False
        assert emitter.of_type("session.error")[0]["session_id"] == record.id
    finally:
        await manager.shutdown()


@pytest.mark.asyncio
async def test_send_input_to_dead_session_closes_it(manager, tmux, emitter, tmp_path):
    record = await manager.create_session("o", workdir=str(tmp_path))
    tmux.sessions.clear()
    assert await manager.send_input(record.id, "hello") is False
    assert manager.get_session(record.id).status is SessionStatus.CLOSED
    assert emitter.of_type("session.closed") == [{"session_id": record.id, "reason": "target_gone"}]
    assert await manager.send_input("unknown", "x") is False


@pytest.mark.asyncio
async def test_close_window_scoped_session_kills_only_window(manager, tmux, emitter):
    tmux.sessions["work"] = "/srv"
    tmux.windows["work"] = {"agent", "shell"}
    record = await manager.connect_session("work:agent", "o")

    assert await manager.close_session(record.id) is True
    assert _cmds(tmux, "kill-window") == [("kill-window", "work:agent")]
    assert _cmds(tmux, "kill-session") == []
    assert not manager.is_polling(record.id)
    assert await manager.close_session(record.id) is False
    assert len(emitter.of_type("session.closed")) == 1


@pytest.mark.asyncio
async def test_close_owned_session_kills_session(manager, tmux, tmp_path):
    record = await manager.create_session("o", workdir=str(tmp_path))
    assert await manager.close_session(record.id) is True
    assert _cmds(tmux, "kill-session") == [("kill-session", record.tmux_session)]
    assert manager.list_sessions() == []
    assert [r.id for r in manager.list_sessions(include_closed=True)] == [record.id]


@pytest.mark.asyncio
async def test_poll_emits_delta_after_stabilization(manager, tmux, emitter, clock, tmp_path):
    record = await manager.create_session("o", workdir=str(tmp_path))
    target = record.tmux_session
    try:
        tmux.screens[target] = "⏺ Building the project now\n✻ Thinking…"
        assert await manager.poll_once(record.id) is None
        clock.now += 1.0
        delta = await manager.poll_once(record.id)
        assert delta.lines == ["Building the project now"]
        events = emitter.of_type("session.screen_delta")
        assert events[0]["content"] == "Building the project now"
        assert events[0]["session_id"] == record.id
        assert manager.get_output_buffer(record.id) == ["Building the project now"]
        assert manager._context_linker.outputs == [(record.id, "Building the project now")]
    finally:
        await manager.shutdown()


@pytest.mark.asyncio
async def test_output_buffer_is_bounded(manager, tmux, clock, tmp_path):
    record = await manager.create_session("o", workdir=str(tmp_path))
    target = record.tmux_session
    try:
        for index in range(config.SESSIONS.OUTPUT_BUFFER_SIZE + 5):
            tmux.screens[target] = f"output block number {index}"
            await manager.poll_once(record.id)
            clock.now += 2.5
            await manager.poll_once(record.id)
        buffer = manager.get_output_buffer(record.id)
        assert len(buffer) == config.SESSIONS.OUTPUT_BUFFER_SIZE
        assert buffer[-1] == f"output block number {config.SESSIONS.OUTPUT_BUFFER_SIZE + 4}"
    finally:
        await manager.shutdown()


@pytest.mark.asyncio
async def test_transient_capture_error_skips_tick(manager, tmux, tmp_path):
    record = await manager.create_session("o", workdir=str(tmp_path))
    tmux.capture_errors = [TmuxCommandError(["capture-pane"], "no current client", 1)]
    try:
        assert await manager.poll_once(record.id) is None
        assert manager.get_session(record.id).status is SessionStatus.ACTIVE
    finally:
        await manager.shutdown()


@pytest.mark.asyncio
async def test_capture_failure_emits_error_and_closes(manager, tmux, emitter, tmp_path):
    record = await manager.create_session("o", workdir=str(tmp_path))
    tmux.capture_errors = [TmuxCommandError(["capture-pane"], "can't find session", 1)]
    assert await manager.poll_once(record.id) is None
    assert emitter.of_type("session.error")[0]["session_id"] == record.id
    assert emitter.of_type("session.closed") == [{"session_id": record.id, "reason": "capture_failed"}]
    assert manager.get_session(record.id).status is SessionStatus.CLOSED
    assert not manager.is_polling(record.id)


@pytest.mark.asyncio
async def test_start_resumes_live_and_closes_dead_sessions(tmux, emitter, tmp_path):
    store = InMemorySessionStore()
    registry = BackendRegistry.from_directory()
    first = SessionManager(tmux, store, registry, emitter=emitter, poll_interval_sec=3600)
    live = await first.create_session("a", workdir=str(tmp_path), name="live")
    dead = await first.create_session("a", workdir=str(tmp_path), name="dead")
    await first.shutdown()
    tmux.sessions.pop(dead.tmux_session)

    restarted = SessionManager(tmux, store, registry, emitter=emitter, poll_interval_sec=3600)
    await restarted.start()
    try:
        assert restarted.is_polling(live.id)
        assert not restarted.is_polling(dead.id)
        assert store.get(dead.id).status is SessionStatus.CLOSED
    finally:
        await restarted.shutdown()


@pytest.mark.asyncio
async def test_reconcile_closes_idle_and_registers_discovered(tmux, emitter, tmp_path):
    now = {"value": datetime(2026, 1, 1, tzinfo=timezone.utc)}
    manager = SessionManager(
        tmux,
        InMemorySessionStore(),
        BackendRegistry.from_directory(),
        emitter=emitter,
        now=lambda: now["value"],
        poll_interval_sec=3600,
    )
    manager._idle_timeout_sec = 60
    stale = await manager.create_session("o", workdir=str(tmp_path))
    tmux.sessions[f"{config.SESSIONS.NAME_PREFIX}-external"] = "/opt/ext"
    tmux.sessions["unrelated"] = "/tmp"
    now["value"] += timedelta(seconds=120)

    try:
        assert await manager.reconcile_sessions() is True
        assert manager.get_session(stale.id).status is SessionStatus.CLOSED
        active = manager.list_sessions()
        assert [record.tmux_session for record in active] == [f"{config.SESSIONS.NAME_PREFIX}-external"]
        assert active[0].owner == ""
        assert active[0].workdir == "/opt/ext"
        discovered = {item.tmux_session: item.registered for item in await manager.discover_sessions()}
        assert discovered == {f"{config.SESSIONS.NAME_PREFIX}-external": True, "unrelated": False}
        assert await manager.reconcile_sessions() is False
    finally:
        await manager.shutdown()


@pytest.mark.asyncio
async def test_execute_task_waits_for_idle_and_extracts(tmux, emitter, tmp_path):
    clock = _Clock()
    manager = SessionManager(
        tmux,
        InMemorySessionStore(),
        BackendRegistry.from_directory(),
        emitter=emitter,
        clock=clock,
        poll_interval_sec=3600,
    )
    record = await manager.create_session("o", workdir=str(tmp_path))
    target = record.tmux_session
    screens = iter(
        ["❯ summarize the repo\n✻ Thinking…"] * 3
        + ["❯ summarize the repo\n⏺ The repo has two packages.\n\n❯ "] * 20
    )

    async def fake_sleep(_delay):
        clock.now += 1.0
        tmux.screens[target] = next(screens)

    manager._sleep = fake_sleep
    try:
        result = await manager.execute_task(record.id, "summarize the repo", timeout_sec=60)
        assert result.success is True
        assert result.timed_out is False
        assert result.text == "The repo has two packages."
    finally:
        await manager.shutdown()


@pytest.mark.asyncio
async def test_execute_task_times_out_with_partial_text(tmux, emitter, tmp_path):
    clock = _Clock()
    manager = SessionManager(
        tmux,
        InMemorySessionStore(),
        BackendRegistry.from_directory(),
        emitter=emitter,
        clock=clock,
        poll_interval_sec=3600,
    )
    record = await manager.create_session("o", workdir=str(tmp_path))
    tmux.screens[record.tmux_session] = "go now\nPartial answer so far\n✻ Brewing…"

    async def fake_sleep(_delay):
        clock.now += 5.0

    manager._sleep = fake_sleep
    try:
        result = await manager.execute_task(record.id, "go now", timeout_sec=20)
        assert result.timed_out is True
        assert result.success is False
        assert result.text == "Partial answer so far"
        with pytest.raises(SessionNotFoundError):
            await manager.execute_task("missing", "x")
    finally:
        await manager.shutdown()


@pytest.mark.asyncio
async def test_execute_task_ignores_earlier_answers_to_same_prompt(tmux, emitter, tmp_path):
    clock = _Clock()
    manager = SessionManager(
        tmux,
        InMemorySessionStore(),
        BackendRegistry.from_directory(),
        emitter=emitter,
        clock=clock,
        poll_interval_sec=3600,
    )
    record = await manager.create_session("o", workdir=str(tmp_path))
    tmux.screens[record.tmux_session] = (
        "❯ continue\n⏺ Old answer from yesterday.\n\n❯ continue\n⏺ Fresh answer for this task.\n\n❯ "
    )

    async def fake_sleep(_delay):
        clock.now += 1.0

    manager._sleep = fake_sleep
    try:
        result = await manager.execute_task(record.id, "continue", timeout_sec=60)
        assert result.success is True
        assert result.text == "Fresh answer for this task."
    finally:
        await manager.shutdown()
