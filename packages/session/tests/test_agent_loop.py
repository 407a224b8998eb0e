"""
Tests for the agent loop, the mock model, the tool registry and the event bus.
"""
from __future__ import annotations

import logging

import pytest

from pi_session.config import CompactionSettings
from pi_session.core import event_bus as events
from pi_session.core.agent_loop import AgentLoop
from pi_session.core.entries import (
    CompactionEntry,
    MessageEntry,
    ToolCallEntry,
    ToolResultEntry,
    TurnEndEntry,
    TurnStartEntry,
    content_of,
)
from pi_session.core.event_bus import EventBus
from pi_session.core.mock_model import next_output
from pi_session.core.tools import ToolCall, ToolRegistry
from pi_session.errors import ToolError


def _msg(role: str, content: str) -> MessageEntry:
    return MessageEntry(id=content, timestamp="", role=role, content=content)


# ── Mock model ────────────────────────────────────────────────────────────────

def test_model_answers_plain_message():
    assert next_output([_msg("user", "hello")]).final_text == "ok: hello"


def test_model_calls_echo_tool():
    out = next_output([_msg("user", "echo: hi there")])
    assert out.final_text is None
    assert out.tool_call == ToolCall(tool="echo", arg="hi there")


def test_model_calls_shell_tool():
    assert next_output([_msg("user", "sh: ls")]).tool_call == ToolCall(tool="shell", arg="ls")


def test_model_acknowledges_tool_result():
    ok = ToolResultEntry(id="r", timestamp="", tool="echo", ok=True, content="hi")
    failed = ToolResultEntry(id="r", timestamp="", tool="shell", ok=False, content="ShellDisabled")
    assert next_output([_msg("user", "echo: hi"), ok]).final_text == "ack: hi"
    assert next_output([failed]).final_text == "error: ShellDisabled"


def test_model_ignores_answered_message():
    out = next_output([_msg("user", "echo: x"), _msg("assistant", "ack: x")])
    assert out.final_text == "(no user input)"
    assert next_output([]).final_text == "(no user input)"


# ── Tools ─────────────────────────────────────────────────────────────────────

def test_echo_tool():
    result = ToolRegistry().execute(ToolCall(tool="echo", arg="x"))
    assert result.ok
    assert result.content == "x"


def test_shell_disabled_by_default():
    with pytest.raises(ToolError) as info:
        ToolRegistry().execute(ToolCall(tool="shell", arg="true"))
    assert info.value.kind == "ShellDisabled"


def test_unknown_tool():
    with pytest.raises(ToolError) as info:
        ToolRegistry().execute(ToolCall(tool="nope", arg=""))
    assert info.value.kind == "UnknownTool"


@pytest.mark.shell
def test_shell_tool_runs_command():
    result = ToolRegistry(allow_shell=True).execute(ToolCall(tool="shell", arg="printf hi"))
    assert result.content == "hi"


@pytest.mark.shell
def test_shell_tool_failure():
    with pytest.raises(ToolError) as info:
        ToolRegistry(allow_shell=True).execute(ToolCall(tool="shell", arg="exit 3"))
    assert info.value.kind == "ShellCommandFailed"


# ── Event bus ─────────────────────────────────────────────────────────────────

def test_event_bus_delivers_in_order():
    bus = EventBus()
    seen: list[str] = []
    bus.on("x", lambda d: seen.append(f"a{d}"))
    bus.subscribe("x", lambda d: seen.append(f"b{d}"))
    bus.emit("x", 1)
    bus.emit("y", 2)
    assert seen == ["a1", "b1"]


def test_event_bus_unsubscribe_and_clear():
    bus = EventBus()
    seen: list[int] = []
    unsubscribe = bus.on("x", seen.append)
    bus.emit("x", 1)
    unsubscribe()
    bus.emit("x", 2)
    bus.on("x", seen.append)
    bus.clear()
    bus.emit("x", 3)
    assert seen == [1]


def test_event_bus_handler_error_is_logged(caplog):
    bus = EventBus()
    seen: list[int] = []

    def boom(_data):
        raise RuntimeError("boom")

    bus.on("x", boom)
    bus.on("x", seen.append)
    with caplog.at_level(logging.ERROR):
        bus.emit("x", 1)
    assert seen == [1]
    assert "Event handler error" in caplog.text


# ── Agent loop ────────────────────────────────────────────────────────────────

def test_prompt_plain_reply(store):
    loop = AgentLoop(store)
    assert loop.prompt("hello")
    context = store.build_context_entries()
    assert [content_of(e) for e in context] == ["hello", "ok: hello"]
    reply = context[-1]
    assert isinstance(reply, MessageEntry)
    assert reply.role == "assistant"
    assert reply.tokens_est == 3
    assert reply.usage_total_tokens == 5


def test_prompt_echo_tool_flow(store):
    bus = EventBus()
    seen: list[tuple[str, object]] = []
    for channel in (events.TURN_START, events.TURN_END, events.TOOL_EXECUTION_START,
                    events.TOOL_EXECUTION_END, events.MESSAGE_APPEND):
        bus.on(channel, lambda d, c=channel: seen.append((c, d)))

    loop = AgentLoop(store, bus=bus)
    assert loop.prompt("echo: hi")

    context = store.build_context_entries()
    assert [type(e) for e in context] == [MessageEntry, ToolCallEntry, ToolResultEntry, MessageEntry]
    assert content_of(context[-1]) == "ack: hi"

    channels = [c for c, _ in seen]
    assert channels == [
        events.MESSAGE_APPEND,
        events.TURN_START, events.TOOL_EXECUTION_START, events.TOOL_EXECUTION_END, events.TURN_END,
        events.TURN_START, events.MESSAGE_APPEND, events.TURN_END,
    ]
    assert seen[3][1] == {"tool": "echo", "ok": True, "content": "hi"}


def test_turn_records(store):
    AgentLoop(store).prompt("echo: hi")
    entries = store.build_context_entries_verbose()
    starts = [e for e in entries if isinstance(e, TurnStartEntry) and not isinstance(e, TurnEndEntry)]
    ends = [e for e in entries if isinstance(e, TurnEndEntry)]
    assert [s.turn for s in starts] == [1, 2]
    assert [e.phase for e in ends] == ["tool", "final"]
    user_id = entries[0].id
    assert all(s.user_message_id == user_id for s in starts)


def test_turn_counter_resumes_from_log(store):
    AgentLoop(store).prompt("hello")
    loop = AgentLoop(store)
    assert loop.turn == 1
    loop.prompt("again")
    turns = [e.turn for e in store.load_entries() if type(e) is TurnStartEntry]
    assert turns == [1, 2]


def test_shell_disabled_is_recorded(store):
    assert AgentLoop(store).prompt("sh: ls")
    context = store.build_context_entries()
    result = context[2]
    assert isinstance(result, ToolResultEntry)
    assert not result.ok
    assert result.content == "ShellDisabled"
    assert content_of(context[-1]) == "error: ShellDisabled"


def test_step_limit(store):
    loop = AgentLoop(store)
    assert not loop.prompt("echo: hi", max_steps=1)
    assert isinstance(store.build_context_entries()[-1], ToolResultEntry)
    assert loop.run(1)


def test_reply_carries_model_after_change(store):
    store.append_model_change("anthropic", "claude")
    AgentLoop(store).prompt("hello")
    reply = store.build_context_entries()[-1]
    assert reply.provider == "anthropic"
    assert reply.model == "claude"
    assert reply.message["usage"]["totalTokens"] == reply.usage_total_tokens
    assert store.build_session_context().model == {"provider": "anthropic", "model_id": "claude"}


def test_auto_compaction(store):
    bus = EventBus()
    compactions: list[dict] = []
    bus.on(events.COMPACTION, compactions.append)
    settings = CompactionSettings(enabled=True, keep_last=1, format="text", threshold_chars=20)
    loop = AgentLoop(store, bus=bus, compaction=settings)

    loop.prompt("first message that is long")
    loop.prompt("second")

    assert compactions and compactions[0]["reason"] == "auto_chars"
    summaries = [e for e in store.load_entries() if isinstance(e, CompactionEntry)]
    assert summaries[0].threshold_chars == 20
    assert isinstance(store.build_context_entries()[0], CompactionEntry)
