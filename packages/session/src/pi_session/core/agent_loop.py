"""
Agent loop: reads the business context, asks the model for the next move,
and records the turn in the session log.
"""
from __future__ import annotations

import logging

from pi_session.config import CompactionSettings
from pi_session.errors import ToolError

from . import event_bus as events
from .compaction import compact, compaction_reason
from .entries import (
    CustomMessageEntry,
    Entry,
    MessageEntry,
    TurnStartEntry,
    estimate_entry_tokens,
    normalize_role,
)
from .event_bus import EventBus
from .mock_model import next_output
from .session_store import SessionStore
from .tools import ToolRegistry

logger = logging.getLogger(__name__)


def _tokens(text: str) -> int:
    return (len(text) + 3) // 4


def _latest_user_message_id(entries: list[Entry]) -> str | None:
    for entry in reversed(entries):
        if isinstance(entry, MessageEntry) and normalize_role(entry.role) == "user":
            return entry.id
        if isinstance(entry, CustomMessageEntry):
            return entry.id
    return None


class AgentLoop:
    def __init__(
        self,
        store: SessionStore,
        tools: ToolRegistry | None = None,
        bus: EventBus | None = None,
        compaction: CompactionSettings | None = None,
    ) -> None:
        self.store = store
        self.tools = tools or ToolRegistry()
        self.bus = bus or EventBus()
        self.compaction = compaction
        self.turn = self._last_turn()

    def _last_turn(self) -> int:
        self.store.ensure()
        turns = [e.turn for e in self.store.load_entries() if isinstance(e, TurnStartEntry)]
        return max(turns, default=0)

    def prompt(self, text: str, max_steps: int = 8) -> bool:
        """Append a user message and run until the model replies."""
        self.store.append_message("user", text, tokens_est=_tokens(text))
        self.bus.emit(events.MESSAGE_APPEND, {"role": "user", "content": text})
        return self.run(max_steps)

    def run(self, max_steps: int = 8) -> bool:
        """Step until a final reply or ``max_steps`` is reached."""
        for _ in range(max_steps):
            if self.step():
                return True
        logger.warning("Agent loop stopped after %d steps without a final reply", max_steps)
        return False

    def _maybe_compact(self) -> None:
        settings = self.compaction
        if settings is None or not settings.enabled:
            return
        reason = compaction_reason(self.store.build_context_entries(), settings)
        if reason is None:
            return
        summary_id = compact(
            self.store,
            keep_last=settings.keep_last,
            format=settings.format,
            reason=reason,
            thresholds=settings,
        )
        if summary_id:
            self.bus.emit(events.COMPACTION, {"id": summary_id, "reason": reason})

    def step(self) -> bool:
        """
        Run one model step. Returns True when the step produced a final
        assistant reply, False when a tool ran and another step is needed.
        """
        self._maybe_compact()

        ctx = self.store.build_session_context()
        entries = ctx.entries
        user_mid = _latest_user_message_id(entries)

        self.turn += 1
        turn = self.turn
        self.store.append_turn_start(turn, user_mid, user_mid, "step")
        self.bus.emit(events.TURN_START, {"turn": turn})

        out = next_output(entries)

        if out.tool_call is None:
            text = out.final_text or ""
            tokens_est = _tokens(text)
            usage_total = tokens_est + sum(estimate_entry_tokens(e) for e in entries)
            model = ctx.model or {}
            self.store.append_message(
                "assistant",
                text,
                tokens_est=tokens_est,
                usage_total_tokens=usage_total,
                provider=model.get("provider") or None,
                model=model.get("model_id") or None,
            )
            self.bus.emit(events.MESSAGE_APPEND, {"role": "assistant", "content": text})
            self._end_turn(turn, user_mid, "final")
            return True

        call = out.tool_call
        self.store.append_tool_call(call.tool, call.arg, tokens_est=_tokens(call.arg) + 8)
        self.bus.emit(events.TOOL_EXECUTION_START, {"tool": call.tool, "arg": call.arg})

        try:
            result = self.tools.execute(call)
        except ToolError as exc:
            logger.info("Tool %s failed: %s", call.tool, exc)
            self.store.append_tool_result(call.tool, False, exc.kind, tokens_est=_tokens(exc.kind) + 8)
            self.bus.emit(
                events.TOOL_EXECUTION_END,
                {"tool": call.tool, "ok": False, "content": exc.kind},
            )
            self._end_turn(turn, user_mid, "error")
            return False

        self.store.append_tool_result(
            call.tool, True, result.content, tokens_est=_tokens(result.content) + 8,
        )
        self.bus.emit(
            events.TOOL_EXECUTION_END,
            {"tool": call.tool, "ok": True, "content": result.content},
        )
        self._end_turn(turn, user_mid, "tool")
        return False

    def _end_turn(self, turn: int, user_mid: str | None, phase: str) -> None:
        self.store.append_turn_end(turn, user_mid, user_mid, phase)
        self.bus.emit(events.TURN_END, {"turn": turn, "phase": phase})
