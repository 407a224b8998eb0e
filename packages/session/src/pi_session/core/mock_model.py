"""
A tiny deterministic "model" that drives the agent loop without a provider.

Rules, applied to the business context:

- right after a tool result, reply ``ack: <content>`` (or ``error: ...``
  for a failed result);
- an unanswered user message starting with ``echo:`` calls the echo tool, one
  starting with ``sh:`` calls the shell tool;
- anything else is answered with ``ok: <text>``.
"""
from __future__ import annotations

from dataclasses import dataclass

from .entries import Entry, ToolResultEntry, content_of, role_of
from .tools import ToolCall


@dataclass
class ModelOutput:
    final_text: str | None = None
    tool_call: ToolCall | None = None


def next_output(entries: list[Entry]) -> ModelOutput:
    if entries:
        last = entries[-1]
        if isinstance(last, ToolResultEntry):
            prefix = "ack" if last.ok else "error"
            return ModelOutput(final_text=f"{prefix}: {last.content}")

    # Only a user message not yet answered counts.
    last_user: str | None = None
    for entry in reversed(entries):
        role = role_of(entry)
        if role == "assistant":
            break
        if role == "user":
            last_user = content_of(entry)
            break

    if last_user is None:
        return ModelOutput(final_text="(no user input)")
    if last_user.startswith("echo:"):
        return ModelOutput(tool_call=ToolCall(tool="echo", arg=last_user[5:].lstrip(" ")))
    if last_user.startswith("sh:"):
        return ModelOutput(tool_call=ToolCall(tool="shell", arg=last_user[3:].lstrip(" ")))
    return ModelOutput(final_text=f"ok: {last_user}")
