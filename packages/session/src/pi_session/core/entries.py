"""
Session entry model.

Each line of a session file is one of the record kinds below, tagged by its
``type`` field. The set is closed: the accessor functions at the bottom of
this module match every kind explicitly and raise ``TypeError`` on anything
else, so a new kind cannot slip through without being handled here.

Wire objects use camelCase keys (``parentId``, ``firstKeptEntryId``, ...);
the dataclasses use snake_case attributes.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, ClassVar, Literal, Union

CURRENT_SESSION_VERSION = 3

EntryType = Literal[
    "session",
    "message",
    "tool_call",
    "tool_result",
    "thinking_level_change",
    "model_change",
    "compaction",
    "branch_summary",
    "custom",
    "custom_message",
    "session_info",
    "turn_start",
    "turn_end",
    "summary",
    "leaf",
    "label",
]

SummaryFormat = Literal["text", "md", "json"]

NON_TEXT_PLACEHOLDER = "[non-text content]"

# Legacy and synthetic roles folded into the three conversational roles.
_ROLE_ALIASES: dict[str, str] = {
    "hookMessage": "user",
    "custom": "user",
    "toolResult": "tool",
    "branchSummary": "user",
    "compactionSummary": "user",
    "bashExecution": "user",
}

# Roles renamed by the v3 schema (stored form, not the folded form).
V3_ROLE_RENAMES: dict[str, str] = {
    "hookMessage": "custom",
    "toolResult": "tool",
}


# ─────────────────────────────────────────────────────────────────────────────
# Record kinds
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class SessionHeader:
    """Session file header (first non-empty line)."""
    id: str
    timestamp: str
    cwd: str
    version: int = CURRENT_SESSION_VERSION
    parent_session: str | None = None

    type: ClassVar[str] = "session"

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "type": self.type,
            "version": self.version,
            "id": self.id,
            "timestamp": self.timestamp,
            "cwd": self.cwd,
        }
        if self.parent_session is not None:
            out["parentSession"] = self.parent_session
        return out


@dataclass
class MessageEntry:
    id: str
    timestamp: str
    role: str
    content: str
    parent_id: str | None = None
    tokens_est: int | None = None
    usage_total_tokens: int | None = None
    provider: str | None = None
    model: str | None = None
    thinking: str | None = None
    message: dict[str, Any] | None = None

    type: ClassVar[str] = "message"

    def to_dict(self) -> dict[str, Any]:
        out = _base_dict(self)
        out["role"] = self.role
        out["content"] = self.content
        _put(out, "tokensEst", self.tokens_est)
        _put(out, "usageTotalTokens", self.usage_total_tokens)
        _put(out, "provider", self.provider)
        _put(out, "model", self.model)
        _put(out, "thinking", self.thinking)
        _put(out, "message", self.message)
        return out


@dataclass
class ToolCallEntry:
    id: str
    timestamp: str
    tool: str
    arg: str
    parent_id: str | None = None
    tokens_est: int | None = None

    type: ClassVar[str] = "tool_call"

    def to_dict(self) -> dict[str, Any]:
        out = _base_dict(self)
        out["tool"] = self.tool
        out["arg"] = self.arg
        _put(out, "tokensEst", self.tokens_est)
        return out


@dataclass
class ToolResultEntry:
    id: str
    timestamp: str
    tool: str
    ok: bool
    content: str
    parent_id: str | None = None
    tokens_est: int | None = None

    type: ClassVar[str] = "tool_result"

    def to_dict(self) -> dict[str, Any]:
        out = _base_dict(self)
        out["tool"] = self.tool
        out["ok"] = self.ok
        out["content"] = self.content
        _put(out, "tokensEst", self.tokens_est)
        return out


@dataclass
class ThinkingLevelChangeEntry:
    id: str
    timestamp: str
    thinking_level: str
    parent_id: str | None = None

    type: ClassVar[str] = "thinking_level_change"

    def to_dict(self) -> dict[str, Any]:
        out = _base_dict(self)
        out["thinkingLevel"] = self.thinking_level
        return out


@dataclass
class ModelChangeEntry:
    id: str
    timestamp: str
    provider: str
    model_id: str
    parent_id: str | None = None

    type: ClassVar[str] = "model_change"

    def to_dict(self) -> dict[str, Any]:
        out = _base_dict(self)
        out["provider"] = self.provider
        out["modelId"] = self.model_id
        return out


@dataclass
class SessionInfoEntry:
    id: str
    timestamp: str
    name: str | None = None
    parent_id: str | None = None

    type: ClassVar[str] = "session_info"

    def to_dict(self) -> dict[str, Any]:
        out = _base_dict(self)
        _put(out, "name", self.name)
        return out


@dataclass
class CompactionEntry:
    """
    Folds the history before it into ``summary``.

    ``first_kept_entry_id`` marks where the retained tail starts; ``None``
    means a legacy record that keeps nothing from before itself.
    """
    id: str
    timestamp: str
    summary: str
    parent_id: str | None = None
    reason: str | None = None
    format: str = "text"
    first_kept_entry_id: str | None = None
    tokens_before: int = 0
    from_hook: bool = False
    read_files: list[str] | None = None
    modified_files: list[str] | None = None
    total_chars: int | None = None
    total_tokens_est: int | None = None
    keep_last: int | None = None
    threshold_chars: int | None = None
    threshold_tokens_est: int | None = None

    type: ClassVar[str] = "compaction"

    def to_dict(self) -> dict[str, Any]:
        out = _base_dict(self)
        out["summary"] = self.summary
        _put(out, "reason", self.reason)
        out["format"] = self.format
        _put(out, "firstKeptEntryId", self.first_kept_entry_id)
        out["tokensBefore"] = self.tokens_before
        if self.from_hook:
            out["fromHook"] = True
        _put(out, "readFiles", self.read_files)
        _put(out, "modifiedFiles", self.modified_files)
        _put(out, "totalChars", self.total_chars)
        _put(out, "totalTokensEst", self.total_tokens_est)
        _put(out, "keepLast", self.keep_last)
        _put(out, "thresholdChars", self.threshold_chars)
        _put(out, "thresholdTokensEst", self.threshold_tokens_est)
        return out


@dataclass
class SummaryEntry(CompactionEntry):
    """The ``summary``-tagged spelling of a compaction record."""

    type: ClassVar[str] = "summary"


@dataclass
class BranchSummaryEntry:
    id: str
    timestamp: str
    from_id: str
    summary: str
    parent_id: str | None = None
    from_hook: bool = False

    type: ClassVar[str] = "branch_summary"

    def to_dict(self) -> dict[str, Any]:
        out = _base_dict(self)
        out["fromId"] = self.from_id
        out["summary"] = self.summary
        if self.from_hook:
            out["fromHook"] = True
        return out


@dataclass
class CustomEntry:
    """Extension state. Never part of the conversation."""
    id: str
    timestamp: str
    custom_type: str
    data: Any = None
    parent_id: str | None = None

    type: ClassVar[str] = "custom"

    def to_dict(self) -> dict[str, Any]:
        out = _base_dict(self)
        out["customType"] = self.custom_type
        _put(out, "data", self.data)
        return out


@dataclass
class CustomMessageEntry:
    id: str
    timestamp: str
    custom_type: str
    content: str
    display: bool = True
    parent_id: str | None = None

    type: ClassVar[str] = "custom_message"

    def to_dict(self) -> dict[str, Any]:
        out = _base_dict(self)
        out["customType"] = self.custom_type
        out["content"] = self.content
        out["display"] = self.display
        return out


@dataclass
class TurnStartEntry:
    id: str
    timestamp: str
    turn: int
    parent_id: str | None = None
    user_message_id: str | None = None
    turn_group_id: str | None = None
    phase: str | None = None

    type: ClassVar[str] = "turn_start"

    def to_dict(self) -> dict[str, Any]:
        out = _base_dict(self)
        out["turn"] = self.turn
        _put(out, "userMessageId", self.user_message_id)
        _put(out, "turnGroupId", self.turn_group_id)
        _put(out, "phase", self.phase)
        return out


@dataclass
class TurnEndEntry(TurnStartEntry):
    type: ClassVar[str] = "turn_end"


@dataclass
class LeafEntry:
    """Moves the branch head. ``target_id=None`` navigates to the root."""
    timestamp: str
    target_id: str | None = None

    type: ClassVar[str] = "leaf"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "timestamp": self.timestamp, "targetId": self.target_id}


@dataclass
class LabelEntry:
    """Sets (or with ``label=None`` deletes) the label of ``target_id``."""
    timestamp: str
    target_id: str
    label: str | None = None

    type: ClassVar[str] = "label"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "timestamp": self.timestamp,
            "targetId": self.target_id,
            "label": self.label,
        }


Entry = Union[
    SessionHeader,
    MessageEntry,
    ToolCallEntry,
    ToolResultEntry,
    ThinkingLevelChangeEntry,
    ModelChangeEntry,
    SessionInfoEntry,
    CompactionEntry,
    SummaryEntry,
    BranchSummaryEntry,
    CustomEntry,
    CustomMessageEntry,
    TurnStartEntry,
    TurnEndEntry,
    LeafEntry,
    LabelEntry,
]

# Kinds whose records carry id/parentId.
ID_BEARING_TYPES: frozenset[str] = frozenset({
    "message",
    "tool_call",
    "tool_result",
    "thinking_level_change",
    "model_change",
    "session_info",
    "compaction",
    "summary",
    "branch_summary",
    "custom",
    "custom_message",
    "turn_start",
    "turn_end",
})

# Kinds a model-facing context keeps.
BUSINESS_TYPES: frozenset[str] = frozenset({
    "message",
    "tool_call",
    "tool_result",
    "compaction",
    "summary",
    "branch_summary",
    "custom_message",
})


def _base_dict(entry: Any) -> dict[str, Any]:
    return {
        "type": entry.type,
        "id": entry.id,
        "parentId": entry.parent_id,
        "timestamp": entry.timestamp,
    }


def _put(out: dict[str, Any], key: str, value: Any) -> None:
    if value is not None:
        out[key] = value


# ─────────────────────────────────────────────────────────────────────────────
# Parsing
# ─────────────────────────────────────────────────────────────────────────────

class _Missing(Exception):
    """A required field is absent or has the wrong type."""


def _req_str(obj: dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = obj.get(key)
        if isinstance(value, str):
            return value
    raise _Missing(keys[0])


def _opt_str(obj: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = obj.get(key)
        if isinstance(value, str):
            return value
    return None


def _opt_int(obj: dict[str, Any], *keys: str) -> int | None:
    for key in keys:
        value = obj.get(key)
        if isinstance(value, bool):
            continue
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
    return None


def _req_int(obj: dict[str, Any], *keys: str) -> int:
    value = _opt_int(obj, *keys)
    if value is None:
        raise _Missing(keys[0])
    return value


def _opt_str_list(obj: dict[str, Any], key: str) -> list[str] | None:
    value = obj.get(key)
    if not isinstance(value, list):
        return None
    return [v for v in value if isinstance(v, str)]


def _timestamp(obj: dict[str, Any]) -> str:
    value = obj.get("timestamp")
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(int(value))
    return ""


def parse_header(obj: dict[str, Any]) -> SessionHeader | None:
    if obj.get("type") != "session":
        return None
    version = _opt_int(obj, "version") or 1
    return SessionHeader(
        id=_opt_str(obj, "id") or "",
        timestamp=_timestamp(obj),
        cwd=_opt_str(obj, "cwd") or "",
        version=version,
        parent_session=_opt_str(obj, "parentSession", "parent_session"),
    )


def entry_from_dict(obj: dict[str, Any]) -> Entry | None:
    """
    Build a typed entry from a wire object.

    Returns None for unknown ``type`` values and for records that lack a
    field their kind requires.
    """
    try:
        return _entry_from_dict(obj)
    except _Missing:
        return None


def _entry_from_dict(obj: dict[str, Any]) -> Entry | None:
    etype = obj.get("type")
    if not isinstance(etype, str):
        return None
    if etype == "session":
        return parse_header(obj)

    ts = _timestamp(obj)

    if etype == "leaf":
        if "targetId" not in obj and "target_id" not in obj:
            raise _Missing("targetId")
        return LeafEntry(timestamp=ts, target_id=_opt_str(obj, "targetId", "target_id"))

    if etype == "label":
        label = obj.get("label")
        return LabelEntry(
            timestamp=ts,
            target_id=_req_str(obj, "targetId", "target_id"),
            label=label if isinstance(label, str) else None,
        )

    if etype not in ID_BEARING_TYPES:
        return None

    entry_id = _req_str(obj, "id")
    parent_id = _opt_str(obj, "parentId", "parent_id")

    if etype == "message":
        if "content" not in obj:
            raise _Missing("content")
        thinking = obj.get("thinking")
        nested = obj.get("message")
        return MessageEntry(
            id=entry_id,
            parent_id=parent_id,
            timestamp=ts,
            role=_req_str(obj, "role"),
            content=extract_text_content(obj["content"]),
            tokens_est=_opt_int(obj, "tokensEst", "tokens_est"),
            usage_total_tokens=_opt_int(obj, "usageTotalTokens"),
            provider=_opt_str(obj, "provider"),
            model=_opt_str(obj, "model"),
            thinking=thinking if isinstance(thinking, str) else None,
            message=nested if isinstance(nested, dict) else None,
        )
    if etype == "tool_call":
        return ToolCallEntry(
            id=entry_id,
            parent_id=parent_id,
            timestamp=ts,
            tool=_req_str(obj, "tool"),
            arg=_req_str(obj, "arg"),
            tokens_est=_opt_int(obj, "tokensEst", "tokens_est"),
        )
    if etype == "tool_result":
        ok = obj.get("ok")
        if not isinstance(ok, bool):
            raise _Missing("ok")
        if "content" not in obj:
            raise _Missing("content")
        return ToolResultEntry(
            id=entry_id,
            parent_id=parent_id,
            timestamp=ts,
            tool=_req_str(obj, "tool"),
            ok=ok,
            content=extract_text_content(obj["content"]),
            tokens_est=_opt_int(obj, "tokensEst", "tokens_est"),
        )
    if etype == "thinking_level_change":
        return ThinkingLevelChangeEntry(
            id=entry_id,
            parent_id=parent_id,
            timestamp=ts,
            thinking_level=_req_str(obj, "thinkingLevel", "level"),
        )
    if etype == "model_change":
        return ModelChangeEntry(
            id=entry_id,
            parent_id=parent_id,
            timestamp=ts,
            provider=_req_str(obj, "provider"),
            model_id=_req_str(obj, "modelId", "model_id", "model"),
        )
    if etype == "session_info":
        return SessionInfoEntry(
            id=entry_id,
            parent_id=parent_id,
            timestamp=ts,
            name=_opt_str(obj, "name"),
        )
    if etype in ("compaction", "summary"):
        cls = SummaryEntry if etype == "summary" else CompactionEntry
        return cls(
            id=entry_id,
            parent_id=parent_id,
            timestamp=ts,
            summary=_req_str(obj, "summary", "content"),
            reason=_opt_str(obj, "reason"),
            format=_opt_str(obj, "format") or "text",
            first_kept_entry_id=_opt_str(obj, "firstKeptEntryId"),
            tokens_before=_opt_int(obj, "tokensBefore") or 0,
            from_hook=obj.get("fromHook") is True,
            read_files=_opt_str_list(obj, "readFiles"),
            modified_files=_opt_str_list(obj, "modifiedFiles"),
            total_chars=_opt_int(obj, "totalChars"),
            total_tokens_est=_opt_int(obj, "totalTokensEst"),
            keep_last=_opt_int(obj, "keepLast"),
            threshold_chars=_opt_int(obj, "thresholdChars"),
            threshold_tokens_est=_opt_int(obj, "thresholdTokensEst"),
        )
    if etype == "branch_summary":
        return BranchSummaryEntry(
            id=entry_id,
            parent_id=parent_id,
            timestamp=ts,
            from_id=_req_str(obj, "fromId"),
            summary=_req_str(obj, "summary"),
            from_hook=obj.get("fromHook") is True,
        )
    if etype == "custom":
        return CustomEntry(
            id=entry_id,
            parent_id=parent_id,
            timestamp=ts,
            custom_type=_req_str(obj, "customType"),
            data=obj.get("data"),
        )
    if etype == "custom_message":
        if "content" not in obj:
            raise _Missing("content")
        return CustomMessageEntry(
            id=entry_id,
            parent_id=parent_id,
            timestamp=ts,
            custom_type=_req_str(obj, "customType"),
            content=extract_text_content(obj["content"]),
            display=obj.get("display", True) is not False,
        )
    # turn_start / turn_end
    cls = TurnEndEntry if etype == "turn_end" else TurnStartEntry
    return cls(
        id=entry_id,
        parent_id=parent_id,
        timestamp=ts,
        turn=_req_int(obj, "turn"),
        user_message_id=_opt_str(obj, "userMessageId"),
        turn_group_id=_opt_str(obj, "turnGroupId"),
        phase=_opt_str(obj, "phase"),
    )


# ─────────────────────────────────────────────────────────────────────────────
# Accessors
# ─────────────────────────────────────────────────────────────────────────────

def extract_text_content(content: Any) -> str:
    """
    Flatten message content to plain text.

    Accepts a string or a list of parts. Text parts are joined with a
    newline; a part without text but with a ``type`` becomes a ``[type]``
    placeholder. Anything else yields ``[non-text content]``.
    """
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return NON_TEXT_PLACEHOLDER

    parts: list[str] = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
            continue
        if not isinstance(block, dict):
            continue
        text = block.get("text")
        if isinstance(text, str):
            parts.append(text)
            continue
        btype = block.get("type")
        if isinstance(btype, str) and btype:
            parts.append(f"[{btype}]")

    if not parts:
        return NON_TEXT_PLACEHOLDER
    return "\n".join(parts)


def normalize_role(role: str) -> str:
    """Fold legacy and synthetic roles into user/assistant/tool."""
    return _ROLE_ALIASES.get(role, role)


def id_of(entry: Entry) -> str | None:
    if isinstance(entry, (SessionHeader, LeafEntry, LabelEntry)):
        return None
    if isinstance(entry, (
        MessageEntry,
        ToolCallEntry,
        ToolResultEntry,
        ThinkingLevelChangeEntry,
        ModelChangeEntry,
        SessionInfoEntry,
        CompactionEntry,
        BranchSummaryEntry,
        CustomEntry,
        CustomMessageEntry,
        TurnStartEntry,
    )):
        return entry.id
    raise TypeError(f"Unknown entry kind: {type(entry).__name__}")


def parent_id_of(entry: Entry) -> str | None:
    if isinstance(entry, (SessionHeader, LeafEntry, LabelEntry)):
        return None
    if isinstance(entry, (
        MessageEntry,
        ToolCallEntry,
        ToolResultEntry,
        ThinkingLevelChangeEntry,
        ModelChangeEntry,
        SessionInfoEntry,
        CompactionEntry,
        BranchSummaryEntry,
        CustomEntry,
        CustomMessageEntry,
        TurnStartEntry,
    )):
        return entry.parent_id
    raise TypeError(f"Unknown entry kind: {type(entry).__name__}")


def role_of(entry: Entry) -> str | None:
    if isinstance(entry, MessageEntry):
        return normalize_role(entry.role)
    if isinstance(entry, CustomMessageEntry):
        return "user"
    if isinstance(entry, ToolResultEntry):
        return "tool"
    return None


def content_of(entry: Entry) -> str | None:
    """Text a reader of the conversation would see for this entry."""
    if isinstance(entry, (MessageEntry, CustomMessageEntry, ToolResultEntry)):
        return entry.content
    if isinstance(entry, ToolCallEntry):
        return entry.arg
    if isinstance(entry, (CompactionEntry, BranchSummaryEntry)):
        return entry.summary
    if isinstance(entry, (
        SessionHeader,
        ThinkingLevelChangeEntry,
        ModelChangeEntry,
        SessionInfoEntry,
        CustomEntry,
        TurnStartEntry,
        LeafEntry,
        LabelEntry,
    )):
        return None
    raise TypeError(f"Unknown entry kind: {type(entry).__name__}")


def is_business_entry(entry: Entry) -> bool:
    return entry.type in BUSINESS_TYPES


def _tokens_for(text: str) -> int:
    return (len(text) + 3) // 4


def estimate_entry_tokens(entry: Entry) -> int:
    """chars/4 heuristic; tool records add a fixed framing overhead."""
    if isinstance(entry, MessageEntry):
        return entry.tokens_est if entry.tokens_est is not None else _tokens_for(entry.content)
    if isinstance(entry, ToolCallEntry):
        return entry.tokens_est if entry.tokens_est is not None else _tokens_for(entry.arg) + 8
    if isinstance(entry, ToolResultEntry):
        return entry.tokens_est if entry.tokens_est is not None else _tokens_for(entry.content) + 8
    text = content_of(entry)
    return _tokens_for(text) if text else 0


def entry_chars(entry: Entry) -> int:
    text = content_of(entry)
    return len(text) if text else 0


def dumps_entry(entry: Entry) -> str:
    return json.dumps(entry.to_dict(), ensure_ascii=False)
