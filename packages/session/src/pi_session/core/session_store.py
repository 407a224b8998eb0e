"""
Session persistence facade.

JSONL file format with tree structure supporting branching sessions.
Each line is a JSON-encoded entry; the first line is the session header.

Every query re-reads and re-resolves the whole file, so the store holds no
state that can go stale besides its id counter. Every append writes two
independent lines: the new entry, then a ``leaf`` record pointing at it.
A crash between the two leaves an orphan entry that the next leaf record
simply does not point at.

Single writer only: nothing here locks the file, and two processes
appending at once can interleave lines.
"""
from __future__ import annotations

import logging
import os
import time
from typing import Any, Callable

from pi_session.config import MAX_LOG_BYTES
from pi_session.errors import EntryNotFoundError

from .codec import append_json_line, read_json_lines, write_json_line
from .context import SessionContext, build_context_entries, build_session_context
from .entries import (
    BranchSummaryEntry,
    CompactionEntry,
    CustomEntry,
    CustomMessageEntry,
    Entry,
    LabelEntry,
    LeafEntry,
    MessageEntry,
    ModelChangeEntry,
    SessionHeader,
    SessionInfoEntry,
    SummaryEntry,
    ThinkingLevelChangeEntry,
    ToolCallEntry,
    ToolResultEntry,
    TurnEndEntry,
    TurnStartEntry,
    id_of,
)
from .migrations import ResolvedLog, resolve_entries
from .tree import (
    LeafState,
    SessionTreeNode,
    build_tree,
    index_by_id,
    resolve_labels,
    resolve_leaf,
    walk_path,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], int]


def wall_clock_ms() -> int:
    return int(time.time() * 1000)


class SessionStore:
    """
    Append-only session log with branch/leaf semantics.

    ``clock`` returns milliseconds and feeds both timestamps and ids
    (``e_<ms>_<seq>``). The sequence counter belongs to this instance.
    """

    def __init__(
        self,
        path: str | os.PathLike[str],
        cwd: str | None = None,
        *,
        clock: Clock | None = None,
        max_bytes: int = MAX_LOG_BYTES,
    ) -> None:
        self.path = os.fspath(path)
        self.cwd = cwd or os.getcwd()
        self._clock = clock or wall_clock_ms
        self._max_bytes = max_bytes
        self._seq = 0

    # ── File lifecycle ─────────────────────────────────────────────────────

    def ensure(self) -> None:
        """Create the file with its header if it is missing or empty."""
        if os.path.exists(self.path) and os.path.getsize(self.path) > 0:
            return
        parent = os.path.dirname(self.path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        now = self._clock()
        header = SessionHeader(id=f"s_{now}", timestamp=str(now), cwd=self.cwd)
        write_json_line(self.path, header.to_dict())
        logger.debug("Created session %s at %s", header.id, self.path)

    def _load(self) -> ResolvedLog:
        return resolve_entries(read_json_lines(self.path, self._max_bytes))

    def load_entries(self) -> list[Entry]:
        """Every resolved record in file order, header first."""
        return self._load().entries

    # ── Ids and appends ────────────────────────────────────────────────────

    def _new_id(self, now: int, existing: set[str]) -> str:
        while True:
            self._seq += 1
            candidate = f"e_{now}_{self._seq}"
            if candidate not in existing:
                return candidate

    def _append(self, cls: type, **fields: Any) -> str:
        """Append ``cls(**fields)`` under the current head, then point the leaf at it."""
        self.ensure()
        entries = self.load_entries()
        head_id = resolve_leaf(entries).head_id
        existing = {i for i in (id_of(e) for e in entries) if i is not None}

        now = self._clock()
        entry_id = self._new_id(now, existing)
        entry = cls(id=entry_id, parent_id=head_id, timestamp=str(now), **fields)

        append_json_line(self.path, entry.to_dict())
        append_json_line(self.path, LeafEntry(timestamp=str(now), target_id=entry_id).to_dict())
        logger.debug("Appended %s %s (parent %s)", entry.type, entry_id, head_id)
        return entry_id

    def append_message(
        self,
        role: str,
        content: str,
        *,
        tokens_est: int | None = None,
        usage_total_tokens: int | None = None,
        provider: str | None = None,
        model: str | None = None,
        thinking: str | None = None,
    ) -> str:
        mirror: dict[str, Any] | None = None
        if provider is not None or model is not None or usage_total_tokens is not None:
            mirror = {"role": role, "content": content}
            if provider is not None:
                mirror["provider"] = provider
            if model is not None:
                mirror["model"] = model
            if usage_total_tokens is not None:
                mirror["usage"] = {"totalTokens": usage_total_tokens}
        return self._append(
            MessageEntry,
            role=role,
            content=content,
            tokens_est=tokens_est,
            usage_total_tokens=usage_total_tokens,
            provider=provider,
            model=model,
            thinking=thinking,
            message=mirror,
        )

    def append_tool_call(self, tool: str, arg: str, tokens_est: int | None = None) -> str:
        return self._append(ToolCallEntry, tool=tool, arg=arg, tokens_est=tokens_est)

    def append_tool_result(
        self,
        tool: str,
        ok: bool,
        content: str,
        tokens_est: int | None = None,
    ) -> str:
        return self._append(ToolResultEntry, tool=tool, ok=ok, content=content, tokens_est=tokens_est)

    def append_turn_start(
        self,
        turn: int,
        user_message_id: str | None = None,
        turn_group_id: str | None = None,
        phase: str | None = None,
    ) -> str:
        return self._append(
            TurnStartEntry,
            turn=turn,
            user_message_id=user_message_id,
            turn_group_id=turn_group_id,
            phase=phase,
        )

    def append_turn_end(
        self,
        turn: int,
        user_message_id: str | None = None,
        turn_group_id: str | None = None,
        phase: str | None = None,
    ) -> str:
        return self._append(
            TurnEndEntry,
            turn=turn,
            user_message_id=user_message_id,
            turn_group_id=turn_group_id,
            phase=phase,
        )

    def append_thinking_level_change(self, level: str) -> str:
        return self._append(ThinkingLevelChangeEntry, thinking_level=level)

    def append_model_change(self, provider: str, model_id: str) -> str:
        return self._append(ModelChangeEntry, provider=provider, model_id=model_id)

    def append_session_info(self, name: str | None = None) -> str:
        """Append a session_info entry (user-defined display name)."""
        return self._append(SessionInfoEntry, name=name)

    def append_compaction(
        self,
        summary: str,
        first_kept_entry_id: str | None,
        tokens_before: int = 0,
        *,
        reason: str | None = None,
        format: str = "text",
        from_hook: bool = False,
        read_files: list[str] | None = None,
        modified_files: list[str] | None = None,
        total_chars: int | None = None,
        total_tokens_est: int | None = None,
        keep_last: int | None = None,
        threshold_chars: int | None = None,
        threshold_tokens_est: int | None = None,
        kind: str = "compaction",
    ) -> str:
        """Append a compaction (or ``kind="summary"``) record and move the leaf onto it."""
        cls = SummaryEntry if kind == "summary" else CompactionEntry
        return self._append(
            cls,
            summary=summary,
            reason=reason,
            format=format,
            first_kept_entry_id=first_kept_entry_id,
            tokens_before=tokens_before,
            from_hook=from_hook,
            read_files=read_files,
            modified_files=modified_files,
            total_chars=total_chars,
            total_tokens_est=total_tokens_est,
            keep_last=keep_last,
            threshold_chars=threshold_chars,
            threshold_tokens_est=threshold_tokens_est,
        )

    def append_branch_summary(self, summary: str, from_id: str, from_hook: bool = False) -> str:
        return self._append(BranchSummaryEntry, from_id=from_id, summary=summary, from_hook=from_hook)

    def append_custom(self, custom_type: str, data: Any = None) -> str:
        """Append a custom entry (extension state storage, NOT in context)."""
        return self._append(CustomEntry, custom_type=custom_type, data=data)

    def append_custom_message(self, custom_type: str, content: str, display: bool = True) -> str:
        """Append a custom_message entry (shown to the model as user content)."""
        return self._append(CustomMessageEntry, custom_type=custom_type, content=content, display=display)

    # ── Navigation and labels ──────────────────────────────────────────────

    def _require_id(self, entries: list[Entry], entry_id: str) -> None:
        if not any(id_of(e) == entry_id for e in entries):
            raise EntryNotFoundError(entry_id)

    def branch_to(self, entry_id: str | None) -> None:
        """Move the head to ``entry_id``; None navigates to the root (empty context)."""
        self.ensure()
        if entry_id is not None:
            self._require_id(self.load_entries(), entry_id)
        append_json_line(self.path, LeafEntry(timestamp=str(self._clock()), target_id=entry_id).to_dict())
        logger.debug("Branched to %s", entry_id)

    def set_label(self, target_id: str, label: str | None) -> None:
        """Set the label of ``target_id``; None deletes it."""
        self.ensure()
        self._require_id(self.load_entries(), target_id)
        append_json_line(
            self.path,
            LabelEntry(timestamp=str(self._clock()), target_id=target_id, label=label).to_dict(),
        )
        logger.debug("Label %s -> %r", target_id, label)

    # ── Queries ────────────────────────────────────────────────────────────

    def get_header(self) -> SessionHeader | None:
        return self._load().header

    def get_version(self) -> int:
        return self._load().version

    def get_session_id(self) -> str:
        header = self.get_header()
        return header.id if header else ""

    def get_leaf(self) -> LeafState:
        return resolve_leaf(self.load_entries())

    def get_leaf_id(self) -> str | None:
        return self.get_leaf().head_id

    def get_entry(self, entry_id: str) -> Entry | None:
        return index_by_id(self.load_entries()).get(entry_id)

    def get_label(self, entry_id: str) -> str | None:
        return resolve_labels(self.load_entries()).get(entry_id)

    def get_labels(self) -> dict[str, str]:
        return resolve_labels(self.load_entries())

    def get_branch(self) -> list[Entry]:
        """All entries on the path from root to head, ignoring compaction."""
        entries = self.load_entries()
        return walk_path(entries, resolve_leaf(entries).head_id)

    def get_tree(self) -> list[SessionTreeNode]:
        return build_tree(self.load_entries())

    def build_context_entries(self) -> list[Entry]:
        """Business-only view of the active branch."""
        return build_context_entries(self.load_entries(), business_only=True)

    def build_context_entries_verbose(self) -> list[Entry]:
        """Structural view of the active branch."""
        return build_context_entries(self.load_entries(), business_only=False)

    def build_session_context(self) -> SessionContext:
        return build_session_context(self.load_entries())

    # ── Compaction ─────────────────────────────────────────────────────────

    def compact(
        self,
        keep_last: int,
        format: str = "text",
        label: str | None = None,
        merge: bool = False,
        reason: str = "manual",
    ) -> str | None:
        """Fold history before the last ``keep_last`` business entries into a summary."""
        from .compaction import compact

        return compact(self, keep_last=keep_last, format=format, label=label, merge=merge, reason=reason)
