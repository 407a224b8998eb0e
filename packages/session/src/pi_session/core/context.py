"""
Context assembly: the linear view of the active branch.

Walks the current head back to the root and applies the most recent
compaction on that path. Two projections are offered: structural (every
entry on the path) and business-only (what a model should read).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import cast

from .entries import (
    CompactionEntry,
    Entry,
    MessageEntry,
    ModelChangeEntry,
    ThinkingLevelChangeEntry,
    id_of,
    is_business_entry,
    normalize_role,
)
from .tree import index_by_id, resolve_leaf, walk_path


@dataclass
class SessionContext:
    """Built session context for the agent."""
    entries: list[Entry] = field(default_factory=list)
    thinking_level: str = "off"
    model: dict[str, str] | None = None  # {"provider": ..., "model_id": ...}


def find_last_compaction(path: list[Entry]) -> int:
    """Index of the last compaction/summary record on ``path``, or -1."""
    for i in range(len(path) - 1, -1, -1):
        if isinstance(path[i], CompactionEntry):
            return i
    return -1


def apply_compaction(path: list[Entry], business_only: bool = False) -> list[Entry]:
    """
    Fold ``path`` at its last compaction record.

    Output order is the summary, then the retained window starting at
    ``first_kept_entry_id``, then everything after the summary. Entries
    before the retained window are dropped. A summary without a retained
    window (legacy) drops the whole prefix. Older summaries inside the
    window were folded into this one and are skipped.
    """
    def keep(entry: Entry) -> bool:
        return not business_only or is_business_entry(entry)

    si = find_last_compaction(path)
    if si < 0:
        return [e for e in path if keep(e)]

    summary = cast(CompactionEntry, path[si])
    out: list[Entry] = [summary]

    first_kept = summary.first_kept_entry_id
    if first_kept is not None:
        found = False
        for entry in path[:si]:
            if not found and id_of(entry) == first_kept:
                found = True
            if found and keep(entry) and not isinstance(entry, CompactionEntry):
                out.append(entry)

    out.extend(e for e in path[si + 1:] if keep(e))
    return out


def build_context_entries(entries: list[Entry], business_only: bool = True) -> list[Entry]:
    """The visible conversation for the current head."""
    leaf = resolve_leaf(entries)
    if leaf.head_id is None:
        return []
    path = walk_path(entries, leaf.head_id, index_by_id(entries))
    return apply_compaction(path, business_only=business_only)


def build_session_context(entries: list[Entry]) -> SessionContext:
    """
    Business context plus the thinking level and model in effect.

    Settings are read from the full path, so a model change that was
    folded away by compaction still applies.
    """
    leaf = resolve_leaf(entries)
    if leaf.head_id is None:
        return SessionContext()

    path = walk_path(entries, leaf.head_id, index_by_id(entries))

    thinking_level = "off"
    model: dict[str, str] | None = None
    for entry in path:
        if isinstance(entry, ThinkingLevelChangeEntry):
            thinking_level = entry.thinking_level
        elif isinstance(entry, ModelChangeEntry):
            model = {"provider": entry.provider, "model_id": entry.model_id}
        elif isinstance(entry, MessageEntry) and normalize_role(entry.role) == "assistant":
            if entry.provider:
                model = {"provider": entry.provider, "model_id": entry.model or ""}

    return SessionContext(
        entries=apply_compaction(path, business_only=True),
        thinking_level=thinking_level,
        model=model,
    )
