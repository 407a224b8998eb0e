"""
Branch summarization for tree navigation.

When moving the head to a different point in the session tree, the branch
being left can be summarized so its context is not lost on the new path.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ..entries import Entry, id_of, is_business_entry
from ..tree import index_by_id, resolve_leaf, walk_path
from .utils import render_text

if TYPE_CHECKING:
    from ..session_store import SessionStore

logger = logging.getLogger(__name__)


@dataclass
class CollectEntriesResult:
    entries: list[Entry] = field(default_factory=list)
    common_ancestor_id: str | None = None


def collect_entries_for_branch_summary(
    entries: list[Entry],
    old_leaf_id: str | None,
    target_id: str | None,
) -> CollectEntriesResult:
    """Entries on the old branch that the target path does not share."""
    if not old_leaf_id:
        return CollectEntriesResult()

    by_id = index_by_id(entries)
    old_path = walk_path(entries, old_leaf_id, by_id)
    target_ids = {id_of(e) for e in walk_path(entries, target_id, by_id)}

    common_ancestor_id: str | None = None
    split = 0
    for i, entry in enumerate(old_path):
        if id_of(entry) not in target_ids:
            break
        common_ancestor_id = id_of(entry)
        split = i + 1

    return CollectEntriesResult(entries=old_path[split:], common_ancestor_id=common_ancestor_id)


def branch_with_summary(store: "SessionStore", target_id: str | None) -> str | None:
    """
    Move the head to ``target_id`` and record what the old branch did.

    Returns the branch summary id, or None when the old branch had nothing
    the target path lacks (the head still moves).
    """
    entries = store.load_entries()
    old_leaf_id = resolve_leaf(entries).head_id
    collected = collect_entries_for_branch_summary(entries, old_leaf_id, target_id)
    abandoned = [e for e in collected.entries if is_business_entry(e)]

    store.branch_to(target_id)
    if not abandoned or old_leaf_id is None:
        return None

    summary = render_text(abandoned)
    summary_id = store.append_branch_summary(summary, from_id=old_leaf_id)
    logger.info("Summarized %d entries from branch %s", len(abandoned), old_leaf_id)
    return summary_id
