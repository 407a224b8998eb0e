"""
Branch head resolution and tree traversal over a replayed entry list.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .entries import Entry, LabelEntry, LeafEntry, id_of, parent_id_of

logger = logging.getLogger(__name__)


@dataclass
class LeafState:
    """
    Where the branch head currently is.

    ``head_id`` is None either when the log has no entries yet or when the
    last leaf record explicitly navigated to the root (``has_leaf_record``
    set and ``target_id`` None).
    """
    has_leaf_record: bool
    target_id: str | None
    head_id: str | None

    @property
    def at_root(self) -> bool:
        return self.has_leaf_record and self.target_id is None


@dataclass
class SessionTreeNode:
    """Tree node for get_tree()."""
    entry: Entry
    children: list["SessionTreeNode"] = field(default_factory=list)
    label: str | None = None


def index_by_id(entries: list[Entry]) -> dict[str, Entry]:
    """Map id -> entry. The first record with a given id wins."""
    by_id: dict[str, Entry] = {}
    for entry in entries:
        entry_id = id_of(entry)
        if entry_id is None:
            continue
        if entry_id in by_id:
            logger.debug("Duplicate entry id %s ignored", entry_id)
            continue
        by_id[entry_id] = entry
    return by_id


def resolve_leaf(entries: list[Entry]) -> LeafState:
    last_leaf: LeafEntry | None = None
    last_id: str | None = None
    known: set[str] = set()

    for entry in entries:
        if isinstance(entry, LeafEntry):
            last_leaf = entry
            continue
        entry_id = id_of(entry)
        if entry_id is not None:
            last_id = entry_id
            known.add(entry_id)

    if last_leaf is None:
        return LeafState(has_leaf_record=False, target_id=None, head_id=last_id)
    if last_leaf.target_id is None:
        return LeafState(has_leaf_record=True, target_id=None, head_id=None)
    if last_leaf.target_id in known:
        return LeafState(has_leaf_record=True, target_id=last_leaf.target_id, head_id=last_leaf.target_id)

    logger.warning("Leaf target %s not found; falling back to last entry", last_leaf.target_id)
    return LeafState(has_leaf_record=True, target_id=last_leaf.target_id, head_id=last_id)


def resolve_labels(entries: list[Entry]) -> dict[str, str]:
    """Effective labels: the last label record per target wins, None deletes."""
    labels: dict[str, str] = {}
    for entry in entries:
        if not isinstance(entry, LabelEntry):
            continue
        if entry.label is None:
            labels.pop(entry.target_id, None)
        else:
            labels[entry.target_id] = entry.label
    return labels


def walk_path(
    entries: list[Entry],
    head_id: str | None,
    by_id: dict[str, Entry] | None = None,
) -> list[Entry]:
    """
    Entries from the root to ``head_id`` following parent links.

    A dangling parent link ends the walk; so does a link back into the
    path already collected.
    """
    if head_id is None:
        return []
    if by_id is None:
        by_id = index_by_id(entries)

    path: list[Entry] = []
    seen: set[str] = set()
    current = by_id.get(head_id)
    while current is not None:
        current_id = id_of(current)
        if current_id in seen:
            logger.warning("Parent cycle at %s", current_id)
            break
        if current_id is not None:
            seen.add(current_id)
        path.append(current)
        parent = parent_id_of(current)
        current = by_id.get(parent) if parent else None
    path.reverse()
    return path


def build_tree(entries: list[Entry], labels: dict[str, str] | None = None) -> list[SessionTreeNode]:
    """Return root nodes of the id/parentId forest."""
    labels = labels if labels is not None else resolve_labels(entries)
    nodes: dict[str, SessionTreeNode] = {}
    order: list[SessionTreeNode] = []

    for entry in entries:
        entry_id = id_of(entry)
        if entry_id is None or entry_id in nodes:
            continue
        node = SessionTreeNode(entry=entry, label=labels.get(entry_id))
        nodes[entry_id] = node
        order.append(node)

    roots: list[SessionTreeNode] = []
    for node in order:
        parent = parent_id_of(node.entry)
        if parent and parent in nodes and parent != id_of(node.entry):
            nodes[parent].children.append(node)
        else:
            roots.append(node)
    return roots
