"""
Tests for leaf resolution, path walking, labels and the tree view.
"""
from __future__ import annotations

import logging

from pi_session.core.entries import LabelEntry, LeafEntry, MessageEntry, id_of
from pi_session.core.tree import build_tree, index_by_id, resolve_labels, resolve_leaf, walk_path


def _msg(entry_id: str, parent_id: str | None, content: str = "") -> MessageEntry:
    return MessageEntry(id=entry_id, parent_id=parent_id, timestamp="0", role="user", content=content or entry_id)


def _leaf(target_id: str | None) -> LeafEntry:
    return LeafEntry(timestamp="0", target_id=target_id)


# ── Leaf ──────────────────────────────────────────────────────────────────────

def test_leaf_defaults_to_last_entry():
    state = resolve_leaf([_msg("a", None), _msg("b", "a")])
    assert not state.has_leaf_record
    assert state.head_id == "b"


def test_leaf_follows_last_leaf_record():
    state = resolve_leaf([_msg("a", None), _leaf("a"), _msg("b", "a"), _leaf("b"), _leaf("a")])
    assert state.has_leaf_record
    assert state.head_id == "a"


def test_leaf_null_target_is_root():
    state = resolve_leaf([_msg("a", None), _leaf(None)])
    assert state.at_root
    assert state.head_id is None


def test_leaf_unknown_target_falls_back(caplog):
    with caplog.at_level(logging.WARNING):
        state = resolve_leaf([_msg("a", None), _msg("b", "a"), _leaf("zzz")])
    assert state.head_id == "b"
    assert state.target_id == "zzz"
    assert not state.at_root
    assert "zzz" in caplog.text


def test_empty_log_has_no_head():
    state = resolve_leaf([])
    assert state.head_id is None
    assert not state.at_root


# ── Path ──────────────────────────────────────────────────────────────────────

def test_walk_path_root_to_head():
    entries = [_msg("a", None), _msg("b", "a"), _msg("c", "b"), _msg("d", "a")]
    assert [id_of(e) for e in walk_path(entries, "c")] == ["a", "b", "c"]
    assert [id_of(e) for e in walk_path(entries, "d")] == ["a", "d"]
    assert walk_path(entries, None) == []


def test_walk_path_stops_at_dangling_parent():
    entries = [_msg("b", "missing"), _msg("c", "b")]
    assert [id_of(e) for e in walk_path(entries, "c")] == ["b", "c"]


def test_walk_path_survives_cycle():
    entries = [_msg("a", "b"), _msg("b", "a")]
    assert [id_of(e) for e in walk_path(entries, "a")] == ["b", "a"]


def test_duplicate_ids_first_wins():
    entries = [_msg("a", None, "first"), _msg("a", None, "second")]
    assert index_by_id(entries)["a"].content == "first"


# ── Labels ────────────────────────────────────────────────────────────────────

def test_labels_last_write_wins_and_null_deletes():
    entries = [
        _msg("a", None),
        _msg("b", "a"),
        LabelEntry(timestamp="0", target_id="a", label="one"),
        LabelEntry(timestamp="0", target_id="a", label="two"),
        LabelEntry(timestamp="0", target_id="b", label="x"),
        LabelEntry(timestamp="0", target_id="b", label=None),
    ]
    assert resolve_labels(entries) == {"a": "two"}


# ── Tree ──────────────────────────────────────────────────────────────────────

def test_build_tree():
    entries = [
        _msg("a", None),
        _msg("b", "a"),
        _msg("c", "a"),
        _msg("x", "gone"),
        LabelEntry(timestamp="0", target_id="c", label="alt"),
    ]
    roots = build_tree(entries)
    assert [id_of(r.entry) for r in roots] == ["a", "x"]
    assert [id_of(c.entry) for c in roots[0].children] == ["b", "c"]
    assert roots[0].children[1].label == "alt"
