"""
Context compaction.

Folds everything before the last ``keep_last`` business entries into one
summary record. The log is never rewritten: the writer appends the summary
(marking the retained tail with ``firstKeptEntryId``) and a leaf pointer,
and context assembly does the folding on read.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pi_session.config import CompactionSettings

from ..entries import CompactionEntry, Entry, entry_chars, estimate_entry_tokens, id_of
from .utils import SUMMARY_FORMATS, merge_markdown_summary, preview_lines, render_summary

if TYPE_CHECKING:
    from ..session_store import SessionStore

logger = logging.getLogger(__name__)


# ─── Size estimation ──────────────────────────────────────────────────────────

def estimate_context_size(entries: list[Entry]) -> tuple[int, int]:
    """Return (total_chars, total_tokens_est) for a context."""
    chars = sum(entry_chars(e) for e in entries)
    tokens = sum(estimate_entry_tokens(e) for e in entries)
    return chars, tokens


def compaction_reason(entries: list[Entry], settings: CompactionSettings) -> str | None:
    """``auto_chars`` / ``auto_tokens`` when a threshold is crossed, else None."""
    if not settings.enabled:
        return None
    chars, tokens = estimate_context_size(entries)
    if settings.threshold_chars is not None and chars > settings.threshold_chars:
        return "auto_chars"
    if settings.threshold_tokens is not None and tokens > settings.threshold_tokens:
        return "auto_tokens"
    return None


def should_compact(entries: list[Entry], settings: CompactionSettings) -> bool:
    return compaction_reason(entries, settings) is not None


# ─── Writer ───────────────────────────────────────────────────────────────────

def find_previous_markdown_summary(path: list[Entry]) -> CompactionEntry | None:
    """The latest summary on ``path`` if it is markdown. Older ones are already folded into it."""
    for entry in reversed(path):
        if isinstance(entry, CompactionEntry):
            return entry if entry.format == "md" else None
    return None


def compact(
    store: "SessionStore",
    keep_last: int,
    format: str = "text",
    label: str | None = None,
    merge: bool = False,
    reason: str = "manual",
    thresholds: CompactionSettings | None = None,
) -> str | None:
    """
    Append a summary of the current business context up to the split point.

    Returns the new record's id, or None when nothing precedes the split.
    With ``merge``, the latest summary on the branch is patched with the
    newly folded entries instead of being re-rendered, provided it is
    markdown. Otherwise the summary is rendered fresh.
    """
    if format not in SUMMARY_FORMATS:
        raise ValueError(f"Unknown summary format: {format!r}")
    if keep_last < 0:
        raise ValueError("keep_last must be >= 0")

    path = store.build_context_entries()
    split = max(len(path) - keep_last, 0)
    if split == 0:
        logger.info("Nothing to compact (%d entries, keep_last=%d)", len(path), keep_last)
        return None

    folded = path[:split]
    tail = path[split:]
    first_kept = id_of(tail[0]) if tail else None
    total_chars, total_tokens = estimate_context_size(path)

    summary_format = format
    summary_text: str | None = None
    if merge:
        previous = find_previous_markdown_summary(store.get_branch())
        if previous is not None:
            newly_folded = [e for e in folded if id_of(e) != previous.id]
            summary_text = merge_markdown_summary(previous.summary, preview_lines(newly_folded))
            summary_format = "md"
        else:
            logger.debug("No markdown summary to merge with; rendering fresh")
    if summary_text is None:
        summary_text = render_summary(folded, format)

    summary_id = store.append_compaction(
        summary_text,
        first_kept,
        total_tokens,
        reason=reason,
        format=summary_format,
        total_chars=total_chars,
        total_tokens_est=total_tokens,
        keep_last=keep_last,
        threshold_chars=thresholds.threshold_chars if thresholds else None,
        threshold_tokens_est=thresholds.threshold_tokens if thresholds else None,
    )
    logger.info(
        "Compacted %d entries into %s (kept %d, reason=%s)",
        len(folded), summary_id, len(tail), reason,
    )
    if label:
        store.set_label(summary_id, label)
    return summary_id
