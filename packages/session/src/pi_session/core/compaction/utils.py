"""
Shared helpers for compaction and branch summarization: entry previews
and the three summary renderings (text, markdown, json).
"""
from __future__ import annotations

import json
import re

from ..entries import (
    BranchSummaryEntry,
    CompactionEntry,
    CustomMessageEntry,
    Entry,
    MessageEntry,
    ToolCallEntry,
    ToolResultEntry,
    normalize_role,
)

PREVIEW_CHARS = 120

SUMMARY_FORMATS = ("text", "md", "json")

MARKDOWN_SECTIONS = (
    "Goal",
    "Constraints & Preferences",
    "Progress",
    "Key Decisions",
    "Next Steps",
    "Critical Context",
)

NEXT_STEP_PLACEHOLDER = "1. Continue from the latest retained context."

_PLACEHOLDER_LINES = {"(none)", "- (none)", "1. (none)", "- [ ] (none)"}
_WS = re.compile(r"\s+")


def _clip(text: str, limit: int = PREVIEW_CHARS) -> str:
    text = _WS.sub(" ", text).strip()
    if len(text) <= limit:
        return text
    return text[: limit - 3].rstrip() + "..."


def preview_entry(entry: Entry) -> str | None:
    """One-line description of a business entry, None for anything else."""
    if isinstance(entry, MessageEntry):
        return f"{normalize_role(entry.role)}: {_clip(entry.content)}"
    if isinstance(entry, ToolCallEntry):
        return f"tool_call {entry.tool}: {_clip(entry.arg)}"
    if isinstance(entry, ToolResultEntry):
        status = "ok" if entry.ok else "error"
        return f"tool_result {entry.tool} ({status}): {_clip(entry.content)}"
    if isinstance(entry, CompactionEntry):
        return f"summary: {_clip(entry.summary)}"
    if isinstance(entry, BranchSummaryEntry):
        return f"branch summary: {_clip(entry.summary)}"
    if isinstance(entry, CustomMessageEntry):
        return f"{entry.custom_type}: {_clip(entry.content)}"
    return None


def preview_lines(entries: list[Entry]) -> list[str]:
    return [p for p in (preview_entry(e) for e in entries) if p]


# ─── Renderings ───────────────────────────────────────────────────────────────

def render_text(entries: list[Entry]) -> str:
    lines = [f"Summary of {len(entries)} earlier entries:"]
    lines.extend(f"- {p}" for p in preview_lines(entries))
    return "\n".join(lines)


def render_json(entries: list[Entry]) -> str:
    first_user = next(
        (e for e in entries if isinstance(e, MessageEntry) and normalize_role(e.role) == "user"),
        None,
    )
    doc = {
        "schema": "pi.summary.v1",
        "entries": len(entries),
        "goal": _clip(first_user.content) if first_user else "",
        "done": [
            f"{e.tool}: {_clip(e.content)}"
            for e in entries
            if isinstance(e, ToolResultEntry) and e.ok
        ],
        "blocked": [
            f"{e.tool}: {_clip(e.content)}"
            for e in entries
            if isinstance(e, ToolResultEntry) and not e.ok
        ],
        "decisions": [],
        "nextSteps": [],
        "criticalContext": preview_lines(entries),
    }
    return json.dumps(doc, ensure_ascii=False, indent=2)


def _bullets(items: list[str]) -> list[str]:
    return [f"- {i}" for i in items] if items else ["- (none)"]


def render_markdown(entries: list[Entry]) -> str:
    """Fixed-section markdown checkpoint. Next Steps is left empty."""
    first_user = next(
        (e for e in entries if isinstance(e, MessageEntry) and normalize_role(e.role) == "user"),
        None,
    )
    done = [
        f"[x] {e.tool}: {_clip(e.content)}"
        for e in entries
        if isinstance(e, ToolResultEntry) and e.ok
    ]
    blocked = [
        f"{e.tool}: {_clip(e.content)}"
        for e in entries
        if isinstance(e, ToolResultEntry) and not e.ok
    ]

    sections: list[tuple[str | None, list[str]]] = [
        ("Goal", [_clip(first_user.content) if first_user else "(unknown)"]),
        ("Constraints & Preferences", ["- (none)"]),
        ("Progress", [
            "### Done",
            *(_bullets(done)),
            "",
            "### In Progress",
            "- [ ] (none)",
            "",
            "### Blocked",
            *(_bullets(blocked)),
        ]),
        ("Key Decisions", ["- (none)"]),
        ("Next Steps", []),
        ("Critical Context", _bullets(preview_lines(entries))),
    ]
    return join_sections(sections)


def render_summary(entries: list[Entry], format: str) -> str:
    if format == "json":
        return render_json(entries)
    if format == "md":
        return render_markdown(entries)
    return render_text(entries)


# ─── Markdown merge ───────────────────────────────────────────────────────────

def split_sections(markdown: str) -> list[tuple[str | None, list[str]]]:
    """Split on ``## `` headings. A leading block without heading has title None."""
    sections: list[tuple[str | None, list[str]]] = []
    title: str | None = None
    body: list[str] = []
    for line in markdown.split("\n"):
        if line.startswith("## "):
            if title is not None or any(l.strip() for l in body):
                sections.append((title, body))
            title = line[3:].strip()
            body = []
        else:
            body.append(line)
    if title is not None or any(l.strip() for l in body):
        sections.append((title, body))
    return [(t, _trim_blank(b)) for t, b in sections]


def _trim_blank(lines: list[str]) -> list[str]:
    start, end = 0, len(lines)
    while start < end and not lines[start].strip():
        start += 1
    while end > start and not lines[end - 1].strip():
        end -= 1
    return lines[start:end]


def join_sections(sections: list[tuple[str | None, list[str]]]) -> str:
    blocks: list[str] = []
    for title, body in sections:
        if title is None:
            blocks.append("\n".join(body))
        elif body:
            blocks.append(f"## {title}\n" + "\n".join(body))
        else:
            blocks.append(f"## {title}")
    return "\n\n".join(blocks)


def _is_placeholder(line: str) -> bool:
    return not line.strip() or line.strip() in _PLACEHOLDER_LINES


def merge_markdown_summary(previous: str, new_previews: list[str]) -> str:
    """
    Patch an earlier markdown summary instead of rebuilding it.

    An empty Next Steps list gets a single placeholder step; the new
    previews are appended under Critical Context.
    """
    sections = split_sections(previous)
    titles = [t for t, _ in sections]
    if "Next Steps" not in titles:
        sections.append(("Next Steps", []))
    if "Critical Context" not in titles:
        sections.append(("Critical Context", []))

    merged: list[tuple[str | None, list[str]]] = []
    for title, body in sections:
        if title == "Next Steps" and all(_is_placeholder(l) for l in body):
            body = [NEXT_STEP_PLACEHOLDER]
        elif title == "Critical Context":
            body = [l for l in body if not _is_placeholder(l)]
            body.extend(f"- {p}" for p in new_previews)
            if not body:
                body = ["- (none)"]
        merged.append((title, body))
    return join_sections(merged)
