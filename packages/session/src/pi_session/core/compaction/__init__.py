"""
Context compaction for long agent sessions.
"""

from .compaction import (
    compact,
    compaction_reason,
    estimate_context_size,
    find_previous_markdown_summary,
    should_compact,
)
from .branch_summarization import (
    CollectEntriesResult,
    branch_with_summary,
    collect_entries_for_branch_summary,
)
from .utils import (
    MARKDOWN_SECTIONS,
    NEXT_STEP_PLACEHOLDER,
    SUMMARY_FORMATS,
    merge_markdown_summary,
    preview_entry,
    preview_lines,
    render_json,
    render_markdown,
    render_summary,
    render_text,
    split_sections,
)

__all__ = [
    "CollectEntriesResult",
    "MARKDOWN_SECTIONS",
    "NEXT_STEP_PLACEHOLDER",
    "SUMMARY_FORMATS",
    "branch_with_summary",
    "collect_entries_for_branch_summary",
    "compact",
    "compaction_reason",
    "estimate_context_size",
    "find_previous_markdown_summary",
    "merge_markdown_summary",
    "preview_entry",
    "preview_lines",
    "render_json",
    "render_markdown",
    "render_summary",
    "render_text",
    "should_compact",
    "split_sections",
]
