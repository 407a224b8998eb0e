"""
pi-session: append-only branching session log for agent loops.
"""
from pi_session.config import VERSION as __version__
from pi_session.core.context import SessionContext, build_context_entries, build_session_context
from pi_session.core.entries import (
    CURRENT_SESSION_VERSION,
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
    content_of,
    id_of,
    parent_id_of,
    role_of,
)
from pi_session.core.session_store import SessionStore
from pi_session.core.tree import LeafState, SessionTreeNode
from pi_session.errors import (
    EntryNotFoundError,
    LogTooLargeError,
    PlanError,
    SessionError,
    ToolError,
)

__all__ = [
    "__version__",
    "CURRENT_SESSION_VERSION",
    "BranchSummaryEntry",
    "CompactionEntry",
    "CustomEntry",
    "CustomMessageEntry",
    "Entry",
    "EntryNotFoundError",
    "LabelEntry",
    "LeafEntry",
    "LeafState",
    "LogTooLargeError",
    "MessageEntry",
    "ModelChangeEntry",
    "PlanError",
    "SessionContext",
    "SessionError",
    "SessionHeader",
    "SessionInfoEntry",
    "SessionStore",
    "SessionTreeNode",
    "SummaryEntry",
    "ThinkingLevelChangeEntry",
    "ToolCallEntry",
    "ToolError",
    "ToolResultEntry",
    "TurnEndEntry",
    "TurnStartEntry",
    "build_context_entries",
    "build_session_context",
    "content_of",
    "id_of",
    "parent_id_of",
    "role_of",
]
