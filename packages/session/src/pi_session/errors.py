"""
Error types raised by the session log and its collaborators.

Parse-level problems (bad JSON, unknown record kinds, missing fields) are
never raised: the loader skips those lines. Only the conditions below reach
the caller.
"""
from __future__ import annotations


class SessionError(Exception):
    """Base class for session log failures."""


class EntryNotFoundError(SessionError, KeyError):
    """A branch or label target does not occur in the log."""

    def __init__(self, entry_id: str) -> None:
        super().__init__(entry_id)
        self.entry_id = entry_id

    def __str__(self) -> str:
        return f"Entry not found: {self.entry_id}"


class LogTooLargeError(SessionError):
    """The session file exceeds the configured read cap."""

    def __init__(self, path: str, size: int, limit: int) -> None:
        super().__init__(f"Session file {path} is {size} bytes (limit {limit})")
        self.path = path
        self.size = size
        self.limit = limit


class PlanError(ValueError):
    """Plan validation, execution or verification failure."""

    def __init__(self, kind: str, message: str = "") -> None:
        super().__init__(f"{kind}: {message}" if message else kind)
        self.kind = kind


class ToolError(Exception):
    """A tool call could not be executed."""

    def __init__(self, kind: str, message: str = "") -> None:
        super().__init__(f"{kind}: {message}" if message else kind)
        self.kind = kind
