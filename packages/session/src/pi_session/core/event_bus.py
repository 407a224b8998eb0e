"""
Event bus for agent loop observability.

Channel-based pub/sub. Handlers run synchronously in subscription order;
a handler that raises is logged and does not stop delivery to the rest.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

TURN_START = "turn_start"
TURN_END = "turn_end"
MESSAGE_APPEND = "message_append"
TOOL_EXECUTION_START = "tool_execution_start"
TOOL_EXECUTION_END = "tool_execution_end"
COMPACTION = "compaction"


class EventBus:
    """Synchronous event bus with channel-based pub/sub."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Callable[[Any], None]]] = {}

    def emit(self, channel: str, data: Any) -> None:
        for handler in list(self._handlers.get(channel, [])):
            try:
                handler(data)
            except Exception:
                logger.exception("Event handler error (%s)", channel)

    def on(self, channel: str, handler: Callable[[Any], None]) -> Callable[[], None]:
        """Subscribe to a channel. Returns an unsubscribe function."""
        self._handlers.setdefault(channel, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(channel)
            if handlers and handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    # Alias matching the subscribe/emit naming used by callers.
    subscribe = on

    def clear(self) -> None:
        """Remove all handlers."""
        self._handlers.clear()
