"""
Tool registry: ``echo`` and an opt-in ``shell`` tool.
"""
from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass

from pi_session.errors import ToolError

logger = logging.getLogger(__name__)

MAX_OUTPUT_BYTES = 1024 * 1024


@dataclass
class ToolCall:
    tool: str
    arg: str


@dataclass
class ToolResult:
    ok: bool
    content: str


class ToolRegistry:
    def __init__(self, allow_shell: bool = False, timeout: float | None = 60.0) -> None:
        self.allow_shell = allow_shell
        self.timeout = timeout

    def execute(self, call: ToolCall) -> ToolResult:
        if call.tool == "echo":
            return ToolResult(ok=True, content=call.arg)
        if call.tool == "shell":
            return self._run_shell(call.arg)
        raise ToolError("UnknownTool", call.tool)

    def _run_shell(self, command: str) -> ToolResult:
        if not self.allow_shell:
            raise ToolError("ShellDisabled")
        logger.debug("Running shell command: %s", command)
        try:
            proc = subprocess.run(
                ["sh", "-lc", command],
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise ToolError("ShellCommandFailed", str(exc)) from exc

        if proc.returncode != 0:
            raise ToolError("ShellCommandFailed", f"exit code {proc.returncode}")
        stdout = proc.stdout[:MAX_OUTPUT_BYTES]
        return ToolResult(ok=True, content=stdout.decode("utf-8", errors="replace"))
