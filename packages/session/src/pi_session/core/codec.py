"""
JSONL line codec.

One JSON object per line, UTF-8, newline-terminated. Reading is tolerant:
a line that is not a JSON object is skipped so that one torn or corrupt
line never makes the rest of the log unreadable.
"""
from __future__ import annotations

import json
import logging
import os
from typing import Any

from pi_session.config import MAX_LOG_BYTES
from pi_session.errors import LogTooLargeError

logger = logging.getLogger(__name__)


def encode_line(obj: dict[str, Any]) -> bytes:
    return (json.dumps(obj, ensure_ascii=False, separators=(",", ":")) + "\n").encode("utf-8")


def write_json_line(path: str, obj: dict[str, Any]) -> None:
    """Truncate ``path`` and write ``obj`` as its only line."""
    with open(path, "wb") as f:
        f.write(encode_line(obj))
        f.flush()


def append_json_line(path: str, obj: dict[str, Any]) -> None:
    """Append ``obj`` as one line at the end of an existing file."""
    data = encode_line(obj)
    with open(path, "r+b") as f:
        f.seek(0, os.SEEK_END)
        f.write(data)
        f.flush()


def parse_line(line: str) -> dict[str, Any] | None:
    """Parse one line; None when it is not a JSON object."""
    try:
        obj = json.loads(line)
    except json.JSONDecodeError:
        return None
    return obj if isinstance(obj, dict) else None


def read_json_lines(path: str, max_bytes: int = MAX_LOG_BYTES) -> list[dict[str, Any]]:
    """
    Read every parseable object from a JSONL file.

    Raises FileNotFoundError / OSError from the filesystem and
    LogTooLargeError when the file exceeds ``max_bytes``.
    """
    size = os.path.getsize(path)
    if size > max_bytes:
        raise LogTooLargeError(path, size, max_bytes)

    with open(path, "rb") as f:
        raw = f.read(max_bytes + 1)
    if len(raw) > max_bytes:
        raise LogTooLargeError(path, len(raw), max_bytes)

    text = raw.decode("utf-8", errors="replace")
    out: list[dict[str, Any]] = []
    for lineno, line in enumerate(text.split("\n"), start=1):
        line = line.strip()
        if not line:
            continue
        obj = parse_line(line)
        if obj is None:
            logger.debug("Skipping unparseable line %d in %s", lineno, path)
            continue
        out.append(obj)
    return out
