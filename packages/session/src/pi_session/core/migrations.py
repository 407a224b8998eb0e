"""
Schema-aware replay of a session file.

The header's ``version`` decides how every later record is read:

- v1: records carry no id/parentId. Ids are synthesized (``v1-<n>``) and
  each record's parent is the record before it. Compaction records point
  at their retained tail with ``firstKeptEntryIndex`` (position among
  id-bearing records), resolved to an id once the whole file is scanned.
- v2: explicit ids and id-based ``firstKeptEntryId``; roles as written.
- v3: as v2, plus the ``hookMessage``/``toolResult`` role renames and the
  nested ``message`` mirror (provider/model/usage).

Nothing here rewrites the file; migration happens on every read.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from .entries import (
    CURRENT_SESSION_VERSION,
    ID_BEARING_TYPES,
    V3_ROLE_RENAMES,
    CompactionEntry,
    Entry,
    SessionHeader,
    entry_from_dict,
    extract_text_content,
    id_of,
    parse_header,
)

logger = logging.getLogger(__name__)

_COMPACTION_TYPES = ("compaction", "summary")


@dataclass
class ResolvedLog:
    """Typed view of a session file after version-specific replay."""
    header: SessionHeader | None
    version: int
    entries: list[Entry] = field(default_factory=list)


def calculate_usage_total(usage: dict[str, Any]) -> int | None:
    """Total tokens from a provider usage dict."""
    total = usage.get("totalTokens")
    if isinstance(total, int) and not isinstance(total, bool):
        return total
    parts = [usage.get(k) for k in ("input", "output", "cacheRead", "cacheWrite")]
    nums = [p for p in parts if isinstance(p, int) and not isinstance(p, bool)]
    return sum(nums) if nums else None


def _resolve_v1_record(
    obj: dict[str, Any],
    synthesized_index: int,
    prev_id: str | None,
) -> tuple[dict[str, Any], int | None]:
    """Give a v1 record an id and a parent; pull out its legacy tail index."""
    obj = dict(obj)
    if not isinstance(obj.get("id"), str):
        obj["id"] = f"v1-{synthesized_index}"
        obj["parentId"] = prev_id
    elif "parentId" not in obj and "parent_id" not in obj:
        obj["parentId"] = prev_id

    first_kept_index: int | None = None
    if obj.get("type") in _COMPACTION_TYPES:
        raw = obj.pop("firstKeptEntryIndex", None)
        if isinstance(raw, int) and not isinstance(raw, bool):
            first_kept_index = raw
    return obj, first_kept_index


def _resolve_v3_message(obj: dict[str, Any]) -> dict[str, Any]:
    obj = dict(obj)
    nested = obj.get("message")
    if not isinstance(nested, dict):
        nested = None

    if nested is not None:
        for key in ("role", "content", "provider", "model"):
            if key not in obj and key in nested:
                obj[key] = nested[key]
        usage = nested.get("usage")
        if "usageTotalTokens" not in obj and isinstance(usage, dict):
            total = calculate_usage_total(usage)
            if total is not None:
                obj["usageTotalTokens"] = total

    role = obj.get("role")
    if isinstance(role, str) and role in V3_ROLE_RENAMES:
        obj["role"] = V3_ROLE_RENAMES[role]

    if nested is not None:
        mirror = dict(nested)
        if isinstance(obj.get("role"), str):
            mirror["role"] = obj["role"]
        if "content" in obj and "content" in mirror:
            if extract_text_content(mirror["content"]) != extract_text_content(obj["content"]):
                mirror["content"] = obj["content"]
        for key in ("provider", "model"):
            if isinstance(obj.get(key), str):
                mirror[key] = obj[key]
        total = obj.get("usageTotalTokens")
        if isinstance(total, int) and not isinstance(total, bool):
            usage = mirror.get("usage")
            mirror["usage"] = {**usage, "totalTokens": total} if isinstance(usage, dict) else {"totalTokens": total}
        obj["message"] = mirror
    return obj


def resolve_entries(objects: list[dict[str, Any]]) -> ResolvedLog:
    """
    Replay parsed wire objects into typed entries.

    Records that are unknown or miss a required field are skipped. The
    header, when present, is the first element of ``entries``.
    """
    header: SessionHeader | None = None
    if objects and objects[0].get("type") == "session":
        header = parse_header(objects[0])
        body = objects[1:]
    else:
        body = objects

    version = header.version if header else 1
    if version > CURRENT_SESSION_VERSION:
        logger.warning(
            "Session version %d is newer than %d; reading with v%d rules",
            version, CURRENT_SESSION_VERSION, CURRENT_SESSION_VERSION,
        )
        version = CURRENT_SESSION_VERSION
    elif version < 1:
        version = 1

    entries: list[Entry] = [header] if header else []
    id_order: list[str] = []
    pending: list[tuple[CompactionEntry, int]] = []
    prev_id: str | None = None

    for obj in body:
        etype = obj.get("type")
        if etype == "session":
            logger.debug("Ignoring extra session header")
            continue

        first_kept_index: int | None = None
        if version == 1 and etype in ID_BEARING_TYPES:
            obj, first_kept_index = _resolve_v1_record(obj, len(id_order), prev_id)
        elif version >= 3 and etype == "message":
            obj = _resolve_v3_message(obj)

        entry = entry_from_dict(obj)
        if entry is None:
            logger.debug("Skipping unrecognized or incomplete %r record", etype)
            continue

        entry_id = id_of(entry)
        if entry_id is not None:
            id_order.append(entry_id)
            prev_id = entry_id

        if (
            first_kept_index is not None
            and isinstance(entry, CompactionEntry)
            and entry.first_kept_entry_id is None
        ):
            pending.append((entry, first_kept_index))
        entries.append(entry)

    # Second pass: every synthesized id is now known.
    for entry, index in pending:
        if 0 <= index < len(id_order):
            entry.first_kept_entry_id = id_order[index]
        else:
            logger.warning(
                "Compaction %s has out-of-range firstKeptEntryIndex %d", entry.id, index,
            )

    return ResolvedLog(header=header, version=version, entries=entries)
