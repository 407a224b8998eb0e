"""
Configuration paths, limits and settings.

Layout follows the pi agent directory convention (~/.pi/agent/*).
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

APP_NAME: str = "pi-session"
CONFIG_DIR_NAME: str = ".pi"
VERSION: str = "0.1.0"

ENV_AGENT_DIR: str = "PI_SESSION_DIR"
ENV_MAX_BYTES: str = "PI_SESSION_MAX_BYTES"

DEFAULT_MAX_LOG_BYTES: int = 64 * 1024 * 1024
DEFAULT_SESSION_FILE: str = "default.jsonl"
DEFAULT_RUNS_DIR: str = "runs"


def _max_log_bytes() -> int:
    raw = os.environ.get(ENV_MAX_BYTES)
    if not raw:
        return DEFAULT_MAX_LOG_BYTES
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r", ENV_MAX_BYTES, raw)
        return DEFAULT_MAX_LOG_BYTES
    return value if value > 0 else DEFAULT_MAX_LOG_BYTES


MAX_LOG_BYTES: int = _max_log_bytes()


# ============================================================================
# Paths (~/.pi/agent/*)
# ============================================================================


def get_agent_dir() -> str:
    """Get the agent directory (e.g., ~/.pi/agent/)."""
    env_dir = os.environ.get(ENV_AGENT_DIR)
    if env_dir:
        home = os.path.expanduser("~")
        if env_dir == "~":
            return home
        if env_dir.startswith("~/"):
            return home + env_dir[1:]
        return env_dir
    return os.path.join(os.path.expanduser("~"), CONFIG_DIR_NAME, "agent")


def get_sessions_dir() -> str:
    """Get path to sessions directory."""
    return os.path.join(get_agent_dir(), "sessions")


def get_default_session_path() -> str:
    return os.path.join(get_sessions_dir(), DEFAULT_SESSION_FILE)


def get_settings_path() -> str:
    """Get path to settings.json."""
    return os.path.join(get_agent_dir(), "settings.json")


def get_debug_log_path() -> str:
    """Get path to debug log file."""
    return os.path.join(get_agent_dir(), f"{APP_NAME}-debug.log")


# ============================================================================
# Settings
# ============================================================================


@dataclass
class CompactionSettings:
    enabled: bool = False
    keep_last: int = 4
    format: str = "md"          # text | md | json
    threshold_chars: int | None = None
    threshold_tokens: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CompactionSettings":
        known = cls.__dataclass_fields__.keys()
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class Settings:
    allow_shell: bool = False
    max_steps: int = 8
    compaction: CompactionSettings = field(default_factory=CompactionSettings)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Settings":
        known = cls.__dataclass_fields__.keys()
        filtered = {k: v for k, v in data.items() if k in known}
        compaction = filtered.pop("compaction", None)
        settings = cls(**filtered)
        if isinstance(compaction, dict):
            settings.compaction = CompactionSettings.from_dict(compaction)
        return settings


def load_settings(path: str | None = None) -> Settings:
    """Load settings.json, falling back to defaults when absent or unreadable."""
    settings_path = path or get_settings_path()
    if not os.path.exists(settings_path):
        return Settings()
    try:
        with open(settings_path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Could not read settings from %s: %s", settings_path, exc)
        return Settings()
    if not isinstance(data, dict):
        return Settings()
    return Settings.from_dict(data)
