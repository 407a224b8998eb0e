"""
Root conftest.py: registers custom markers and shared session fixtures.

Markers:
  @pytest.mark.shell   runs real shell commands; skipped unless SHELL_TESTS=1
"""
from __future__ import annotations

import os
from pathlib import Path

import pytest


# ---------------------------------------------------------------------------
# Custom markers
# ---------------------------------------------------------------------------

def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "shell: mark test as running real shell commands (run with SHELL_TESTS=1 or --shell flag)",
    )


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--shell",
        action="store_true",
        default=False,
        help="Run tests marked with @pytest.mark.shell (spawns sh)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip @pytest.mark.shell tests unless --shell flag or SHELL_TESTS=1 is set."""
    run_shell = config.getoption("--shell") or os.environ.get("SHELL_TESTS", "").lower() in ("1", "true", "yes")
    skip_shell = pytest.mark.skip(reason="Shell test: run with --shell or SHELL_TESTS=1")
    for item in items:
        if item.get_closest_marker("shell") and not run_shell:
            item.add_marker(skip_shell)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

class FakeClock:
    """Millisecond clock that advances by one on every read."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        self.now += 1
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def session_path(tmp_path: Path) -> str:
    return str(tmp_path / "session.jsonl")


@pytest.fixture
def store(session_path: str, clock: FakeClock):
    from pi_session.core.session_store import SessionStore

    return SessionStore(session_path, cwd="/work", clock=clock)
