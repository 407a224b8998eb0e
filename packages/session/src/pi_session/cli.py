"""
CLI entry point: plan runner, agent chat and session log inspection.
"""
from __future__ import annotations

import json
import logging
import os
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from .config import DEFAULT_RUNS_DIR, get_debug_log_path, get_default_session_path, load_settings
from .core.agent_loop import AgentLoop
from .core.compaction import SUMMARY_FORMATS, branch_with_summary
from .core.entries import (
    Entry,
    LabelEntry,
    LeafEntry,
    ModelChangeEntry,
    SessionHeader,
    SessionInfoEntry,
    ThinkingLevelChangeEntry,
    TurnStartEntry,
    content_of,
    id_of,
    parent_id_of,
    role_of,
)
from .core.event_bus import TOOL_EXECUTION_END, TOOL_EXECUTION_START, EventBus
from .core.plan_runner import Runner, load_plan, verify_run
from .core.session_store import SessionStore
from .core.tools import ToolRegistry
from .core.tree import SessionTreeNode
from .errors import PlanError, SessionError

app = typer.Typer(
    name="pi-session",
    help="pi-session: branching session log, agent loop and plan runner",
    no_args_is_help=True,
)

console = Console()
err_console = Console(stderr=True)

_FAILURES = (SessionError, PlanError, OSError, ValueError)


def _fail(exc: Exception) -> typer.Exit:
    err_console.print(f"[red]Error:[/red] {exc}")
    return typer.Exit(code=1)


def _store(session: Optional[str]) -> SessionStore:
    return SessionStore(session or get_default_session_path(), cwd=os.getcwd())


def _describe(entry: Entry) -> str:
    text = content_of(entry)
    if text is not None:
        role = role_of(entry)
        return f"{role}: {text}" if role else text
    if isinstance(entry, SessionHeader):
        return f"v{entry.version} {entry.id} cwd={entry.cwd}"
    if isinstance(entry, ModelChangeEntry):
        return f"{entry.provider}/{entry.model_id}"
    if isinstance(entry, ThinkingLevelChangeEntry):
        return entry.thinking_level
    if isinstance(entry, SessionInfoEntry):
        return entry.name or ""
    if isinstance(entry, TurnStartEntry):
        return f"turn {entry.turn} {entry.phase or ''}".strip()
    if isinstance(entry, LeafEntry):
        return f"-> {entry.target_id if entry.target_id is not None else '(root)'}"
    if isinstance(entry, LabelEntry):
        return f"{entry.target_id} = {entry.label!r}"
    return ""


def _entries_table(title: str, entries: list[Entry], labels: dict[str, str] | None = None) -> Table:
    table = Table(title=title)
    table.add_column("#", justify="right")
    table.add_column("Type")
    table.add_column("ID")
    table.add_column("Parent")
    table.add_column("Label")
    table.add_column("Content", overflow="fold")
    labels = labels or {}
    for i, entry in enumerate(entries):
        entry_id = id_of(entry)
        text = _describe(entry)
        table.add_row(
            str(i),
            entry.type,
            entry_id or "",
            parent_id_of(entry) or "",
            labels.get(entry_id, "") if entry_id else "",
            escape(text if len(text) <= 200 else text[:197] + "..."),
        )
    return table


def _print_entries(title: str, entries: list[Entry], json_out: bool, labels: dict[str, str] | None = None) -> None:
    if json_out:
        for entry in entries:
            typer.echo(json.dumps(entry.to_dict(), ensure_ascii=False))
        return
    if not entries:
        console.print("[dim]No entries.[/dim]")
        return
    console.print(_entries_table(title, entries, labels))


@app.callback()
def main_callback(
    debug: bool = typer.Option(False, "--debug", help="Write a debug log to the agent directory"),
) -> None:
    if debug:
        path = get_debug_log_path()
        os.makedirs(os.path.dirname(path), exist_ok=True)
        handler = logging.FileHandler(path, encoding="utf-8")
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        root = logging.getLogger("pi_session")
        root.addHandler(handler)
        root.setLevel(logging.DEBUG)


# ── Plan runner ───────────────────────────────────────────────────────────────

@app.command()
def run(
    plan: str = typer.Option(..., "--plan", help="Path to a pi.plan.v1 JSON file"),
    out: str = typer.Option(DEFAULT_RUNS_DIR, "--out", help="Directory for run artifacts"),
) -> None:
    """Execute a plan and write its artifact tree."""
    try:
        parsed, raw = load_plan(plan)
        run_id = Runner(out).run(parsed, raw)
    except _FAILURES as exc:
        raise _fail(exc)
    typer.echo(f"ok: true\nrunId: {run_id}\nout: {out}/{run_id}")


@app.command()
def verify(
    run_id: str = typer.Option(..., "--run", help="Run id to verify"),
    out: str = typer.Option(DEFAULT_RUNS_DIR, "--out", help="Directory for run artifacts"),
) -> None:
    """Check that every step of a run succeeded."""
    try:
        verify_run(out, run_id)
    except _FAILURES as exc:
        raise _fail(exc)
    typer.echo(f"ok: true\nverify: {out}/{run_id}")


# ── Agent ─────────────────────────────────────────────────────────────────────

@app.command()
def chat(
    prompt: str = typer.Argument(..., help="User message"),
    session: Optional[str] = typer.Option(None, "--session", "-s", help="Session file"),
    allow_shell: bool = typer.Option(False, "--allow-shell", help="Enable the shell tool"),
    max_steps: Optional[int] = typer.Option(None, "--max-steps", help="Step limit for this prompt"),
) -> None:
    """Send a message through the agent loop."""
    settings = load_settings()
    bus = EventBus()
    bus.on(TOOL_EXECUTION_START, lambda d: console.print(f"[dim]> {d['tool']} {d['arg']}[/dim]"))
    bus.on(
        TOOL_EXECUTION_END,
        lambda d: console.print(f"[dim]< {d['tool']} {'ok' if d['ok'] else 'failed'}[/dim]"),
    )
    try:
        store = _store(session)
        loop = AgentLoop(
            store,
            ToolRegistry(allow_shell=allow_shell or settings.allow_shell),
            bus,
            compaction=settings.compaction,
        )
        done = loop.prompt(prompt, max_steps or settings.max_steps)
        reply = next(
            (e for e in reversed(store.build_context_entries()) if role_of(e) == "assistant"),
            None,
        )
    except _FAILURES as exc:
        raise _fail(exc)
    if reply is not None:
        console.print(escape(content_of(reply) or ""))
    if not done:
        err_console.print("[yellow]Stopped before a final reply.[/yellow]")
        raise typer.Exit(code=1)


# ── Session inspection ────────────────────────────────────────────────────────

@app.command()
def log(
    session: Optional[str] = typer.Option(None, "--session", "-s", help="Session file"),
    json_out: bool = typer.Option(False, "--json", help="Output JSON lines"),
) -> None:
    """List every record in the session file."""
    try:
        store = _store(session)
        entries = store.load_entries()
        labels = store.get_labels()
    except _FAILURES as exc:
        raise _fail(exc)
    _print_entries("Session log", entries, json_out, labels)


@app.command()
def context(
    session: Optional[str] = typer.Option(None, "--session", "-s", help="Session file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Include structural entries"),
    json_out: bool = typer.Option(False, "--json", help="Output JSON lines"),
) -> None:
    """Show the active context for the current branch head."""
    try:
        store = _store(session)
        entries = store.build_context_entries_verbose() if verbose else store.build_context_entries()
        labels = store.get_labels()
    except _FAILURES as exc:
        raise _fail(exc)
    _print_entries("Context", entries, json_out, labels)


@app.command()
def branch(
    entry_id: Optional[str] = typer.Argument(None, help="Entry id to make the branch head"),
    root: bool = typer.Option(False, "--root", help="Navigate to the root (empty context)"),
    summarize: bool = typer.Option(False, "--summarize", help="Summarize the branch being left"),
    session: Optional[str] = typer.Option(None, "--session", "-s", help="Session file"),
) -> None:
    """Move the branch head."""
    if entry_id is None and not root:
        err_console.print("[red]Error:[/red] give an entry id or --root")
        raise typer.Exit(code=2)
    target = None if root else entry_id
    try:
        store = _store(session)
        if summarize:
            summary_id = branch_with_summary(store, target)
            if summary_id:
                console.print(f"branch summary: {summary_id}")
        else:
            store.branch_to(target)
    except _FAILURES as exc:
        raise _fail(exc)
    console.print(f"head: {target if target is not None else '(root)'}")


@app.command()
def label(
    target: str = typer.Argument(..., help="Entry id to label"),
    text: Optional[str] = typer.Argument(None, help="Label text"),
    delete: bool = typer.Option(False, "--delete", help="Remove the label"),
    session: Optional[str] = typer.Option(None, "--session", "-s", help="Session file"),
) -> None:
    """Set or delete an entry label."""
    if text is None and not delete:
        err_console.print("[red]Error:[/red] give a label or --delete")
        raise typer.Exit(code=2)
    try:
        _store(session).set_label(target, None if delete else text)
    except _FAILURES as exc:
        raise _fail(exc)
    console.print(f"{target}: {'(deleted)' if delete else text}")


@app.command()
def compact(
    keep_last: int = typer.Option(4, "--keep-last", help="Business entries to keep verbatim"),
    format: str = typer.Option("text", "--format", help="Summary format: text/md/json"),
    label_text: Optional[str] = typer.Option(None, "--label", help="Label for the summary"),
    merge: bool = typer.Option(False, "--merge", help="Patch the previous markdown summary"),
    session: Optional[str] = typer.Option(None, "--session", "-s", help="Session file"),
) -> None:
    """Fold older history into a summary record."""
    if format not in SUMMARY_FORMATS:
        err_console.print(f"[red]Error:[/red] unknown format {format!r}")
        raise typer.Exit(code=2)
    try:
        summary_id = _store(session).compact(keep_last, format=format, label=label_text, merge=merge)
    except _FAILURES as exc:
        raise _fail(exc)
    if summary_id is None:
        console.print("[dim]Nothing to compact.[/dim]")
    else:
        console.print(f"summary: {summary_id}")


def _tree_line(node: SessionTreeNode, head_id: str | None) -> str:
    entry_id = id_of(node.entry) or ""
    text = _describe(node.entry)
    line = f"[bold]{entry_id}[/bold] {node.entry.type}"
    if node.label:
        line += f" [cyan]({escape(node.label)})[/cyan]"
    if entry_id == head_id:
        line += " [green]<- head[/green]"
    if text:
        line += f" [dim]{escape(text[:80])}[/dim]"
    return line


def _add_tree_nodes(view: Tree, roots: list[SessionTreeNode], head_id: str | None) -> None:
    """
    Attach the forest to ``view`` without recursion.

    A run of single-child entries is listed under the entry that starts it,
    so nesting grows with the number of forks rather than with history length.
    """
    stack: list[tuple[Tree, SessionTreeNode]] = [(view, node) for node in reversed(roots)]
    while stack:
        parent, node = stack.pop()
        start = parent.add(_tree_line(node, head_id))
        last = start
        while len(node.children) == 1:
            node = node.children[0]
            last = start.add(_tree_line(node, head_id))
        stack.extend((last, child) for child in reversed(node.children))


@app.command()
def tree(
    session: Optional[str] = typer.Option(None, "--session", "-s", help="Session file"),
) -> None:
    """Show the entry forest with labels and the current head."""
    try:
        store = _store(session)
        roots = store.get_tree()
        head_id = store.get_leaf_id()
    except _FAILURES as exc:
        raise _fail(exc)
    view = Tree(store.path)
    _add_tree_nodes(view, roots, head_id)
    console.print(view)


def main() -> None:
    """Main CLI entrypoint."""
    app()


if __name__ == "__main__":
    main()
