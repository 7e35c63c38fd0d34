from __future__ import annotations

import typer
from rich import print

from . import __version__
from .commands.common import configure_logging, store_from_path
from .commands.index_cmds import index_cmd
from .commands.maintenance_cmds import (
    decay_cmd,
    gain_cmd,
    init_cmd,
    stats_cmd,
    suggest_rules_cmd,
)
from .commands.memory_cmds import (
    context_cmd,
    delete_cmd,
    demote_cmd,
    promote_cmd,
    reactivate_cmd,
    save_cmd,
    search_cmd,
    show_cmd,
)
from .commands.session_cmds import session_analytics_cmd, session_end_cmd, session_start_cmd
from .store import MemoryStore

app = typer.Typer(help="memkeep: persistent local memory for coding assistant sessions")
session_app = typer.Typer(help="Track assistant sessions")
app.add_typer(session_app, name="session")


@app.callback()
def _main() -> None:
    configure_logging()


def _store(db_path: str | None) -> MemoryStore:
    return store_from_path(db_path)


@app.command()
def init(db_path: str = typer.Option(None, help="Path to SQLite database")) -> None:
    """Create the SQLite database (no-op if it already exists)."""
    init_cmd(store_from_path=_store, db_path=db_path)


@app.command()
def save(
    title: str,
    content: str,
    memory_type: str = typer.Option("manual", "--type", help="manual | pattern | decision"),
    project: str = typer.Option(None, help="Project path or name"),
    scope: str = typer.Option("project", help="project | global"),
    session_id: str = typer.Option(None, "--session", help="Owning session id"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Save a memory by hand."""
    save_cmd(
        store_from_path=_store,
        db_path=db_path,
        title=title,
        content=content,
        memory_type=memory_type,
        project=project,
        scope=scope,
        session_id=session_id,
    )


@app.command()
def search(
    query: str,
    kind: str = typer.Option("all", help="all | memory | indexed_file"),
    project: str = typer.Option(None, help="Project path or name"),
    limit: int = typer.Option(10, help="Max results"),
    as_json: bool = typer.Option(False, "--json", help="Print results as JSON"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Full-text search over memories and indexed files."""
    search_cmd(
        store_from_path=_store,
        db_path=db_path,
        query=query,
        kind=kind,
        project=project,
        limit=limit,
        as_json=as_json,
    )


@app.command()
def context(
    project: str = typer.Option(None, help="Project path (defaults to hook stdin cwd)"),
    limit: int = typer.Option(3, help="Number of recent memories"),
    compact: bool = typer.Option(False, help="Print as hook additionalContext JSON"),
    out: str = typer.Option(None, help="Write markdown to this file instead of stdout"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Render recent memories for context injection."""
    context_cmd(
        store_from_path=_store,
        db_path=db_path,
        project=project,
        limit=limit,
        compact=compact,
        out=out,
    )


@app.command()
def show(memory_id: str, db_path: str = typer.Option(None, help="Path to SQLite database")) -> None:
    """Print a memory as JSON."""
    show_cmd(store_from_path=_store, db_path=db_path, memory_id=memory_id)


@app.command()
def delete(
    memory_id: str,
    yes: bool = typer.Option(False, "--yes", help="Confirm permanent deletion"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Permanently delete a memory."""
    delete_cmd(store_from_path=_store, db_path=db_path, memory_id=memory_id, yes=yes)


@app.command()
def promote(
    memory_id: str, db_path: str = typer.Option(None, help="Path to SQLite database")
) -> None:
    """Promote a memory to global scope (visible across all projects)."""
    promote_cmd(store_from_path=_store, db_path=db_path, memory_id=memory_id)


@app.command()
def demote(
    memory_id: str, db_path: str = typer.Option(None, help="Path to SQLite database")
) -> None:
    """Demote a memory back to project scope."""
    demote_cmd(store_from_path=_store, db_path=db_path, memory_id=memory_id)


@app.command()
def reactivate(
    memory_id: str, db_path: str = typer.Option(None, help="Path to SQLite database")
) -> None:
    """Mark a cold memory active again."""
    reactivate_cmd(store_from_path=_store, db_path=db_path, memory_id=memory_id)


@app.command()
def stats(
    as_json: bool = typer.Option(False, "--json", help="Print stats as JSON"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Show database statistics."""
    stats_cmd(store_from_path=_store, db_path=db_path, as_json=as_json)


@app.command()
def decay(
    threshold: float = typer.Option(None, help="Retention threshold (defaults to config)"),
    dry_run: bool = typer.Option(False, help="Show what would be marked without changes"),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Mark low-retention memories as cold."""
    decay_cmd(
        store_from_path=_store,
        db_path=db_path,
        threshold=threshold,
        dry_run=dry_run,
        as_json=as_json,
    )


@app.command()
def index(
    root: str = typer.Option(None, help="Projects root (defaults to config)"),
    path: str = typer.Option(None, help="Index a single memory document"),
    dry_run: bool = typer.Option(False, help="Classify files without writing"),
    as_json: bool = typer.Option(False, "--json", help="Print the scan result as JSON"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Index memory documents under the projects root."""
    index_cmd(
        store_from_path=_store,
        db_path=db_path,
        root=root,
        path=path,
        dry_run=dry_run,
        as_json=as_json,
    )


@app.command()
def gain(
    top: int = typer.Option(5, help="Number of projects to list"),
    as_json: bool = typer.Option(False, "--json", help="Print totals as JSON"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Summarize token usage across recorded sessions."""
    gain_cmd(store_from_path=_store, db_path=db_path, top=top, as_json=as_json)


@app.command("suggest-rules")
def suggest_rules(
    limit: int = typer.Option(20, help="Number of recent auto memories to analyse"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Suggest rules from recurring patterns in auto-captured memories."""
    suggest_rules_cmd(store_from_path=_store, db_path=db_path, limit=limit)


@session_app.command("start")
def session_start(
    session_id: str = typer.Option(None, "--id", help="Session id (generated when omitted)"),
    project: str = typer.Option(None, help="Project path or name"),
    goal: str = typer.Option(None, help="What the session is for"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Start a session and print its id."""
    session_start_cmd(
        store_from_path=_store,
        db_path=db_path,
        session_id=session_id,
        project=project,
        goal=goal,
    )


@session_app.command("end")
def session_end(
    session_id: str,
    transcript: str = typer.Option(None, help="JSONL transcript to record analytics from"),
    title: str = typer.Option(None, help="Title for the summary memory"),
    summary: str = typer.Option(None, help="Save this text as an auto memory"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """End a session."""
    session_end_cmd(
        store_from_path=_store,
        db_path=db_path,
        session_id=session_id,
        transcript=transcript,
        title=title,
        summary=summary,
    )


@session_app.command("analytics")
def session_analytics(
    session_id: str,
    transcript: str = typer.Option(None, help="Refresh analytics from this transcript first"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Show a session with its recorded analytics."""
    session_analytics_cmd(
        store_from_path=_store,
        db_path=db_path,
        session_id=session_id,
        transcript=transcript,
    )


@app.command("version")
def version() -> None:
    """Print version."""

    print(__version__)
