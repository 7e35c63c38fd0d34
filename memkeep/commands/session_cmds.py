from __future__ import annotations

import typer
from rich import print
from rich.markup import escape

from ..transcript import TranscriptAnalytics, parse_transcript
from .common import echo_json, exit_on_errors


def session_start_cmd(
    *,
    store_from_path,
    db_path: str | None,
    session_id: str | None,
    project: str | None,
    goal: str | None,
) -> None:
    """Register a session; restarting a known id leaves it unchanged."""

    with exit_on_errors():
        store = store_from_path(db_path)
        try:
            started = store.start_session(session_id, project=project, goal=goal)
        finally:
            store.close()
    typer.echo(started)


def _apply_transcript(store, session_id: str, transcript: str) -> TranscriptAnalytics | None:
    analytics = parse_transcript(transcript)
    if analytics is not None:
        store.update_session_analytics(session_id, analytics)
    return analytics


def session_end_cmd(
    *,
    store_from_path,
    db_path: str | None,
    session_id: str,
    transcript: str | None,
    title: str | None,
    summary: str | None,
) -> None:
    """Close a session, record transcript analytics and an optional auto memory."""

    with exit_on_errors():
        store = store_from_path(db_path)
        try:
            session = store.get_session(session_id)
            if session is None:
                print(f"[red]Session {escape(session_id)} not found[/red]")
                raise typer.Exit(code=1)
            if store.end_session(session_id):
                print(f"Session {escape(session_id)} ended")
            else:
                print(f"[yellow]Session {escape(session_id)} was already ended[/yellow]")
            if transcript:
                analytics = _apply_transcript(store, session_id, transcript)
                if analytics is None:
                    print(f"[yellow]No assistant turns found in {escape(transcript)}[/yellow]")
                else:
                    print(
                        f"Recorded {analytics.turn_count} turns, "
                        f"{analytics.input_tokens + analytics.output_tokens:,} tokens"
                    )
            if summary:
                memory = store.save_auto_memory(
                    title or f"Session {session_id[:8]} summary",
                    summary,
                    project=session.project,
                    session_id=session_id,
                )
                print(f"Saved: {escape(memory.title)} (id: {memory.id})")
        finally:
            store.close()


def session_analytics_cmd(
    *,
    store_from_path,
    db_path: str | None,
    session_id: str,
    transcript: str | None,
) -> None:
    """Show a session record, refreshing its analytics from a transcript first."""

    with exit_on_errors():
        store = store_from_path(db_path)
        try:
            if store.get_session(session_id) is None:
                print(f"[red]Session {escape(session_id)} not found[/red]")
                raise typer.Exit(code=1)
            if transcript:
                _apply_transcript(store, session_id, transcript)
            session = store.get_session(session_id)
        finally:
            store.close()
    echo_json(session.to_dict() if session else None)
