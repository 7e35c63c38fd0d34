from __future__ import annotations

import typer
from rich import print
from rich.markup import escape

from ..suggest import suggest_rules
from .common import echo_json, exit_on_errors


def init_cmd(*, store_from_path, db_path: str | None) -> None:
    """Create the SQLite database and apply migrations (no-op when current)."""

    with exit_on_errors():
        store = store_from_path(db_path)
        try:
            stats = store.stats()
        finally:
            store.close()
    print(f"Initialized database at {escape(stats['path'])} (schema v{stats['schema_version']})")


def _format_bytes(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    if size < 1024 * 1024 * 1024:
        return f"{size / 1024 / 1024:.1f} MB"
    return f"{size / 1024 / 1024 / 1024:.1f} GB"


def _format_tokens(count: int) -> str:
    return f"{count:,}"


def _format_duration(seconds: float) -> str:
    seconds = int(seconds)
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def stats_cmd(*, store_from_path, db_path: str | None, as_json: bool) -> None:
    with exit_on_errors():
        store = store_from_path(db_path)
        try:
            stats = store.stats()
        finally:
            store.close()

    if as_json:
        echo_json(stats)
        return
    print("[bold]Database[/bold]")
    print(f"- Path: {escape(stats['path'])}")
    print(f"- Size: {_format_bytes(int(stats['size_bytes']))}")
    print(f"- Schema version: {stats['schema_version']}")
    print(
        f"- Memories: {stats['memories']} "
        f"({stats['active']} active, {stats['cold']} cold, {stats['global']} global)"
    )
    print(f"- Sessions: {stats['sessions']}")
    print(f"- Projects: {stats['projects']}")
    print(f"- Indexed files: {stats['indexed_files']}")


def decay_cmd(
    *,
    store_from_path,
    db_path: str | None,
    threshold: float | None,
    dry_run: bool,
    as_json: bool,
) -> None:
    """Mark low-retention memories as cold."""

    with exit_on_errors():
        store = store_from_path(db_path)
        try:
            if threshold is None:
                threshold = store.config.decay_threshold
            result = store.run_decay(threshold, dry_run=dry_run)
        finally:
            store.close()

    if as_json:
        echo_json(result.to_dict())
        return
    if dry_run:
        print(
            f"{result.affected} memories would be marked cold "
            f"(threshold: {result.threshold:.2f}) [dim]\\[dry-run, no changes made][/dim]"
        )
        for candidate in result.candidates:
            print(
                f"- {candidate.id} {escape(candidate.title)} "
                f"(retention {candidate.retention:.3f}, {candidate.access_count} reads)"
            )
        return
    print(f"{result.affected} memories marked cold (threshold: {result.threshold:.2f})")


def gain_cmd(*, store_from_path, db_path: str | None, top: int, as_json: bool) -> None:
    """Summarize token usage recorded from session transcripts."""

    if top < 1:
        print("[red]--top must be at least 1[/red]")
        raise typer.Exit(code=1)
    with exit_on_errors():
        store = store_from_path(db_path)
        try:
            gain = store.gain_stats(top=top)
        finally:
            store.close()

    if as_json:
        echo_json(gain)
        return
    if not gain["session_count"]:
        print("No session analytics recorded yet. End a session with --transcript first.")
        return
    print("[bold]Sessions[/bold]")
    print(f"- Sessions with analytics: {gain['session_count']}")
    print(f"- Total time: {_format_duration(gain['total_secs'])}")
    print(f"- Avg turns per session: {gain['avg_turns_per_session']}")
    print(f"- Avg duration: {_format_duration(gain['avg_session_duration_secs'])}")
    print("\n[bold]Tokens[/bold]")
    print(f"- Input: {_format_tokens(gain['total_input_tokens'])}")
    print(f"- Output: {_format_tokens(gain['total_output_tokens'])}")
    print(f"- Cache read: {_format_tokens(gain['total_cache_read_tokens'])}")
    print(f"- Cache creation: {_format_tokens(gain['total_cache_creation_tokens'])}")
    print(f"- Cache efficiency: {gain['cache_efficiency_pct']}%")
    if gain["top_projects"]:
        print("\n[bold]Top projects[/bold]")
        for row in gain["top_projects"]:
            print(
                f"- {escape(row['project'])}: {row['sessions']} sessions, "
                f"{_format_tokens(int(row['total_tokens'] or 0))} tokens"
            )


def suggest_rules_cmd(*, store_from_path, db_path: str | None, limit: int) -> None:
    """Print rule candidates mined from recent auto-captured memories."""

    with exit_on_errors():
        store = store_from_path(db_path)
        try:
            memories = store.recent_auto_memories(limit=limit)
        finally:
            store.close()

    if not memories:
        print("No auto-captured memories found. End some sessions with a summary first.")
        return
    typer.echo(suggest_rules(memories), nl=False)
