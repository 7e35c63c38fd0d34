from __future__ import annotations

from pathlib import Path

import typer
from rich import print
from rich.markup import escape

from ..context import compact_context_json, format_context_markdown
from ..store import IndexedFile, Memory
from .common import echo_json, exit_on_errors, first_line, hook_cwd

SEARCH_KIND_CHOICES = ("all", "memory", "indexed_file")


def save_cmd(
    *,
    store_from_path,
    db_path: str | None,
    title: str,
    content: str,
    memory_type: str,
    project: str | None,
    scope: str,
    session_id: str | None,
) -> None:
    """Save a memory by hand."""

    with exit_on_errors():
        store = store_from_path(db_path)
        try:
            memory = store.save_memory(
                title,
                content,
                memory_type=memory_type,
                project=project,
                session_id=session_id,
                scope=scope,
            )
        finally:
            store.close()
    print(f"Saved: {escape(memory.title)} (id: {memory.id})")


def _describe(record: Memory | IndexedFile) -> str:
    if isinstance(record, Memory):
        line = (
            f"[{record.memory_type}] {record.title} "
            f"({record.created_at[:10]}) [{record.scope}] id={record.id}"
        )
    else:
        line = f"[file] {record.title} ({record.project_name}) {record.source_path}"
    return escape(line)


def search_cmd(
    *,
    store_from_path,
    db_path: str | None,
    query: str,
    kind: str,
    project: str | None,
    limit: int,
    as_json: bool,
) -> None:
    """Full-text search over memories and indexed files."""

    if kind not in SEARCH_KIND_CHOICES:
        allowed = ", ".join(SEARCH_KIND_CHOICES)
        print(f"[red]Invalid kind '{escape(kind)}'. Allowed: {allowed}[/red]")
        raise typer.Exit(code=1)
    with exit_on_errors():
        store = store_from_path(db_path)
        try:
            if kind == "all":
                results = store.search_unified(
                    query, project=project, limit=limit, track_access=True
                )
                payload = [item.to_dict() for item in results]
                rows = [(item.record, item.rank) for item in results]
            else:
                hits = store.search(query, kind=kind, project=project, limit=limit)
                if kind == "memory":
                    store.record_access(hit.record.id for hit in hits)
                payload = [hit.to_dict() for hit in hits]
                rows = [(hit.record, hit.rank) for hit in hits]
        finally:
            store.close()

    if as_json:
        echo_json(payload)
        return
    if not rows:
        print(f"No matches for: {escape(query)}")
        return
    for record, rank in rows:
        print(_describe(record))
        print(f"  {escape(first_line(record.content))}")
        print(f"  score={rank:.2f}\n")


def _resolve_context_project(project: str | None) -> str | None:
    if project:
        return project
    return hook_cwd() or None


def context_cmd(
    *,
    store_from_path,
    db_path: str | None,
    project: str | None,
    limit: int,
    compact: bool,
    out: str | None,
) -> None:
    """Render recent memories for context injection."""

    resolved_project = _resolve_context_project(project)
    with exit_on_errors():
        store = store_from_path(db_path)
        try:
            memories = store.recent_memories(project=resolved_project, limit=limit)
        finally:
            store.close()

    if compact:
        typer.echo(compact_context_json(memories))
        return
    markdown = format_context_markdown(memories)
    if out:
        target = Path(out).expanduser()
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(markdown, encoding="utf-8")
        except OSError as exc:
            print(
                f"[red]Failed to write context to {escape(str(target))}: {escape(str(exc))}[/red]"
            )
            raise typer.Exit(code=2) from exc
        print(f"Wrote {len(memories)} memories to {escape(str(target))}")
        return
    typer.echo(markdown, nl=not markdown.endswith("\n"))


def show_cmd(*, store_from_path, db_path: str | None, memory_id: str) -> None:
    """Print a memory as JSON."""

    with exit_on_errors():
        store = store_from_path(db_path)
        try:
            memory = store.access_memory(memory_id)
        finally:
            store.close()
    if memory is None:
        print(f"[red]Memory {escape(memory_id)} not found[/red]")
        raise typer.Exit(code=1)
    echo_json(memory.to_dict())


def delete_cmd(*, store_from_path, db_path: str | None, memory_id: str, yes: bool) -> None:
    """Hard-delete a memory."""

    if not yes:
        print("[yellow]Refusing to delete without --yes (deletion cannot be undone)[/yellow]")
        raise typer.Exit(code=1)
    with exit_on_errors():
        store = store_from_path(db_path)
        try:
            deleted = store.delete_memory(memory_id)
        finally:
            store.close()
    if not deleted:
        print(f"[red]Memory {escape(memory_id)} not found[/red]")
        raise typer.Exit(code=1)
    print(f"Memory {escape(memory_id)} deleted")


def _flip(store_from_path, db_path: str | None, memory_id: str, action: str, message: str) -> None:
    with exit_on_errors():
        store = store_from_path(db_path)
        try:
            changed = getattr(store, action)(memory_id)
        finally:
            store.close()
    if not changed:
        print(f"[red]No memory found with id: {escape(memory_id)}[/red]")
        raise typer.Exit(code=1)
    print(f"Memory {escape(memory_id)} {message}.")


def promote_cmd(*, store_from_path, db_path: str | None, memory_id: str) -> None:
    _flip(store_from_path, db_path, memory_id, "promote", "promoted to global scope")


def demote_cmd(*, store_from_path, db_path: str | None, memory_id: str) -> None:
    _flip(store_from_path, db_path, memory_id, "demote", "demoted to project scope")


def reactivate_cmd(*, store_from_path, db_path: str | None, memory_id: str) -> None:
    _flip(store_from_path, db_path, memory_id, "reactivate", "reactivated")
