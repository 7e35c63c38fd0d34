from __future__ import annotations

from rich import print
from rich.markup import escape

from ..indexer import scan
from .common import echo_json, exit_on_errors


def index_cmd(
    *,
    store_from_path,
    db_path: str | None,
    root: str | None,
    path: str | None,
    dry_run: bool,
    as_json: bool,
) -> None:
    """Index memory documents from the projects root."""

    with exit_on_errors():
        store = store_from_path(db_path)
        try:
            scan_root = root or store.config.projects_root
            result = scan(store, scan_root, dry_run=dry_run, single_path=path)
        finally:
            store.close()

    if as_json:
        echo_json(result.to_dict())
        return
    target = path or str(scan_root)
    action = "Would index" if dry_run else "Indexed"
    print(
        f"{action} {escape(target)}: {result.new} new, {result.updated} updated, "
        f"{result.unchanged} unchanged"
    )
    if result.skipped or result.errors:
        print(f"[yellow]{result.skipped} skipped, {result.errors} errors (see log)[/yellow]")
    if result.pruned:
        verb = "would prune" if dry_run else "pruned"
        print(f"{verb.capitalize()} {result.pruned} entries for removed files")
