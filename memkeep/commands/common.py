from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import typer
from rich import print
from rich.markup import escape

from memkeep.config import MemkeepConfig, load_config
from memkeep.errors import StoreError, ValidationError
from memkeep.store import MemoryStore

logger = logging.getLogger(__name__)

EXIT_INVALID = 1
EXIT_STORE = 2


def configure_logging(config: MemkeepConfig | None = None) -> None:
    config = config or load_config()
    level = getattr(logging, config.log_level.upper(), None)
    if not isinstance(level, int):
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def store_from_path(db_path: str | None) -> MemoryStore:
    config = load_config()
    return MemoryStore(db_path or config.db_path, config=config)


@contextmanager
def exit_on_errors() -> Iterator[None]:
    """Report store and validation failures in red and exit non-zero."""

    try:
        yield
    except ValidationError as exc:
        print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=EXIT_INVALID) from exc
    except StoreError as exc:
        print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=EXIT_STORE) from exc


def echo_json(data: Any) -> None:
    # typer.echo keeps machine-readable output free of rich wrapping and markup.
    typer.echo(json.dumps(data, indent=2, ensure_ascii=False))


def first_line(text: str, width: int = 120) -> str:
    for line in text.splitlines():
        line = line.strip()
        if line:
            return line if len(line) <= width else line[: width - 3] + "..."
    return ""


def hook_cwd() -> str | None:
    """Working directory from hook JSON on stdin, when stdin is not a terminal."""

    if sys.stdin is None or sys.stdin.isatty():
        return None
    raw = sys.stdin.read()
    if not raw.strip():
        return None
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("could not parse hook stdin JSON: %s", exc)
        return None
    if not isinstance(payload, dict):
        return None
    cwd = payload.get("cwd")
    if isinstance(cwd, str) and cwd.strip():
        return cwd.strip()
    return None
