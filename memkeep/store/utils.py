from __future__ import annotations

import datetime as dt
from typing import Any

from ..errors import ValidationError


def now_iso() -> str:
    return dt.datetime.now(dt.UTC).isoformat()


def parse_iso8601(value: str) -> dt.datetime | None:
    raw = value.strip()
    if not raw:
        return None
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = dt.datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.UTC)
    return parsed.astimezone(dt.UTC)


def project_basename(value: str) -> str:
    normalized = value.replace("\\", "/").rstrip("/")
    if not normalized:
        return ""
    return normalized.split("/")[-1]


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def project_column_clause(column_expr: str, project: str) -> tuple[str, list[Any]]:
    """Match a project by exact value or by path basename.

    ``/home/u/proj`` and ``proj`` select the same rows, whichever form the
    column holds.
    """

    project = project.strip()
    if not project:
        return "", []
    value = project
    if "/" in project or "\\" in project:
        base = project_basename(project)
        if not base:
            return "", []
        value = base
    return (
        f"({column_expr} = ? OR {column_expr} = ? OR {column_expr} LIKE ? ESCAPE '\\')",
        [project, value, f"%/{_escape_like(value)}"],
    )


def clamp_limit(limit: int, maximum: int) -> int:
    try:
        value = int(limit)
    except (TypeError, ValueError):
        raise ValidationError(f"limit must be an integer, got {limit!r}") from None
    if value < 1:
        raise ValidationError(f"limit must be at least 1, got {value}")
    return min(value, maximum)
