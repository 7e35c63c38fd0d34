from __future__ import annotations

import datetime as dt
import logging
import math
import sqlite3
from typing import TYPE_CHECKING

from ..errors import ValidationError, storage_errors
from .types import DecayCandidate, DecayResult
from .utils import parse_iso8601

if TYPE_CHECKING:
    from ._store import MemoryStore

logger = logging.getLogger(__name__)

DECAY_RATE_PER_DAY = 0.05

# Shared by the dry-run SELECT and the UPDATE so both select the same rows.
_DECAY_PREDICATE = "status = 'active' AND retention(access_count, created_at, ?) < ?"


def retention_score(
    access_count: int, created_at: str | dt.datetime, now: dt.datetime | None = None
) -> float:
    """(access_count + 1) / (1 + days_since_created * 0.05), days fractional."""

    now = now or dt.datetime.now(dt.UTC)
    if isinstance(created_at, str):
        created = parse_iso8601(created_at)
        if created is None:
            raise ValueError(f"unparseable created_at: {created_at!r}")
    else:
        created = created_at if created_at.tzinfo else created_at.replace(tzinfo=dt.UTC)
    days = max(0.0, (now - created).total_seconds() / 86400.0)
    return (max(int(access_count), 0) + 1) / (1.0 + days * DECAY_RATE_PER_DAY)


def _sql_retention(access_count: int | None, created_at: str | None, now_iso: str) -> float | None:
    if created_at is None:
        return None
    now = parse_iso8601(now_iso)
    created = parse_iso8601(created_at)
    if now is None or created is None:
        return None
    return retention_score(access_count or 0, created, now)


def register_functions(conn: sqlite3.Connection) -> None:
    conn.create_function("retention", 3, _sql_retention, deterministic=True)


def _validate_threshold(threshold: float) -> float:
    try:
        value = float(threshold)
    except (TypeError, ValueError):
        raise ValidationError(f"threshold must be a number, got {threshold!r}") from None
    if not math.isfinite(value) or value < 0:
        raise ValidationError(f"threshold must be a finite number >= 0, got {threshold!r}")
    return value


def run_decay(
    store: MemoryStore,
    threshold: float,
    dry_run: bool = False,
    now: dt.datetime | None = None,
) -> DecayResult:
    """Mark active memories whose retention is below ``threshold`` as cold.

    The committed count comes from the UPDATE itself. A dry run reports the
    same selection without writing.
    """

    threshold = _validate_threshold(threshold)
    now_iso = (now or dt.datetime.now(dt.UTC)).isoformat()

    if dry_run:
        with storage_errors("decay dry run"):
            rows = store.conn.execute(
                f"""
                SELECT id, title, project, access_count, created_at,
                    retention(access_count, created_at, ?) AS retention
                FROM memories
                WHERE {_DECAY_PREDICATE}
                ORDER BY retention ASC
                """,
                (now_iso, now_iso, threshold),
            ).fetchall()
        candidates = [
            DecayCandidate(
                id=row["id"],
                title=row["title"],
                project=row["project"],
                access_count=int(row["access_count"]),
                created_at=row["created_at"],
                retention=float(row["retention"]),
            )
            for row in rows
        ]
        return DecayResult(
            threshold=threshold, dry_run=True, affected=len(candidates), candidates=candidates
        )

    with storage_errors("decay"), store.conn:
        cur = store.conn.execute(
            f"UPDATE memories SET status = 'cold' WHERE {_DECAY_PREDICATE}",
            (now_iso, threshold),
        )
    affected = cur.rowcount
    logger.info("decay marked %s memories cold (threshold %.2f)", affected, threshold)
    return DecayResult(threshold=threshold, dry_run=False, affected=affected)


def _set_column(store: MemoryStore, memory_id: str, column: str, value: str, action: str) -> bool:
    with storage_errors(action), store.conn:
        cur = store.conn.execute(
            f"UPDATE memories SET {column} = ? WHERE id = ?", (value, memory_id)
        )
    return cur.rowcount > 0


def promote(store: MemoryStore, memory_id: str) -> bool:
    """Make a memory global. False only when the id is unknown."""

    return _set_column(store, memory_id, "scope", "global", "promote")


def demote(store: MemoryStore, memory_id: str) -> bool:
    return _set_column(store, memory_id, "scope", "project", "demote")


def reactivate(store: MemoryStore, memory_id: str) -> bool:
    return _set_column(store, memory_id, "status", "active", "reactivate")
