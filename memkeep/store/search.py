from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING, Any

from ..errors import ValidationError, storage_errors
from .types import IndexedFile, Memory, SearchHit, UnifiedResult
from .utils import clamp_limit, project_column_clause

if TYPE_CHECKING:
    from ._store import MemoryStore

SEARCH_KINDS = ("memory", "indexed_file")
INDEXED_FILE_PROJECT_EXPR = "COALESCE(indexed_files.project_path, indexed_files.project_name)"


def fts_phrase(query: str | None) -> str:
    """Quote free text as a single FTS5 phrase.

    Operators (AND/OR/NOT/NEAR, column filters, ``*``, ``^``) inside the
    quotes are plain tokens, so caller text cannot change the query shape.
    """

    if query is None or not str(query).strip():
        raise ValidationError("query must not be blank")
    text = str(query).strip()
    return '"' + text.replace('"', '""') + '"'


def _has_tokens(query: str) -> bool:
    # A phrase with no indexable characters matches nothing.
    return any(ch.isalnum() for ch in query)


def _memory_hits(
    store: MemoryStore, phrase: str, project: str | None, limit: int
) -> list[SearchHit]:
    params: list[Any] = [phrase]
    where = ["memories_fts MATCH ?", "memories.status = 'active'"]
    if project:
        clause, clause_params = project_column_clause("memories.project", project)
        if clause:
            where.append(f"({clause} OR memories.scope = 'global')")
            params.extend(clause_params)
    sql = f"""
        SELECT memories.*, -bm25(memories_fts) AS score
        FROM memories_fts
        JOIN memories ON memories.rowid = memories_fts.rowid
        WHERE {' AND '.join(where)}
        ORDER BY score DESC, memories.created_at DESC
        LIMIT ?
    """
    params.append(limit)
    rows = store.conn.execute(sql, params).fetchall()
    return [_hit(Memory.from_row(row), row) for row in rows]


def _indexed_file_hits(
    store: MemoryStore, phrase: str, project: str | None, limit: int
) -> list[SearchHit]:
    params: list[Any] = [phrase]
    where = ["indexed_files_fts MATCH ?"]
    if project:
        clause, clause_params = project_column_clause(INDEXED_FILE_PROJECT_EXPR, project)
        if clause:
            where.append(clause)
            params.extend(clause_params)
    sql = f"""
        SELECT indexed_files.*, -bm25(indexed_files_fts) AS score
        FROM indexed_files_fts
        JOIN indexed_files ON indexed_files.id = indexed_files_fts.rowid
        WHERE {' AND '.join(where)}
        ORDER BY score DESC, indexed_files.indexed_at DESC
        LIMIT ?
    """
    params.append(limit)
    rows = store.conn.execute(sql, params).fetchall()
    return [_hit(IndexedFile.from_row(row), row) for row in rows]


def _hit(record: Memory | IndexedFile, row: sqlite3.Row) -> SearchHit:
    return SearchHit(record=record, rank=float(row["score"]))


def search(
    store: MemoryStore,
    query: str,
    kind: str = "memory",
    project: str | None = None,
    limit: int = 10,
) -> list[SearchHit]:
    if kind not in SEARCH_KINDS:
        raise ValidationError(f"Invalid search kind '{kind}'. Allowed: {', '.join(SEARCH_KINDS)}")
    phrase = fts_phrase(query)
    limit = clamp_limit(limit, store.config.search_limit_max)
    if not _has_tokens(query):
        return []
    with storage_errors("search"):
        if kind == "memory":
            return _memory_hits(store, phrase, project, limit)
        return _indexed_file_hits(store, phrase, project, limit)


def search_unified(
    store: MemoryStore,
    query: str,
    project: str | None = None,
    limit: int = 10,
    *,
    track_access: bool = False,
) -> list[UnifiedResult]:
    """Search memories and indexed files, merged into one ranked list.

    Each source is capped at ``limit`` on its own so a source with few
    matches still contributes them. When ``track_access`` is set the returned
    memories have their access counters bumped in one batch.
    """

    phrase = fts_phrase(query)
    limit = clamp_limit(limit, store.config.search_limit_max)
    if not _has_tokens(query):
        return []
    with storage_errors("search"):
        memory_hits = _memory_hits(store, phrase, project, limit)
        file_hits = _indexed_file_hits(store, phrase, project, limit)

    merged = [UnifiedResult("memory", hit.record, hit.rank) for hit in memory_hits]
    merged.extend(UnifiedResult("indexed_file", hit.record, hit.rank) for hit in file_hits)
    merged.sort(key=lambda item: (item.rank, _recency(item.record)), reverse=True)
    results = merged[:limit]

    if track_access:
        accessed = [item.record.id for item in results if item.origin == "memory"]
        store.record_access(str(mid) for mid in accessed)
    return results


def _recency(record: Memory | IndexedFile) -> str:
    if isinstance(record, Memory):
        return record.created_at
    return record.indexed_at
