from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from .. import db
from ..config import MemkeepConfig, load_config
from ..errors import StoreError, ValidationError, storage_errors
from ..memory_types import (
    MemoryScope,
    MemoryStatus,
    MemoryType,
    parse_memory_scope,
    parse_memory_status,
    parse_memory_type,
    validate_user_memory_type,
)
from . import decay as store_decay
from . import search as store_search
from . import utils as store_utils
from .types import (
    DecayResult,
    IndexedFile,
    IndexedFileInput,
    Memory,
    SearchHit,
    Session,
    UnifiedResult,
)

if TYPE_CHECKING:
    from ..transcript import TranscriptAnalytics

logger = logging.getLogger(__name__)

SUGGEST_LIMIT_MAX = 500


def _require_text(value: str | None, field: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required and must not be blank")
    return str(value)


def _clean_optional(value: str | None) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


class MemoryStore:
    """Handle over one memkeep database file.

    Opening a store applies pending schema migrations. Every operation runs
    synchronously on the caller's thread.
    """

    def __init__(
        self,
        db_path: Path | str | None = None,
        *,
        config: MemkeepConfig | None = None,
    ):
        self.config = config or load_config()
        self.db_path = Path(db_path or self.config.db_path).expanduser()
        if self.db_path.exists() and self.db_path.is_dir():
            raise StoreError(f"store path is a directory: {self.db_path}")
        try:
            with storage_errors("open store"):
                self.conn = db.connect(self.db_path)
        except OSError as exc:
            raise StoreError(f"cannot create store at {self.db_path}: {exc}") from exc
        try:
            with storage_errors("apply schema"):
                db.apply_migrations(self.conn)
        except Exception:
            self.conn.close()
            raise
        store_decay.register_functions(self.conn)

    def __enter__(self) -> MemoryStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self.conn.close()

    # Sessions

    def start_session(
        self,
        session_id: str | None = None,
        project: str | None = None,
        goal: str | None = None,
    ) -> str:
        session_id = _clean_optional(session_id) or str(uuid4())
        with storage_errors("start session"), self.conn:
            self.conn.execute(
                """
                INSERT OR IGNORE INTO sessions(id, project, goal, started_at)
                VALUES (?, ?, ?, ?)
                """,
                (
                    session_id,
                    _clean_optional(project),
                    _clean_optional(goal),
                    store_utils.now_iso(),
                ),
            )
        return session_id

    def end_session(self, session_id: str) -> bool:
        with storage_errors("end session"), self.conn:
            cur = self.conn.execute(
                "UPDATE sessions SET ended_at = ? WHERE id = ? AND ended_at IS NULL",
                (store_utils.now_iso(), session_id),
            )
        return cur.rowcount > 0

    def update_session_analytics(self, session_id: str, analytics: TranscriptAnalytics) -> bool:
        with storage_errors("update session analytics"), self.conn:
            cur = self.conn.execute(
                """
                UPDATE sessions
                SET turn_count = ?,
                    duration_secs = ?,
                    input_tokens = ?,
                    output_tokens = ?,
                    cache_read_tokens = ?,
                    cache_creation_tokens = ?
                WHERE id = ?
                """,
                (
                    analytics.turn_count,
                    analytics.duration_secs,
                    analytics.input_tokens,
                    analytics.output_tokens,
                    analytics.cache_read_tokens,
                    analytics.cache_creation_tokens,
                    session_id,
                ),
            )
        return cur.rowcount > 0

    def get_session(self, session_id: str) -> Session | None:
        with storage_errors("get session"):
            row = self.conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
        if row is None:
            return None
        return Session.from_row(row)

    def gain_stats(self, top: int = 5) -> dict[str, Any]:
        """Token and duration totals across sessions with recorded analytics."""

        with storage_errors("gain stats"):
            totals = self.conn.execute(
                """
                SELECT
                    COUNT(*) AS session_count,
                    COALESCE(SUM(duration_secs), 0) AS total_secs,
                    COALESCE(SUM(input_tokens), 0) AS total_input,
                    COALESCE(SUM(output_tokens), 0) AS total_output,
                    COALESCE(SUM(cache_read_tokens), 0) AS total_cache_read,
                    COALESCE(SUM(cache_creation_tokens), 0) AS total_cache_creation,
                    COALESCE(AVG(turn_count), 0) AS avg_turns,
                    COALESCE(AVG(duration_secs), 0) AS avg_secs
                FROM sessions
                WHERE turn_count > 0
                """
            ).fetchone()
            project_rows = self.conn.execute(
                """
                SELECT
                    COALESCE(project, '(unknown)') AS project,
                    COUNT(*) AS sessions,
                    SUM(input_tokens + output_tokens + cache_read_tokens + cache_creation_tokens)
                        AS total_tokens
                FROM sessions
                WHERE turn_count > 0
                GROUP BY COALESCE(project, '(unknown)')
                ORDER BY total_tokens DESC
                LIMIT ?
                """,
                (top,),
            ).fetchall()
        input_side = (
            int(totals["total_input"])
            + int(totals["total_cache_read"])
            + int(totals["total_cache_creation"])
        )
        cache_efficiency = 0.0
        if input_side:
            cache_efficiency = int(totals["total_cache_read"]) * 100.0 / input_side
        return {
            "session_count": int(totals["session_count"]),
            "total_secs": int(totals["total_secs"]),
            "total_input_tokens": int(totals["total_input"]),
            "total_output_tokens": int(totals["total_output"]),
            "total_cache_read_tokens": int(totals["total_cache_read"]),
            "total_cache_creation_tokens": int(totals["total_cache_creation"]),
            "cache_efficiency_pct": round(cache_efficiency, 1),
            "avg_turns_per_session": round(float(totals["avg_turns"]), 1),
            "avg_session_duration_secs": round(float(totals["avg_secs"]), 1),
            "top_projects": [dict(row) for row in project_rows],
        }

    # Memories

    def save_memory(
        self,
        title: str,
        content: str,
        memory_type: str | MemoryType = MemoryType.MANUAL,
        project: str | None = None,
        session_id: str | None = None,
        git_diff: str | None = None,
        scope: str | MemoryScope = MemoryScope.PROJECT,
    ) -> Memory:
        """Save a caller-supplied memory. The reserved 'auto' type is rejected."""

        return self._insert_memory(
            title=_require_text(title, "title"),
            content=_require_text(content, "content"),
            memory_type=validate_user_memory_type(memory_type),
            project=_clean_optional(project),
            session_id=_clean_optional(session_id),
            git_diff=git_diff or None,
            scope=parse_memory_scope(scope),
        )

    def save_auto_memory(
        self,
        title: str,
        content: str,
        project: str | None = None,
        session_id: str | None = None,
        git_diff: str | None = None,
    ) -> Memory:
        return self._insert_memory(
            title=_require_text(title, "title"),
            content=_require_text(content, "content"),
            memory_type=MemoryType.AUTO,
            project=_clean_optional(project),
            session_id=_clean_optional(session_id),
            git_diff=git_diff or None,
            scope=MemoryScope.PROJECT,
        )

    def _insert_memory(
        self,
        *,
        title: str,
        content: str,
        memory_type: MemoryType,
        project: str | None,
        session_id: str | None,
        git_diff: str | None,
        scope: MemoryScope,
    ) -> Memory:
        memory = Memory(
            id=str(uuid4()),
            session_id=session_id,
            project=project,
            title=title,
            memory_type=memory_type,
            content=content,
            git_diff=git_diff,
            created_at=store_utils.now_iso(),
            scope=scope,
        )
        # memories_ai keeps memories_fts in step with this insert.
        with storage_errors("save memory"), self.conn:
            self.conn.execute(
                """
                INSERT INTO memories(
                    id, session_id, project, title, type, content, git_diff, created_at,
                    access_count, last_accessed_at, status, scope
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, NULL, ?, ?)
                """,
                (
                    memory.id,
                    memory.session_id,
                    memory.project,
                    memory.title,
                    memory.memory_type.value,
                    memory.content,
                    memory.git_diff,
                    memory.created_at,
                    memory.status.value,
                    memory.scope.value,
                ),
            )
        return memory

    def update_memory(
        self,
        memory_id: str,
        *,
        title: str | None = None,
        content: str | None = None,
    ) -> Memory | None:
        if title is None and content is None:
            raise ValidationError("nothing to update: pass title and/or content")
        if title is not None:
            _require_text(title, "title")
        if content is not None:
            _require_text(content, "content")
        with storage_errors("update memory"), self.conn:
            cur = self.conn.execute(
                """
                UPDATE memories
                SET title = COALESCE(?, title), content = COALESCE(?, content)
                WHERE id = ?
                """,
                (title, content, memory_id),
            )
        if cur.rowcount == 0:
            return None
        return self.get_memory(memory_id)

    def get_memory(self, memory_id: str) -> Memory | None:
        with storage_errors("get memory"):
            row = self.conn.execute("SELECT * FROM memories WHERE id = ?", (memory_id,)).fetchone()
        if row is None:
            return None
        return Memory.from_row(row)

    def access_memory(self, memory_id: str) -> Memory | None:
        """Read a memory and count the read toward its retention."""

        if self.record_access([memory_id]) == 0:
            return None
        return self.get_memory(memory_id)

    def record_access(self, memory_ids: Iterable[str]) -> int:
        ids = list(dict.fromkeys(str(mid) for mid in memory_ids))
        if not ids:
            return 0
        placeholders = ",".join("?" for _ in ids)
        with storage_errors("record access"), self.conn:
            cur = self.conn.execute(
                f"""
                UPDATE memories
                SET access_count = access_count + 1, last_accessed_at = ?
                WHERE id IN ({placeholders})
                """,
                (store_utils.now_iso(), *ids),
            )
        return cur.rowcount

    def delete_memory(self, memory_id: str) -> bool:
        """Hard-delete a memory. Irreversible, unlike decay."""

        with storage_errors("delete memory"), self.conn:
            cur = self.conn.execute("DELETE FROM memories WHERE id = ?", (memory_id,))
        if cur.rowcount:
            logger.info("deleted memory %s", memory_id)
        return cur.rowcount > 0

    def list_memories(
        self,
        project: str | None = None,
        scope: str | MemoryScope | None = None,
        status: str | MemoryStatus | None = None,
        memory_type: str | MemoryType | None = None,
        limit: int = 50,
    ) -> list[Memory]:
        limit = store_utils.clamp_limit(limit, self.config.search_limit_max)
        where: list[str] = []
        params: list[Any] = []
        if project:
            clause, clause_params = store_utils.project_column_clause("project", project)
            if clause:
                where.append(clause)
                params.extend(clause_params)
        if scope is not None:
            where.append("scope = ?")
            params.append(parse_memory_scope(scope).value)
        if status is not None:
            where.append("status = ?")
            params.append(parse_memory_status(status).value)
        if memory_type is not None:
            where.append("type = ?")
            params.append(parse_memory_type(memory_type).value)
        where_clause = f"WHERE {' AND '.join(where)}" if where else ""
        with storage_errors("list memories"):
            rows = self.conn.execute(
                f"SELECT * FROM memories {where_clause} ORDER BY created_at DESC LIMIT ?",
                (*params, limit),
            ).fetchall()
        return [Memory.from_row(row) for row in rows]

    def recent_memories(self, project: str | None = None, limit: int = 5) -> list[Memory]:
        """Active memories for context loading; global ones join any project."""

        limit = store_utils.clamp_limit(limit, self.config.context_limit_max)
        where = ["status = 'active'"]
        params: list[Any] = []
        if project:
            clause, clause_params = store_utils.project_column_clause("project", project)
            if clause:
                where.append(f"({clause} OR scope = 'global')")
                params.extend(clause_params)
        with storage_errors("recent memories"):
            rows = self.conn.execute(
                f"""
                SELECT * FROM memories
                WHERE {' AND '.join(where)}
                ORDER BY created_at DESC
                LIMIT ?
                """,
                (*params, limit),
            ).fetchall()
        return [Memory.from_row(row) for row in rows]

    def recent_auto_memories(self, limit: int = 20) -> list[Memory]:
        limit = store_utils.clamp_limit(limit, SUGGEST_LIMIT_MAX)
        with storage_errors("recent auto memories"):
            rows = self.conn.execute(
                "SELECT * FROM memories WHERE type = ? ORDER BY created_at DESC LIMIT ?",
                (MemoryType.AUTO.value, limit),
            ).fetchall()
        return [Memory.from_row(row) for row in rows]

    def stats(self) -> dict[str, Any]:
        with storage_errors("stats"):
            row = self.conn.execute(
                """
                SELECT
                    (SELECT COUNT(*) FROM memories) AS memories,
                    (SELECT COUNT(*) FROM memories WHERE status = 'active') AS active,
                    (SELECT COUNT(*) FROM memories WHERE status = 'cold') AS cold,
                    (SELECT COUNT(*) FROM memories WHERE scope = 'global') AS global_memories,
                    (SELECT COUNT(*) FROM sessions) AS sessions,
                    (SELECT COUNT(DISTINCT project) FROM memories WHERE project IS NOT NULL)
                        AS projects,
                    (SELECT COUNT(*) FROM indexed_files) AS indexed_files
                """
            ).fetchone()
            size_row = self.conn.execute(
                "SELECT page_count * page_size FROM pragma_page_count(), pragma_page_size()"
            ).fetchone()
        return {
            "path": str(self.db_path),
            "size_bytes": int(size_row[0] or 0) if size_row else 0,
            "schema_version": db.schema_version(self.conn),
            "memories": int(row["memories"]),
            "active": int(row["active"]),
            "cold": int(row["cold"]),
            "global": int(row["global_memories"]),
            "sessions": int(row["sessions"]),
            "projects": int(row["projects"]),
            "indexed_files": int(row["indexed_files"]),
        }

    # Indexed files

    def upsert_indexed_file(self, item: IndexedFileInput) -> int:
        with storage_errors("upsert indexed file"), self.conn:
            # ON CONFLICT DO UPDATE fires the update trigger; REPLACE would skip
            # the delete trigger and leave stale FTS rows behind.
            self.conn.execute(
                """
                INSERT INTO indexed_files(
                    source_path, project_path, project_name, title, content,
                    indexed_at, file_mtime_secs
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(source_path) DO UPDATE SET
                    project_path = excluded.project_path,
                    project_name = excluded.project_name,
                    title = excluded.title,
                    content = excluded.content,
                    indexed_at = excluded.indexed_at,
                    file_mtime_secs = excluded.file_mtime_secs
                """,
                (
                    item.source_path,
                    item.project_path,
                    item.project_name,
                    item.title,
                    item.content,
                    store_utils.now_iso(),
                    int(item.file_mtime_secs),
                ),
            )
            row = self.conn.execute(
                "SELECT id FROM indexed_files WHERE source_path = ?", (item.source_path,)
            ).fetchone()
        if row is None:
            raise StoreError(f"indexed file vanished after upsert: {item.source_path}")
        return int(row["id"])

    def get_indexed_file(self, file_id: int) -> IndexedFile | None:
        with storage_errors("get indexed file"):
            row = self.conn.execute(
                "SELECT * FROM indexed_files WHERE id = ?", (int(file_id),)
            ).fetchone()
        return IndexedFile.from_row(row) if row else None

    def get_indexed_file_by_path(self, source_path: str) -> IndexedFile | None:
        with storage_errors("get indexed file"):
            row = self.conn.execute(
                "SELECT * FROM indexed_files WHERE source_path = ?", (source_path,)
            ).fetchone()
        return IndexedFile.from_row(row) if row else None

    def indexed_file_mtimes(self) -> dict[str, int]:
        with storage_errors("load indexed files"):
            rows = self.conn.execute(
                "SELECT source_path, file_mtime_secs FROM indexed_files"
            ).fetchall()
        return {row["source_path"]: int(row["file_mtime_secs"]) for row in rows}

    def delete_indexed_file(self, source_path: str) -> bool:
        return self.delete_indexed_files([source_path]) > 0

    def delete_indexed_files(self, source_paths: Iterable[str]) -> int:
        paths = [(path,) for path in source_paths]
        if not paths:
            return 0
        with storage_errors("prune indexed files"), self.conn:
            cur = self.conn.executemany("DELETE FROM indexed_files WHERE source_path = ?", paths)
        return cur.rowcount

    def list_indexed_files(self, project: str | None = None, limit: int = 100) -> list[IndexedFile]:
        where = ""
        params: list[Any] = []
        if project:
            clause, params = store_utils.project_column_clause(
                store_search.INDEXED_FILE_PROJECT_EXPR, project
            )
            if clause:
                where = f"WHERE {clause}"
        with storage_errors("list indexed files"):
            rows = self.conn.execute(
                f"SELECT * FROM indexed_files {where} ORDER BY indexed_at DESC LIMIT ?",
                (*params, int(limit)),
            ).fetchall()
        return [IndexedFile.from_row(row) for row in rows]

    def count_indexed_files(self) -> int:
        with storage_errors("count indexed files"):
            row = self.conn.execute("SELECT COUNT(*) FROM indexed_files").fetchone()
        return int(row[0])

    # Search and decay

    def search(
        self,
        query: str,
        kind: str = "memory",
        project: str | None = None,
        limit: int = 10,
    ) -> list[SearchHit]:
        return store_search.search(self, query, kind=kind, project=project, limit=limit)

    def search_unified(
        self,
        query: str,
        project: str | None = None,
        limit: int = 10,
        *,
        track_access: bool = False,
    ) -> list[UnifiedResult]:
        return store_search.search_unified(
            self, query, project=project, limit=limit, track_access=track_access
        )

    def run_decay(self, threshold: float, dry_run: bool = False) -> DecayResult:
        return store_decay.run_decay(self, threshold, dry_run=dry_run)

    def promote(self, memory_id: str) -> bool:
        return store_decay.promote(self, memory_id)

    def demote(self, memory_id: str) -> bool:
        return store_decay.demote(self, memory_id)

    def reactivate(self, memory_id: str) -> bool:
        return store_decay.reactivate(self, memory_id)
