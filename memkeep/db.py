from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from .errors import SchemaMigrationError

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path.home() / ".memkeep" / "mem.db"
BUSY_TIMEOUT_MS = 5000


@dataclass(frozen=True)
class Migration:
    version: int
    name: str
    statements: tuple[str, ...]
    # (table, column, declaration) pairs added only when missing.
    columns: tuple[tuple[str, str, str], ...] = field(default_factory=tuple)


MIGRATIONS: tuple[Migration, ...] = (
    Migration(
        version=1,
        name="init",
        statements=(
            """
            CREATE TABLE IF NOT EXISTS memories (
                id TEXT PRIMARY KEY,
                session_id TEXT,
                project TEXT,
                title TEXT NOT NULL,
                type TEXT NOT NULL CHECK(type IN ('auto', 'manual', 'pattern', 'decision')),
                content TEXT NOT NULL,
                git_diff TEXT,
                created_at TEXT NOT NULL
            )
            """,
            """
            CREATE VIRTUAL TABLE IF NOT EXISTS memories_fts USING fts5(
                title,
                content,
                content='memories',
                content_rowid='rowid',
                tokenize='porter unicode61'
            )
            """,
            """
            CREATE TRIGGER IF NOT EXISTS memories_ai AFTER INSERT ON memories BEGIN
                INSERT INTO memories_fts(rowid, title, content)
                VALUES (new.rowid, new.title, new.content);
            END
            """,
            """
            CREATE TRIGGER IF NOT EXISTS memories_ad AFTER DELETE ON memories BEGIN
                INSERT INTO memories_fts(memories_fts, rowid, title, content)
                VALUES ('delete', old.rowid, old.title, old.content);
            END
            """,
            """
            CREATE TRIGGER IF NOT EXISTS memories_au
            AFTER UPDATE OF title, content ON memories BEGIN
                INSERT INTO memories_fts(memories_fts, rowid, title, content)
                VALUES ('delete', old.rowid, old.title, old.content);
                INSERT INTO memories_fts(rowid, title, content)
                VALUES (new.rowid, new.title, new.content);
            END
            """,
            """
            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                project TEXT,
                goal TEXT,
                started_at TEXT NOT NULL,
                ended_at TEXT,
                turn_count INTEGER DEFAULT 0
            )
            """,
            "CREATE INDEX IF NOT EXISTS memories_project_idx ON memories(project, created_at DESC)",
            "CREATE INDEX IF NOT EXISTS sessions_project_idx ON sessions(project, started_at DESC)",
        ),
    ),
    Migration(
        version=2,
        name="decay_scope",
        statements=(),
        columns=(
            ("memories", "access_count", "INTEGER NOT NULL DEFAULT 0"),
            ("memories", "last_accessed_at", "TEXT"),
            (
                "memories",
                "status",
                "TEXT NOT NULL DEFAULT 'active' CHECK(status IN ('active', 'cold'))",
            ),
            (
                "memories",
                "scope",
                "TEXT NOT NULL DEFAULT 'project' CHECK(scope IN ('project', 'global'))",
            ),
        ),
    ),
    Migration(
        version=3,
        name="session_analytics",
        statements=(),
        columns=(
            ("sessions", "duration_secs", "INTEGER"),
            ("sessions", "input_tokens", "INTEGER NOT NULL DEFAULT 0"),
            ("sessions", "output_tokens", "INTEGER NOT NULL DEFAULT 0"),
            ("sessions", "cache_read_tokens", "INTEGER NOT NULL DEFAULT 0"),
            ("sessions", "cache_creation_tokens", "INTEGER NOT NULL DEFAULT 0"),
        ),
    ),
    Migration(
        version=4,
        name="indexes",
        statements=(
            "CREATE INDEX IF NOT EXISTS memories_status_created_idx"
            " ON memories(status, created_at DESC)",
            "CREATE INDEX IF NOT EXISTS memories_type_created_idx"
            " ON memories(type, created_at DESC)",
            "CREATE INDEX IF NOT EXISTS memories_scope_idx ON memories(scope)",
        ),
    ),
    Migration(
        version=5,
        name="indexed_files",
        statements=(
            """
            CREATE TABLE IF NOT EXISTS indexed_files (
                id INTEGER PRIMARY KEY,
                source_path TEXT NOT NULL UNIQUE,
                project_path TEXT,
                project_name TEXT NOT NULL,
                title TEXT NOT NULL,
                content TEXT NOT NULL,
                indexed_at TEXT NOT NULL,
                file_mtime_secs INTEGER NOT NULL
            )
            """,
            """
            CREATE VIRTUAL TABLE IF NOT EXISTS indexed_files_fts USING fts5(
                title,
                content,
                content='indexed_files',
                content_rowid='id',
                tokenize='porter unicode61'
            )
            """,
            """
            CREATE TRIGGER IF NOT EXISTS indexed_files_ai AFTER INSERT ON indexed_files BEGIN
                INSERT INTO indexed_files_fts(rowid, title, content)
                VALUES (new.id, new.title, new.content);
            END
            """,
            """
            CREATE TRIGGER IF NOT EXISTS indexed_files_ad AFTER DELETE ON indexed_files BEGIN
                INSERT INTO indexed_files_fts(indexed_files_fts, rowid, title, content)
                VALUES ('delete', old.id, old.title, old.content);
            END
            """,
            """
            CREATE TRIGGER IF NOT EXISTS indexed_files_au AFTER UPDATE OF title, content
            ON indexed_files BEGIN
                INSERT INTO indexed_files_fts(indexed_files_fts, rowid, title, content)
                VALUES ('delete', old.id, old.title, old.content);
                INSERT INTO indexed_files_fts(rowid, title, content)
                VALUES (new.id, new.title, new.content);
            END
            """,
            "CREATE INDEX IF NOT EXISTS indexed_files_project_idx ON indexed_files(project_name)",
        ),
    ),
)

SCHEMA_VERSION = max(migration.version for migration in MIGRATIONS)


def connect(db_path: Path | str) -> sqlite3.Connection:
    path = Path(db_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute(f"PRAGMA busy_timeout = {BUSY_TIMEOUT_MS}")
        try:
            conn.execute("PRAGMA journal_mode = WAL")
        except sqlite3.OperationalError:
            conn.execute("PRAGMA journal_mode = DELETE")
        conn.execute("PRAGMA synchronous = NORMAL")
    except sqlite3.Error:
        conn.close()
        raise
    return conn


def schema_version(conn: sqlite3.Connection) -> int:
    row = conn.execute("PRAGMA user_version").fetchone()
    return int(row[0]) if row else 0


def _set_schema_version(conn: sqlite3.Connection, version: int) -> None:
    # user_version is not part of the DDL transaction; it is bumped after COMMIT.
    conn.execute(f"PRAGMA user_version = {int(version)}")


def _column_names(conn: sqlite3.Connection, table: str) -> set[str]:
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}


def _ensure_column(conn: sqlite3.Connection, table: str, column: str, column_type: str) -> None:
    if column in _column_names(conn, table):
        return
    conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {column_type}")


def _apply_migration(conn: sqlite3.Connection, migration: Migration) -> None:
    if conn.in_transaction:
        conn.commit()
    conn.execute("BEGIN")
    try:
        for statement in migration.statements:
            conn.execute(statement)
        for table, column, column_type in migration.columns:
            _ensure_column(conn, table, column, column_type)
    except sqlite3.Error as exc:
        conn.rollback()
        logger.error(
            "schema migration %s (%s) failed: %s", migration.version, migration.name, exc
        )
        raise SchemaMigrationError(
            f"schema migration {migration.version} ({migration.name}) failed: {exc}"
        ) from exc
    conn.commit()


def apply_migrations(
    conn: sqlite3.Connection, migrations: Iterable[Migration] = MIGRATIONS
) -> list[int]:
    """Apply every migration newer than the stored user_version.

    Each migration runs as one transaction; the version bump follows as a
    separate statement. Returns the versions that were applied.
    """

    current = schema_version(conn)
    applied: list[int] = []
    for migration in sorted(migrations, key=lambda m: m.version):
        if migration.version <= current:
            continue
        _apply_migration(conn, migration)
        _set_schema_version(conn, migration.version)
        current = migration.version
        applied.append(migration.version)
        logger.info("applied schema migration %s (%s)", migration.version, migration.name)
    return applied

