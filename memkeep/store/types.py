from __future__ import annotations

import sqlite3
from dataclasses import asdict, dataclass, field
from typing import Any, Literal

from ..memory_types import MemoryScope, MemoryStatus, MemoryType

Origin = Literal["memory", "indexed_file"]


@dataclass
class Memory:
    id: str
    session_id: str | None
    project: str | None
    title: str
    memory_type: MemoryType
    content: str
    git_diff: str | None
    created_at: str
    access_count: int = 0
    last_accessed_at: str | None = None
    status: MemoryStatus = MemoryStatus.ACTIVE
    scope: MemoryScope = MemoryScope.PROJECT

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Memory:
        return cls(
            id=row["id"],
            session_id=row["session_id"],
            project=row["project"],
            title=row["title"],
            memory_type=MemoryType(row["type"]),
            content=row["content"],
            git_diff=row["git_diff"],
            created_at=row["created_at"],
            access_count=int(row["access_count"] or 0),
            last_accessed_at=row["last_accessed_at"],
            status=MemoryStatus(row["status"]),
            scope=MemoryScope(row["scope"]),
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["type"] = str(data.pop("memory_type"))
        data["status"] = str(self.status)
        data["scope"] = str(self.scope)
        return data


@dataclass
class IndexedFile:
    id: int
    source_path: str
    project_path: str | None
    project_name: str
    title: str
    content: str
    indexed_at: str
    file_mtime_secs: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> IndexedFile:
        return cls(
            id=int(row["id"]),
            source_path=row["source_path"],
            project_path=row["project_path"],
            project_name=row["project_name"],
            title=row["title"],
            content=row["content"],
            indexed_at=row["indexed_at"],
            file_mtime_secs=int(row["file_mtime_secs"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class IndexedFileInput:
    source_path: str
    project_path: str | None
    project_name: str
    title: str
    content: str
    file_mtime_secs: int


@dataclass
class Session:
    id: str
    project: str | None
    goal: str | None
    started_at: str
    ended_at: str | None
    turn_count: int = 0
    duration_secs: int | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Session:
        return cls(
            id=row["id"],
            project=row["project"],
            goal=row["goal"],
            started_at=row["started_at"],
            ended_at=row["ended_at"],
            turn_count=int(row["turn_count"] or 0),
            duration_secs=row["duration_secs"],
            input_tokens=int(row["input_tokens"] or 0),
            output_tokens=int(row["output_tokens"] or 0),
            cache_read_tokens=int(row["cache_read_tokens"] or 0),
            cache_creation_tokens=int(row["cache_creation_tokens"] or 0),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SearchHit:
    """One full-text match from a single source."""

    record: Memory | IndexedFile
    rank: float

    def to_dict(self) -> dict[str, Any]:
        return {"rank": self.rank, "record": self.record.to_dict()}


@dataclass
class UnifiedResult:
    origin: Origin
    record: Memory | IndexedFile
    rank: float

    def to_dict(self) -> dict[str, Any]:
        return {"origin": self.origin, "rank": self.rank, "record": self.record.to_dict()}


@dataclass
class DecayCandidate:
    id: str
    title: str
    project: str | None
    access_count: int
    created_at: str
    retention: float


@dataclass
class DecayResult:
    threshold: float
    dry_run: bool
    affected: int
    candidates: list[DecayCandidate] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
