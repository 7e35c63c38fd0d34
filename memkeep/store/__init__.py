from __future__ import annotations

from ._store import MemoryStore
from .decay import retention_score
from .search import fts_phrase
from .types import DecayResult, IndexedFile, IndexedFileInput, Memory, SearchHit, UnifiedResult

__all__ = [
    "DecayResult",
    "IndexedFile",
    "IndexedFileInput",
    "Memory",
    "MemoryStore",
    "SearchHit",
    "UnifiedResult",
    "fts_phrase",
    "retention_score",
]
