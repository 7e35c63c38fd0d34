from __future__ import annotations

from pathlib import Path

import pytest

from memkeep.errors import ValidationError
from memkeep.memory_types import MemoryScope, MemoryStatus, MemoryType
from memkeep.store import IndexedFileInput, MemoryStore
from memkeep.transcript import TranscriptAnalytics


def _file(source_path: str, content: str, *, title: str = "Notes", mtime: int = 100):
    return IndexedFileInput(
        source_path=source_path,
        project_path="/home/u/proj",
        project_name="proj",
        title=title,
        content=content,
        file_mtime_secs=mtime,
    )


def test_save_and_get_memory(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path / "mem.sqlite")
    saved = store.save_memory(
        "Use WAL mode",
        "SQLite runs in WAL mode for concurrent readers",
        memory_type="decision",
        project="/home/u/proj",
    )
    loaded = store.get_memory(saved.id)
    store.close()

    assert loaded is not None
    assert loaded.title == "Use WAL mode"
    assert loaded.memory_type is MemoryType.DECISION
    assert loaded.status is MemoryStatus.ACTIVE
    assert loaded.scope is MemoryScope.PROJECT
    assert loaded.access_count == 0
    assert loaded.last_accessed_at is None
    assert loaded.to_dict()["type"] == "decision"


@pytest.mark.parametrize(
    ("title", "content", "memory_type", "scope", "message"),
    [
        ("", "body", "manual", "project", "title"),
        ("   ", "body", "manual", "project", "title"),
        ("title", "", "manual", "project", "content"),
        ("title", "body", "auto", "project", "reserved"),
        ("title", "body", "Manual", "project", "Invalid memory type"),
        ("title", "body", "observation", "project", "Invalid memory type"),
        ("title", "body", "manual", "everywhere", "Invalid memory scope"),
    ],
)
def test_save_memory_rejects_invalid_input(
    tmp_path: Path, title: str, content: str, memory_type: str, scope: str, message: str
) -> None:
    store = MemoryStore(tmp_path / "mem.sqlite")
    with pytest.raises(ValidationError, match=message):
        store.save_memory(title, content, memory_type=memory_type, scope=scope)
    assert store.stats()["memories"] == 0
    store.close()


def test_auto_memories_are_written_only_by_auto_capture(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path / "mem.sqlite")
    auto = store.save_auto_memory("Session ended", "Touched the indexer", project="proj")
    store.save_memory("Manual", "Something by hand")

    recent_auto = store.recent_auto_memories()
    store.close()

    assert auto.memory_type is MemoryType.AUTO
    assert [m.id for m in recent_auto] == [auto.id]


def test_update_memory_reindexes_full_text(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path / "mem.sqlite")
    memory = store.save_memory("Cache", "Redis handles the session cache")

    updated = store.update_memory(memory.id, content="Memcached handles the session cache")
    old_hits = store.search("redis")
    new_hits = store.search("memcached")
    missing = store.update_memory("no-such-id", title="x")
    store.close()

    assert updated is not None
    assert updated.title == "Cache"
    assert old_hits == []
    assert [hit.record.id for hit in new_hits] == [memory.id]
    assert missing is None


def test_update_memory_requires_a_field(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path / "mem.sqlite")
    memory = store.save_memory("Cache", "Redis")
    with pytest.raises(ValidationError):
        store.update_memory(memory.id)
    with pytest.raises(ValidationError):
        store.update_memory(memory.id, title=" ")
    store.close()


def test_access_tracking(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path / "mem.sqlite")
    first = store.save_memory("First", "one")
    second = store.save_memory("Second", "two")

    assert store.get_memory(first.id).access_count == 0
    accessed = store.access_memory(first.id)
    touched = store.record_access([first.id, second.id, second.id, "unknown"])
    reloaded_first = store.get_memory(first.id)
    reloaded_second = store.get_memory(second.id)
    store.close()

    assert accessed is not None
    assert accessed.access_count == 1
    assert accessed.last_accessed_at is not None
    assert touched == 2
    assert reloaded_first.access_count == 2
    assert reloaded_second.access_count == 1


def test_not_found_is_not_an_error(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path / "mem.sqlite")
    assert store.get_memory("missing") is None
    assert store.access_memory("missing") is None
    assert store.delete_memory("missing") is False
    assert store.promote("missing") is False
    assert store.get_session("missing") is None
    assert store.end_session("missing") is False
    assert store.get_indexed_file(42) is None
    assert store.delete_indexed_file("/nope.md") is False
    store.close()


def test_delete_memory_removes_it_from_search(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path / "mem.sqlite")
    memory = store.save_memory("Flaky test", "The websocket test is flaky")
    assert store.search("websocket")

    assert store.delete_memory(memory.id) is True
    assert store.get_memory(memory.id) is None
    assert store.search("websocket") == []
    store.close()


def test_list_memories_filters(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path / "mem.sqlite")
    a = store.save_memory("A", "alpha", memory_type="pattern", project="/home/u/proj")
    b = store.save_memory("B", "beta", project="proj", scope="global")
    c = store.save_memory("C", "gamma", project="/home/u/other")
    store.conn.execute("UPDATE memories SET status = 'cold' WHERE id = ?", (c.id,))
    store.conn.commit()

    by_project = {m.id for m in store.list_memories(project="/srv/checkout/proj")}
    by_type = [m.id for m in store.list_memories(memory_type="pattern")]
    by_scope = [m.id for m in store.list_memories(scope="global")]
    by_status = [m.id for m in store.list_memories(status="cold")]
    with pytest.raises(ValidationError):
        store.list_memories(status="archived")
    with pytest.raises(ValidationError):
        store.list_memories(limit=0)
    store.close()

    assert by_project == {a.id, b.id}
    assert by_type == [a.id]
    assert by_scope == [b.id]
    assert by_status == [c.id]


def test_project_filter_escapes_like_wildcards(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path / "mem.sqlite")
    exact = store.save_memory("Exact", "body", project="/home/u/a_c")
    store.save_memory("Lookalike", "body", project="/home/u/abc")

    matched = [m.id for m in store.list_memories(project="a_c")]
    store.close()

    assert matched == [exact.id]


def test_recent_memories_for_context(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path / "mem.sqlite")
    mine = store.save_memory("Mine", "project note", project="/home/u/proj")
    shared = store.save_memory("Shared", "global note", project="/home/u/other", scope="global")
    store.save_memory("Theirs", "other project", project="/home/u/other")
    cold = store.save_memory("Cold", "old note", project="/home/u/proj")
    store.conn.execute("UPDATE memories SET status = 'cold' WHERE id = ?", (cold.id,))
    store.conn.commit()

    recent = {m.id for m in store.recent_memories(project="/home/u/proj", limit=10)}
    capped = store.recent_memories(limit=1000)
    store.close()

    assert recent == {mine.id, shared.id}
    assert len(capped) == 3


def test_stats_counts(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path / "mem.sqlite")
    store.save_memory("A", "alpha", project="p1")
    store.save_memory("B", "beta", project="p2", scope="global")
    store.start_session("s1", project="p1")
    store.upsert_indexed_file(_file("/root/-home-u-proj/memory/a.md", "notes"))

    stats = store.stats()
    store.close()

    assert stats["memories"] == 2
    assert stats["active"] == 2
    assert stats["cold"] == 0
    assert stats["global"] == 1
    assert stats["sessions"] == 1
    assert stats["projects"] == 2
    assert stats["indexed_files"] == 1
    assert stats["size_bytes"] > 0


def test_session_lifecycle(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path / "mem.sqlite")
    session_id = store.start_session("s1", project="/home/u/proj", goal="ship it")
    again = store.start_session("s1", project="elsewhere", goal="changed")

    assert again == session_id
    session = store.get_session(session_id)
    assert session.project == "/home/u/proj"
    assert session.goal == "ship it"
    assert session.ended_at is None

    assert store.end_session(session_id) is True
    ended_at = store.get_session(session_id).ended_at
    assert ended_at is not None
    assert store.end_session(session_id) is False
    assert store.get_session(session_id).ended_at == ended_at

    generated = store.start_session()
    store.close()
    assert generated and generated != session_id


def test_session_analytics_and_gain(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path / "mem.sqlite")
    store.start_session("s1", project="proj")
    store.start_session("s2", project="proj")
    store.update_session_analytics(
        "s1",
        TranscriptAnalytics(
            turn_count=4,
            duration_secs=600,
            input_tokens=100,
            output_tokens=50,
            cache_read_tokens=300,
            cache_creation_tokens=100,
        ),
    )

    session = store.get_session("s1")
    gain = store.gain_stats()
    store.close()

    assert session.turn_count == 4
    assert session.duration_secs == 600
    assert gain["session_count"] == 1
    assert gain["total_input_tokens"] == 100
    assert gain["cache_efficiency_pct"] == 60.0
    assert gain["top_projects"] == [{"project": "proj", "sessions": 1, "total_tokens": 550}]


def test_indexed_file_upsert_keeps_id_and_reindexes(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path / "mem.sqlite")
    source = "/root/-home-u-proj/memory/notes.md"
    first_id = store.upsert_indexed_file(_file(source, "Kafka consumers lag"))
    second_id = store.upsert_indexed_file(_file(source, "Pulsar consumers lag", mtime=200))

    row = store.get_indexed_file(first_id)
    kafka = store.search("kafka", kind="indexed_file")
    pulsar = store.search("pulsar", kind="indexed_file")
    store.close()

    assert first_id == second_id
    assert row.file_mtime_secs == 200
    assert kafka == []
    assert [hit.record.id for hit in pulsar] == [first_id]


def test_list_and_prune_indexed_files(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path / "mem.sqlite")
    store.upsert_indexed_file(_file("/r/a.md", "alpha"))
    store.upsert_indexed_file(_file("/r/b.md", "beta"))
    store.upsert_indexed_file(_file("/r/c.md", "gamma"))

    assert store.indexed_file_mtimes() == {"/r/a.md": 100, "/r/b.md": 100, "/r/c.md": 100}
    assert len(store.list_indexed_files(project="proj")) == 3
    assert store.list_indexed_files(project="other") == []
    assert store.delete_indexed_files(["/r/a.md", "/r/b.md", "/r/missing.md"]) == 2
    assert store.count_indexed_files() == 1
    assert store.search("alpha", kind="indexed_file") == []
    store.close()
