from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from memkeep.cli import app
from memkeep.store import MemoryStore

runner = CliRunner()


@pytest.fixture()
def db_file(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    path = tmp_path / "mem.sqlite"
    monkeypatch.setenv("MEMKEEP_DB", str(path))
    return path


def _seed(db_file: Path, *items: tuple[str, str]) -> list[str]:
    store = MemoryStore(db_file)
    try:
        return [
            store.save_memory(title, content, project="/home/u/proj").id for title, content in items
        ]
    finally:
        store.close()


def test_root_help_lists_commands() -> None:
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for command in ("save", "search", "context", "decay", "index", "session", "suggest-rules"):
        assert command in result.stdout


def test_session_help_lists_subcommands() -> None:
    result = runner.invoke(app, ["session", "--help"])
    assert result.exit_code == 0
    assert "start" in result.stdout
    assert "end" in result.stdout
    assert "analytics" in result.stdout


def test_save_then_search_json(db_file: Path) -> None:
    saved = runner.invoke(
        app, ["save", "Retry policy", "Use exponential backoff", "--type", "pattern"]
    )
    assert saved.exit_code == 0, saved.stdout
    assert "Saved: Retry policy" in saved.stdout

    result = runner.invoke(app, ["search", "backoff", "--json"])
    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert len(payload) == 1
    assert payload[0]["origin"] == "memory"
    assert payload[0]["record"]["type"] == "pattern"


def test_save_rejects_reserved_type(db_file: Path) -> None:
    result = runner.invoke(app, ["save", "Title", "Body", "--type", "auto"])
    assert result.exit_code == 1
    assert "reserved" in result.stdout


def test_search_rejects_blank_query(db_file: Path) -> None:
    result = runner.invoke(app, ["search", "   "])
    assert result.exit_code == 1


def test_search_human_output_keeps_brackets(db_file: Path) -> None:
    _seed(db_file, ("Lint [strict]", "ruff runs in strict mode"))
    result = runner.invoke(app, ["search", "ruff", "--kind", "memory"])
    assert result.exit_code == 0
    assert "[manual] Lint [strict]" in result.stdout


def test_show_counts_as_access(db_file: Path) -> None:
    (memory_id,) = _seed(db_file, ("Note", "body"))

    result = runner.invoke(app, ["show", memory_id])
    missing = runner.invoke(app, ["show", "nope"])

    assert result.exit_code == 0
    assert json.loads(result.stdout)["access_count"] == 1
    assert missing.exit_code == 1


def test_delete_requires_confirmation(db_file: Path) -> None:
    (memory_id,) = _seed(db_file, ("Note", "body"))

    refused = runner.invoke(app, ["delete", memory_id])
    deleted = runner.invoke(app, ["delete", memory_id, "--yes"])
    again = runner.invoke(app, ["delete", memory_id, "--yes"])

    assert refused.exit_code == 1
    assert deleted.exit_code == 0
    assert again.exit_code == 1


def test_promote_and_demote(db_file: Path) -> None:
    (memory_id,) = _seed(db_file, ("Note", "body"))

    promoted = runner.invoke(app, ["promote", memory_id])
    demoted = runner.invoke(app, ["demote", memory_id])
    unknown = runner.invoke(app, ["promote", "nope"])

    assert promoted.exit_code == 0
    assert "promoted to global scope" in promoted.stdout
    assert demoted.exit_code == 0
    assert unknown.exit_code == 1


def test_context_compact_and_out(db_file: Path, tmp_path: Path) -> None:
    _seed(db_file, ("Build", "make build runs the tests"))

    compact = runner.invoke(app, ["context", "--project", "proj", "--compact"])
    target = tmp_path / "ctx" / "context.md"
    written = runner.invoke(app, ["context", "--project", "proj", "--out", str(target)])
    empty = runner.invoke(app, ["context", "--project", "unrelated"])

    assert compact.exit_code == 0
    assert "## 1 - Build" in json.loads(compact.stdout)["additionalContext"]
    assert written.exit_code == 0
    assert target.read_text(encoding="utf-8").startswith("# Recent Session Memory")
    assert empty.stdout.strip() == "No recent memories for this project."


def test_context_reads_project_from_hook_stdin(db_file: Path) -> None:
    _seed(db_file, ("Build", "make build runs the tests"))
    result = runner.invoke(app, ["context"], input=json.dumps({"cwd": "/work/proj"}))
    assert result.exit_code == 0
    assert "## 1 - Build" in result.stdout


def test_decay_dry_run_json(db_file: Path) -> None:
    _seed(db_file, ("Fresh", "body"))
    result = runner.invoke(app, ["decay", "--dry-run", "--json"])
    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["dry_run"] is True
    assert payload["affected"] == 0
    assert payload["threshold"] == 0.1

    invalid = runner.invoke(app, ["decay", "--threshold=-1"])
    assert invalid.exit_code == 1


def test_index_and_unified_search(db_file: Path, tmp_path: Path) -> None:
    memory_dir = tmp_path / "projects" / "-home-u-proj" / "memory"
    memory_dir.mkdir(parents=True)
    (memory_dir / "notes.md").write_text("# Release\nbump the changelog", encoding="utf-8")

    indexed = runner.invoke(app, ["index", "--root", str(tmp_path / "projects"), "--json"])
    search = runner.invoke(app, ["search", "changelog", "--project", "proj", "--json"])
    missing_root = runner.invoke(app, ["index", "--root", str(tmp_path / "nowhere")])

    assert indexed.exit_code == 0
    assert json.loads(indexed.stdout)["new"] == 1
    results = json.loads(search.stdout)
    assert [item["origin"] for item in results] == ["indexed_file"]
    assert results[0]["record"]["title"] == "Release"
    assert missing_root.exit_code == 1


def test_corrupt_store_exits_with_storage_code(tmp_path: Path) -> None:
    path = tmp_path / "broken.sqlite"
    path.write_bytes(b"definitely not sqlite " * 200)

    result = runner.invoke(app, ["stats", "--db-path", str(path)])

    assert result.exit_code == 2


def test_session_flow_records_analytics(db_file: Path, tmp_path: Path) -> None:
    transcript = tmp_path / "transcript.jsonl"
    transcript.write_text(
        "\n".join(
            [
                '{"type":"user","timestamp":"2026-02-20T09:00:00Z"}',
                '{"type":"assistant","timestamp":"2026-02-20T09:05:00Z",'
                '"message":{"usage":{"input_tokens":10,"output_tokens":5,'
                '"cache_read_input_tokens":30,"cache_creation_input_tokens":0}}}',
            ]
        ),
        encoding="utf-8",
    )

    started = runner.invoke(app, ["session", "start", "--id", "s1", "--project", "proj"])
    ended = runner.invoke(
        app,
        ["session", "end", "s1", "--transcript", str(transcript), "--summary", "Wired the CLI"],
    )
    analytics = runner.invoke(app, ["session", "analytics", "s1"])
    gain = runner.invoke(app, ["gain", "--json"])
    suggest = runner.invoke(app, ["suggest-rules"])
    unknown = runner.invoke(app, ["session", "end", "nope"])

    assert started.stdout.strip() == "s1"
    assert ended.exit_code == 0
    assert "Recorded 1 turns" in ended.stdout
    session = json.loads(analytics.stdout)
    assert session["turn_count"] == 1
    assert session["duration_secs"] == 300
    assert session["ended_at"] is not None
    assert json.loads(gain.stdout)["session_count"] == 1
    assert suggest.exit_code == 0
    assert "## Suggested rules" in suggest.stdout
    assert unknown.exit_code == 1


def test_stats_json(db_file: Path) -> None:
    _seed(db_file, ("A", "alpha"), ("B", "beta"))
    result = runner.invoke(app, ["stats", "--json"])
    assert result.exit_code == 0
    stats = json.loads(result.stdout)
    assert stats["memories"] == 2
    assert stats["path"] == str(db_file)
