from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from .errors import ValidationError
from .path_decoder import PathDecoder
from .store import IndexedFileInput, MemoryStore

logger = logging.getLogger(__name__)

MEMORY_DIRNAME = "memory"
MEMORY_SUFFIX = ".md"
UNTITLED_TITLE = "Untitled memory"


@dataclass
class ScanResult:
    new: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    errors: int = 0
    pruned: int = 0
    dry_run: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class _ProjectDir:
    path: Path
    project_path: str | None
    project_name: str


def extract_title(content: str) -> str:
    for line in content.splitlines():
        stripped = line.strip()
        if stripped.startswith("# "):
            title = stripped[2:].strip()
            if title:
                return title
    return UNTITLED_TITLE


def _name_is_text(name: str) -> bool:
    # Undecodable bytes arrive as lone surrogates (surrogateescape).
    try:
        name.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def _display_name(name: str) -> str:
    return repr(name.encode("utf-8", "surrogateescape"))


def _project_for(project_dir: Path, decoder: PathDecoder) -> _ProjectDir:
    encoded = project_dir.name
    decoded = decoder.decode(encoded)
    return _ProjectDir(
        path=project_dir,
        project_path=decoded,
        project_name=decoder.project_name_for(encoded, decoded),
    )


def _normalized(path: Path | str) -> Path:
    return Path(os.path.abspath(os.path.expanduser(path)))


def _memory_documents(memory_dir: Path, result: ScanResult) -> list[Path] | None:
    """Markdown documents in ``memory_dir``, or None when it cannot be listed."""

    documents: list[Path] = []
    try:
        entries = sorted(memory_dir.iterdir())
    except OSError as exc:
        logger.warning("cannot list %s: %s", memory_dir, exc)
        result.errors += 1
        return None
    for entry in entries:
        if not _name_is_text(entry.name):
            logger.warning(
                "skipping undecodable file name %s in %s", _display_name(entry.name), memory_dir
            )
            result.skipped += 1
            continue
        if entry.suffix != MEMORY_SUFFIX:
            continue
        if not entry.is_file():
            result.skipped += 1
            continue
        documents.append(entry)
    return documents


def _index_document(
    store: MemoryStore,
    path: Path,
    project: _ProjectDir,
    known: dict[str, int],
    result: ScanResult,
    dry_run: bool,
) -> None:
    source_path = str(path)
    try:
        mtime = int(path.stat().st_mtime)
    except OSError as exc:
        logger.warning("cannot stat %s: %s", source_path, exc)
        result.errors += 1
        return

    previous = known.get(source_path)
    if previous is not None and previous == mtime:
        result.unchanged += 1
        return
    is_new = previous is None

    if not dry_run:
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("cannot read %s: %s", source_path, exc)
            result.errors += 1
            return
        store.upsert_indexed_file(
            IndexedFileInput(
                source_path=source_path,
                project_path=project.project_path,
                project_name=project.project_name,
                title=extract_title(content),
                content=content,
                file_mtime_secs=mtime,
            )
        )
    if is_new:
        result.new += 1
    else:
        result.updated += 1


def _is_stale(source_path: str, root: Path, seen: set[str], unlisted: list[Path]) -> bool:
    if source_path in seen:
        return False
    path = Path(source_path)
    # A directory that could not be listed says nothing about its files.
    if any(path.is_relative_to(directory) for directory in unlisted):
        return False
    if path.is_relative_to(root):
        return True
    # Rows from other roots are kept while their file still exists.
    return not path.exists()


def scan(
    store: MemoryStore,
    root: Path | str | None = None,
    *,
    dry_run: bool = False,
    single_path: Path | str | None = None,
    decoder: PathDecoder | None = None,
) -> ScanResult:
    """Index ``<root>/<encoded-project>/memory/*.md`` into the store.

    Files whose mtime matches the stored value are not read again. A failure
    on one file is counted and logged; the scan carries on. After a full scan,
    rows for files that are no longer present are pruned (counted only in a
    dry run). ``single_path`` indexes one document and never prunes.
    """

    decoder = decoder or PathDecoder(store.config.manifest_path)
    result = ScanResult(dry_run=dry_run)
    known = store.indexed_file_mtimes()

    if single_path is not None:
        path = _normalized(single_path)
        if not path.is_file():
            raise ValidationError(f"not a file: {path}")
        project_dir = path.parent.parent if path.parent.name == MEMORY_DIRNAME else path.parent
        _index_document(store, path, _project_for(project_dir, decoder), known, result, dry_run)
        return result

    root_path = _normalized(root or store.config.projects_root)
    if not root_path.is_dir():
        raise ValidationError(f"scan root is not a directory: {root_path}")

    seen: set[str] = set()
    unlisted: list[Path] = []
    for entry in sorted(root_path.iterdir()):
        if not _name_is_text(entry.name):
            logger.warning("skipping undecodable project directory %s", _display_name(entry.name))
            result.skipped += 1
            continue
        if not entry.is_dir():
            continue
        memory_dir = entry / MEMORY_DIRNAME
        if not memory_dir.is_dir():
            continue
        project = _project_for(entry, decoder)
        documents = _memory_documents(memory_dir, result)
        if documents is None:
            unlisted.append(memory_dir)
            continue
        for document in documents:
            seen.add(str(document))
            _index_document(store, document, project, known, result, dry_run)

    stale = [
        source_path for source_path in known if _is_stale(source_path, root_path, seen, unlisted)
    ]
    if dry_run:
        result.pruned = len(stale)
    else:
        result.pruned = store.delete_indexed_files(stale)
    logger.info(
        "scan of %s: %s new, %s updated, %s unchanged, %s skipped, %s errors, %s pruned",
        root_path,
        result.new,
        result.updated,
        result.unchanged,
        result.skipped,
        result.errors,
        result.pruned,
    )
    return result
