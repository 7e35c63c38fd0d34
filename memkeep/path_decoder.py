"""Recover real project paths from encoded project directory names.

Project directories are named after the absolute project path with ``/``
written as ``-`` and ``/.`` written as ``--``; ``/home/u/.dotfiles`` becomes
``-home-u--dotfiles``.

Two strategies, tried in order:

1. A JSON manifest that lists real project paths. When present and parseable
   it is authoritative.
2. Reversing the substitution. This is lossy: a real segment containing ``-``
   (``my-app``) decodes as two segments (``my/app``). The result is a best
   effort and is never checked against the manifest.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

SEPARATOR_MARKER = "-"
DOT_MARKER = "--"


def encode_project_path(path: str) -> str:
    return path.replace("/.", DOT_MARKER).replace("/", SEPARATOR_MARKER)


def heuristic_decode(encoded_name: str) -> str | None:
    if not encoded_name.startswith(SEPARATOR_MARKER) or encoded_name == SEPARATOR_MARKER:
        return None
    body = encoded_name[len(SEPARATOR_MARKER) :]
    # A leading "--" means the first segment itself was a dot directory.
    if body.startswith(SEPARATOR_MARKER):
        body = "." + body[len(SEPARATOR_MARKER) :]
    body = body.replace(DOT_MARKER, "/.")
    return "/" + body.replace(SEPARATOR_MARKER, "/")


def _basename(path: str) -> str:
    return path.rstrip("/").rsplit("/", 1)[-1]


class PathDecoder:
    def __init__(self, manifest_path: Path | str | None = None):
        self.manifest_path = Path(manifest_path).expanduser() if manifest_path else None
        self._manifest: dict[str, str] | None = None
        self._manifest_loaded = False

    def _load_manifest(self) -> dict[str, str] | None:
        if self._manifest_loaded:
            return self._manifest
        self._manifest_loaded = True
        path = self.manifest_path
        if path is None or not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.warning(
                "project manifest %s is unreadable, using heuristic decoding: %s", path, exc
            )
            return None
        mapping = _manifest_mapping(data)
        if mapping is None:
            logger.warning(
                "project manifest %s has an unexpected shape, using heuristic decoding", path
            )
            return None
        self._manifest = mapping
        return mapping

    def decode(self, encoded_name: str) -> str | None:
        if not encoded_name:
            return None
        manifest = self._load_manifest()
        if manifest is not None and encoded_name in manifest:
            return manifest[encoded_name]
        return heuristic_decode(encoded_name)

    def project_name_for(self, encoded_name: str, decoded: str | None) -> str:
        """Display name for a project; never empty for a non-empty encoded name."""

        if decoded:
            name = _basename(decoded)
            if name:
                return name
        segments = [segment for segment in encoded_name.split(SEPARATOR_MARKER) if segment]
        if segments:
            return segments[-1]
        return encoded_name


def _manifest_mapping(data: object) -> dict[str, str] | None:
    """Build encoded -> real path from a manifest document.

    Accepts ``{"projects": {"/real/path": {...}}}`` (keys are real paths) or a
    flat ``{"-encoded-name": "/real/path"}`` object.
    """

    if not isinstance(data, dict):
        return None
    projects = data.get("projects")
    if isinstance(projects, dict):
        return {
            encode_project_path(real): real
            for real in projects
            if isinstance(real, str) and real.startswith("/")
        }
    if all(isinstance(k, str) and isinstance(v, str) for k, v in data.items()):
        return dict(data)
    return None
