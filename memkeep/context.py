from __future__ import annotations

import json
from collections.abc import Sequence

from .store.types import Memory
from .store.utils import parse_iso8601

EMPTY_CONTEXT = "No recent memories for this project."


def _timestamp(created_at: str) -> str:
    parsed = parse_iso8601(created_at)
    if parsed is None:
        return created_at
    return parsed.strftime("%Y-%m-%d %H:%M UTC")


def format_context_markdown(memories: Sequence[Memory]) -> str:
    if not memories:
        return EMPTY_CONTEXT
    parts = ["# Recent Session Memory", ""]
    for index, memory in enumerate(memories, start=1):
        parts.append(f"## {index} - {memory.title} ({_timestamp(memory.created_at)})")
        parts.append("")
        parts.append(memory.content)
        parts.append("")
    return "\n".join(parts) + "\n"


def compact_context_json(memories: Sequence[Memory]) -> str:
    """Hook payload carrying the rendered markdown as ``additionalContext``."""

    return json.dumps({"additionalContext": format_context_markdown(memories)})
