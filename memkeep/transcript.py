from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from .store.utils import parse_iso8601

logger = logging.getLogger(__name__)


@dataclass
class TranscriptAnalytics:
    turn_count: int = 0
    duration_secs: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0


def _usage_int(usage: dict, key: str) -> int:
    value = usage.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        return 0
    return value


def parse_transcript(path: str | Path) -> TranscriptAnalytics | None:
    """Summarize a JSONL session transcript.

    Assistant entries count as turns and contribute their ``message.usage``
    token counts. Duration spans the earliest to the latest timestamp.
    Returns None when the file is unreadable or holds no assistant turns.
    """

    try:
        text = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("could not read transcript %s: %s", path, exc)
        return None

    analytics = TranscriptAnalytics()
    first_ts: float | None = None
    last_ts: float | None = None
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(entry, dict):
            continue

        raw_ts = entry.get("timestamp")
        if isinstance(raw_ts, str):
            parsed = parse_iso8601(raw_ts)
            if parsed is not None:
                ts = parsed.timestamp()
                first_ts = ts if first_ts is None else min(first_ts, ts)
                last_ts = ts if last_ts is None else max(last_ts, ts)

        if entry.get("type") != "assistant":
            continue
        analytics.turn_count += 1
        message = entry.get("message")
        usage = message.get("usage") if isinstance(message, dict) else None
        if isinstance(usage, dict):
            analytics.input_tokens += _usage_int(usage, "input_tokens")
            analytics.output_tokens += _usage_int(usage, "output_tokens")
            analytics.cache_read_tokens += _usage_int(usage, "cache_read_input_tokens")
            analytics.cache_creation_tokens += _usage_int(usage, "cache_creation_input_tokens")

    if analytics.turn_count == 0:
        return None
    if first_ts is not None and last_ts is not None:
        analytics.duration_secs = max(0, int(last_ts - first_ts))
    return analytics
