from __future__ import annotations

import datetime as dt
import re
from collections import Counter
from collections.abc import Iterable, Sequence

from .store.types import Memory

MIN_TOKEN_LENGTH = 3
MIN_TERM_MEMORIES = 3
MIN_PHRASE_MEMORIES = 2
MAX_PHRASES = 10
MAX_TERMS = 15

STOP_WORDS = frozenset(
    {
        # English
        "the", "a", "an", "is", "was", "to", "in", "of", "and", "or", "with", "for", "on",
        "at", "be", "has", "have", "had", "by", "as", "this", "that", "it", "from", "are",
        "were", "not", "no", "so", "if", "but", "its", "via", "use", "used", "new", "get",
        "set", "run", "add", "fix", "now", "also", "just", "into", "than", "all", "any",
        "one", "two", "do", "done", "we", "my", "our", "you", "your", "will", "can", "may",
        "must", "then", "when", "where", "what", "how", "out", "up", "end", "been", "about",
        "more", "some", "such", "them", "they",
        # Boilerplate from auto-captured memories
        "session", "git", "ended", "changes", "detected", "captured", "utc", "project",
        "repo", "mem", "memory", "context", "00", "date", "time",
    }
)  # fmt: skip

_TOKEN_SPLIT_RE = re.compile(r"[^\w-]+")
_YEAR_RE = re.compile(r"20\d\d")


def split_tokens(text: str) -> list[str]:
    """Lowercase tokens of at least three characters; ``_`` and ``-`` stay inside."""

    return [
        token
        for token in (part.lower() for part in _TOKEN_SPLIT_RE.split(text))
        if len(token) >= MIN_TOKEN_LENGTH
    ]


def is_year_token(token: str) -> bool:
    return _YEAR_RE.fullmatch(token) is not None


def tokenize(text: str) -> list[str]:
    return [
        token
        for token in split_tokens(text)
        if token not in STOP_WORDS and not is_year_token(token)
    ]


def _bigrams(raw_tokens: Sequence[str], kept: set[str]) -> list[str]:
    # Adjacent in the raw token stream, so "tokio and runtime" is not "tokio runtime".
    return [
        f"{first} {second}"
        for first, second in zip(raw_tokens, raw_tokens[1:])
        if first in kept and second in kept
    ]


def _ranked(counts: Counter[str], minimum: int, cap: int) -> list[tuple[str, int]]:
    candidates = [(key, count) for key, count in counts.items() if count >= minimum]
    candidates.sort(key=lambda item: (-item[1], item[0]))
    return candidates[:cap]


def suggest_rules(memories: Iterable[Memory], today: dt.date | None = None) -> str:
    """Render recurring terms and phrases across ``memories`` as markdown rules.

    Frequencies count memories, not occurrences.
    """

    term_counts: Counter[str] = Counter()
    phrase_counts: Counter[str] = Counter()
    total = 0
    for memory in memories:
        total += 1
        combined = f"{memory.title} {memory.content}"
        tokens = tokenize(combined)
        kept = set(tokens)
        term_counts.update(kept)
        phrase_counts.update(set(_bigrams(split_tokens(combined), kept)))

    phrases = _ranked(phrase_counts, MIN_PHRASE_MEMORIES, MAX_PHRASES)
    terms = _ranked(term_counts, MIN_TERM_MEMORIES, MAX_TERMS)

    today = today or dt.datetime.now(dt.UTC).date()
    lines = [
        "## Suggested rules (from memory pattern analysis)",
        f"<!-- based on {total} sessions, {today.isoformat()} -->",
        "",
    ]
    if not phrases and not terms:
        lines.append(
            "No recurring patterns detected yet. Capture more sessions for better suggestions."
        )
        return "\n".join(lines) + "\n"

    if phrases:
        lines.extend(["### Recurring phrase patterns", ""])
        for phrase, count in phrases:
            lines.append(
                f'- [detected phrase: "{phrase}" appears in {count}x sessions] '
                f"Consider adding a rule about: `{phrase}`"
            )
        lines.append("")
    if terms:
        lines.extend(["### Recurring single-term patterns", ""])
        for term, count in terms:
            lines.append(
                f'- [detected term: "{term}" appears in {count}x sessions] '
                f'Consider adding: "This project uses/involves `{term}`"'
            )
        lines.append("")
    return "\n".join(lines) + "\n"
