"""Text helpers used when persisting and prompting with prose."""

from __future__ import annotations

import re

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")


def count_words(value: str | None) -> int:
    """Return the number of whitespace-separated tokens in ``value``."""

    if not value:
        return 0
    return len([token for token in value.strip().split() if token])


def tail_text(value: str, limit: int) -> str:
    """Return at most ``limit`` trailing characters, starting on a word boundary.

    The cut moves forward to the next whitespace so the excerpt never opens
    mid-word. Text shorter than the limit is returned unchanged.
    """

    if limit <= 0:
        return ""
    if len(value) <= limit:
        return value
    excerpt = value[-limit:]
    boundary = next((i for i, char in enumerate(excerpt) if char.isspace()), None)
    if boundary is not None and boundary < len(excerpt) - 1:
        excerpt = excerpt[boundary + 1 :]
    return excerpt.lstrip()


def split_paragraphs(value: str) -> list[str]:
    """Split prose on blank lines, dropping empty paragraphs."""

    return [paragraph.strip() for paragraph in _PARAGRAPH_BREAK.split(value) if paragraph.strip()]
