"""Context trimming helpers to keep prompts within safe token budgets."""

from __future__ import annotations

import os
from typing import Sequence, Tuple

from autowriter_schemas import ContentBlock
from autowriter_schemas.utils import tail_text

_DEFAULT_LIMIT = int(os.getenv("CONTEXT_TOKEN_LIMIT", "12000"))


def summarise_prompt(prompt: str, token_limit: int | None = None) -> Tuple[str, bool]:
    """Trim long prompts to stay within the configured soft token limit.

    Returns:
        A tuple of ``(possibly_trimmed_prompt, was_trimmed)``.
    """

    if not prompt:
        return prompt, False

    limit = max(token_limit or _DEFAULT_LIMIT, 256)
    # Rough heuristic: 1 token ~ 4 characters for mixed English text.
    if len(prompt) // 4 <= limit:
        return prompt, False

    max_chars = limit * 4
    head = prompt[: max_chars // 2].strip()
    tail = prompt[-(max_chars - max_chars // 2) :].strip()
    return f"[context trimmed to ~{limit} tokens]\n{head}\n\n...\n\n{tail}", True


def previous_prose(blocks: Sequence[ContentBlock], char_limit: int) -> str:
    """Tail of the chapter's prose so far, cut on a word boundary."""

    text = "\n\n".join(block.content.strip() for block in blocks if block.content.strip())
    return tail_text(text, char_limit)


__all__ = ["previous_prose", "summarise_prompt"]
