"""Cheap token estimation shared by the buffer, coordinator and budget manager.

Counts are approximate (four characters per token); every budget in the engine
is a soft limit, so a tokenizer round-trip is not worth its cost here.
"""

from __future__ import annotations

from typing import Iterable

from .conversation import Message

CHARS_PER_TOKEN = 4
TRUNCATION_MARKER = "\n[truncated]"


def estimate_tokens(text: str | None) -> int:
    if not text:
        return 0
    return -(-len(text) // CHARS_PER_TOKEN)


def message_tokens(message: Message) -> int:
    """Tokens for the content plus any tool-call argument payloads."""
    total = estimate_tokens(message.content)
    for call in message.tool_calls:
        total += estimate_tokens(call.name) + estimate_tokens(call.arguments)
    return total


def total_tokens(messages: Iterable[Message]) -> int:
    return sum(message_tokens(message) for message in messages)


def truncate_to_tokens(text: str, max_tokens: int) -> str:
    """Cut ``text`` to roughly ``max_tokens`` and mark the cut."""
    if estimate_tokens(text) <= max_tokens:
        return text
    return text[: max(max_tokens, 0) * CHARS_PER_TOKEN] + TRUNCATION_MARKER


__all__ = [
    "CHARS_PER_TOKEN",
    "TRUNCATION_MARKER",
    "estimate_tokens",
    "message_tokens",
    "total_tokens",
    "truncate_to_tokens",
]
