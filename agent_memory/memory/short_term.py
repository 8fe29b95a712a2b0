"""Bounded short-term buffer over the live conversation."""

from __future__ import annotations

from collections import deque
from typing import Deque, List, Optional, Protocol, Sequence, Tuple

from agent_memory.core.logger import get_logger

from .conversation import Message, Role
from .model_context import context_window
from .tokens import message_tokens, total_tokens

DEFAULT_MAX_MESSAGES = 20
DEFAULT_MAX_TOKENS = 4000
DEFAULT_CONTEXT_RATIO = 0.8
SUMMARY_HEADER = "[Conversation Memory]"


class Summarizer(Protocol):
    """Merges evicted conversation text into an existing rolling summary."""

    def summarize(self, previous_summary: str, evicted_content: str) -> str:
        ...


class ShortTermBuffer:
    """Sliding window kept within a message count and a token budget.

    Eviction is oldest-first. System messages stay as context and are dropped,
    without being remembered, only when nothing else is left to evict. An
    assistant message that requested tools is evicted together with the tool
    responses answering it.
    """

    def __init__(
        self,
        *,
        max_messages: int = DEFAULT_MAX_MESSAGES,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        summarizer: Optional[Summarizer] = None,
    ) -> None:
        if max_messages <= 0 or max_tokens <= 0:
            raise ValueError("max_messages and max_tokens must be positive.")
        self._max_messages = max_messages
        self._max_tokens = max_tokens
        self._summarizer = summarizer
        self._messages: Deque[Message] = deque()
        self._token_count = 0
        self._rolling_summary = ""
        self._evicted: List[str] = []
        self._logger = get_logger(self.__class__.__name__)

    @classmethod
    def for_model(
        cls,
        model: str,
        *,
        max_messages: int = DEFAULT_MAX_MESSAGES,
        ratio: float = DEFAULT_CONTEXT_RATIO,
        summarizer: Optional[Summarizer] = None,
    ) -> "ShortTermBuffer":
        """Size the token budget as a share of the model's context window."""
        if not 0.0 < ratio <= 1.0:
            raise ValueError("ratio must be within (0, 1].")
        max_tokens = max(1, int(context_window(model) * ratio))
        return cls(max_messages=max_messages, max_tokens=max_tokens, summarizer=summarizer)

    @property
    def max_messages(self) -> int:
        return self._max_messages

    @property
    def max_tokens(self) -> int:
        return self._max_tokens

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    @property
    def token_count(self) -> int:
        return self._token_count

    @property
    def rolling_summary(self) -> str:
        return self._rolling_summary

    @property
    def evicted_content(self) -> str:
        return "\n".join(self._evicted)

    @property
    def size(self) -> int:
        return len(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def add(self, message: Message) -> None:
        self._messages.append(message)
        self._token_count += message_tokens(message)
        self._enforce_limits()

    def add_all(self, messages: Sequence[Message]) -> None:
        for message in messages:
            self.add(message)

    def compress(self, messages: Sequence[Message]) -> Sequence[Message]:
        """Fit ``messages`` into the token budget before a model call.

        Returns the very same object when it already fits, so callers can use
        an identity check to detect the no-op case.
        """
        if total_tokens(messages) <= self._max_tokens:
            return messages
        remaining = list(messages)
        evicted = self._evict_until(remaining, lambda items: total_tokens(items) > self._max_tokens)
        self._remember(evicted)
        self._logger.debug("Compressed %d messages down to %d", len(messages), len(remaining))
        return remaining

    def get_recent_messages(self, count: int) -> List[Message]:
        if count <= 0:
            return []
        return list(self._messages)[-count:]

    def get_latest_exchange(self) -> Optional[Tuple[Message, Message]]:
        """Most recent user message and the latest assistant reply after it."""
        assistant: Optional[Message] = None
        for message in reversed(self._messages):
            if assistant is None and message.role is Role.ASSISTANT:
                assistant = message
            elif assistant is not None and message.role is Role.USER:
                return message, assistant
        return None

    def clear(self) -> None:
        self._messages.clear()
        self._token_count = 0
        self._evicted.clear()
        self._rolling_summary = ""

    def summarize(self) -> str:
        """Merge pending evicted content into the rolling summary.

        Without a summarizer this is a no-op. A failing summarizer leaves the
        pending content in place for the next attempt.
        """
        if self._summarizer is None or not self._evicted:
            return self._rolling_summary
        pending = self.evicted_content
        try:
            merged = self._summarizer.summarize(self._rolling_summary, pending)
        except Exception as exc:
            self._logger.warning("Rolling summary update failed: %s", exc)
            return self._rolling_summary
        if merged and merged.strip():
            self._rolling_summary = merged.strip()
        self._evicted.clear()
        return self._rolling_summary

    def build_summary_block(self) -> str:
        if not self._rolling_summary:
            return ""
        return f"{SUMMARY_HEADER}\n{self._rolling_summary}"

    def _enforce_limits(self) -> None:
        items = list(self._messages)
        evicted = self._evict_until(
            items,
            lambda remaining: len(remaining) > self._max_messages or total_tokens(remaining) > self._max_tokens,
        )
        if not evicted and len(items) == len(self._messages):
            return
        self._messages = deque(items)
        self._token_count = total_tokens(items)
        self._remember(evicted)

    def _evict_until(self, items: List[Message], over_budget) -> List[Message]:  # noqa: ANN001
        """Remove messages from the front of ``items`` in place; return the evicted non-system ones."""
        evicted: List[Message] = []
        while len(items) > 1 and over_budget(items):
            newest = len(items) - 1
            index = next(
                (i for i, message in enumerate(items[:newest]) if message.role is not Role.SYSTEM),
                None,
            )
            if index is None:
                # Only system messages precede the newest one.
                items.pop(0)
                continue
            group = [position for position in self._eviction_group(items, index) if position != newest]
            for offset, position in enumerate(group):
                evicted.append(items.pop(position - offset))
        return evicted

    @staticmethod
    def _eviction_group(items: List[Message], index: int) -> List[int]:
        message = items[index]
        group = [index]
        if message.role is Role.ASSISTANT and message.tool_calls:
            call_ids = {call.id for call in message.tool_calls}
            for position in range(index + 1, len(items)):
                candidate = items[position]
                if candidate.role is Role.TOOL and candidate.tool_call_id in call_ids:
                    group.append(position)
        return group

    def _remember(self, evicted: Sequence[Message]) -> None:
        for message in evicted:
            if message.role is Role.SYSTEM or not message.content.strip():
                continue
            self._evicted.append(f"{message.role.label}: {message.content}")
        if evicted:
            self._logger.debug("Evicted %d messages from short-term buffer", len(evicted))


__all__ = ["ShortTermBuffer", "Summarizer", "SUMMARY_HEADER"]
