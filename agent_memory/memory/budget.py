"""Token budgeting for memories injected into a model prompt."""

from __future__ import annotations

from typing import List, Optional, Sequence

from .conversation import Message
from .memory_records import MemoryRecord
from .model_context import DEFAULT_MAX_INPUT_TOKENS, context_window
from .tokens import estimate_tokens, total_tokens

DEFAULT_MEMORY_BUDGET_RATIO = 0.2
DEFAULT_RESERVED_FOR_GENERATION = 0.3
MIN_MEMORY_BUDGET = 200
PER_RECORD_OVERHEAD = 10
MEMORY_CONTEXT_HEADER = "[User Memory]"


class ContextBudgetManager:
    """Decide how many recalled memories fit next to the live conversation."""

    def __init__(
        self,
        *,
        max_context_tokens: int = DEFAULT_MAX_INPUT_TOKENS,
        memory_budget_ratio: float = DEFAULT_MEMORY_BUDGET_RATIO,
        reserved_for_generation: float = DEFAULT_RESERVED_FOR_GENERATION,
    ) -> None:
        if max_context_tokens <= 0:
            raise ValueError("max_context_tokens must be positive.")
        if not 0.0 < memory_budget_ratio <= 1.0:
            raise ValueError("memory_budget_ratio must be within (0, 1].")
        if not 0.0 <= reserved_for_generation < 1.0:
            raise ValueError("reserved_for_generation must be within [0, 1).")
        self._max_context_tokens = max_context_tokens
        self._memory_budget_ratio = memory_budget_ratio
        self._reserved_for_generation = reserved_for_generation

    @classmethod
    def for_model(cls, model: str, **kwargs) -> "ContextBudgetManager":  # noqa: ANN003
        return cls(max_context_tokens=context_window(model), **kwargs)

    @property
    def max_context_tokens(self) -> int:
        return self._max_context_tokens

    def calculate_available_budget(
        self,
        messages: Sequence[Message] = (),
        system_prompt: Optional[str] = None,
    ) -> int:
        """Tokens available for memories after the prompt and the reply reservation."""
        used = total_tokens(messages) + estimate_tokens(system_prompt)
        reserved = int(self._max_context_tokens * self._reserved_for_generation)
        free = self._max_context_tokens - used - reserved
        return max(MIN_MEMORY_BUDGET, int(free * self._memory_budget_ratio))

    def select_within_budget(self, records: Sequence[MemoryRecord], budget: int) -> List[MemoryRecord]:
        """Keep records in their given (score) order until the budget runs out; never return none."""
        selected: List[MemoryRecord] = []
        used = 0
        for record in records:
            cost = estimate_tokens(record.content) + PER_RECORD_OVERHEAD
            if selected and used + cost > budget:
                break
            selected.append(record)
            used += cost
        return selected

    @staticmethod
    def format_memory_content(records: Sequence[MemoryRecord]) -> str:
        if not records:
            return ""
        lines = [MEMORY_CONTEXT_HEADER]
        lines.extend(f"- [{record.type.name}] {record.content}" for record in records)
        return "\n".join(lines)


__all__ = ["ContextBudgetManager", "MEMORY_CONTEXT_HEADER", "MIN_MEMORY_BUDGET"]
