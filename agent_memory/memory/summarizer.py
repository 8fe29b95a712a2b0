"""LLM-backed rolling summary for content evicted from the short-term buffer."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from agent_memory.core.exceptions import EngineError
from agent_memory.core.logger import get_logger

from .extraction.extractor import TextGenerator

SUMMARY_MAX_OUTPUT_TOKENS = 1024
DEFAULT_MAX_SUMMARY_WORDS = 300
_TEMPLATE_PATH = Path(__file__).resolve().parent / "prompts" / "conversation_summary_prompt.md"


class ConversationSummarizer:
    """Merge evicted messages into the existing summary with a single LLM call."""

    def __init__(
        self,
        brain: TextGenerator,
        *,
        max_words: int = DEFAULT_MAX_SUMMARY_WORDS,
        template_path: Optional[Path] = None,
    ) -> None:
        self._brain = brain
        self._max_words = max_words
        self._logger = get_logger(self.__class__.__name__)
        path = template_path or _TEMPLATE_PATH
        if not path.exists():  # pragma: no cover - packaging guard
            raise EngineError(f"Conversation summary template not found: {path}")
        self._template = path.read_text(encoding="utf-8")

    def summarize(self, previous_summary: str, evicted_content: str) -> str:
        if not evicted_content.strip():
            return previous_summary
        prompt = (
            self._template
            .replace("{{summary}}", previous_summary.strip() or "(none yet)")
            .replace("{{evicted}}", evicted_content.strip())
            .replace("{{max_words}}", str(self._max_words))
        )
        response = self._brain.generate_text(
            prompt,
            temperature=0.2,
            max_output_tokens=SUMMARY_MAX_OUTPUT_TOKENS,
        )
        summary = response.text.strip()
        self._logger.debug("Rolling summary updated (%d chars)", len(summary))
        return summary


__all__ = ["ConversationSummarizer"]
