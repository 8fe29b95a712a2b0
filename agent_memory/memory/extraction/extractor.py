"""LLM-powered extractor that turns a conversation transcript into candidate memories."""

from __future__ import annotations

import json
from pathlib import Path
from typing import List, Optional, Protocol, Sequence

from agent_memory.core.exceptions import EngineError, ExtractionFailure
from agent_memory.core.logger import get_logger

from ..memory_records import ExtractedMemory, MemoryType, clamp_unit
from ..namespace import Namespace

EXTRACTION_MAX_OUTPUT_TOKENS = 2048
_TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "prompts"


class MemoryExtractor(Protocol):
    """Collaborator that reads a transcript and proposes memories.

    Implementations raise :class:`ExtractionFailure` when the underlying call
    fails and return an empty list when there is nothing to keep.
    """

    def extract(self, namespace: Namespace, transcript: str) -> List[ExtractedMemory]:
        ...


class TextGenerator(Protocol):
    def generate_text(self, prompt: str, **kwargs):  # noqa: ANN003, ANN201
        ...


class Embedder(Protocol):
    """Maps texts to vectors, one per input and in the same order."""

    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        ...


class LLMMemoryExtractor:
    """Prompt an LLM for a JSON array of ``{"content", "importance", "type"}`` objects."""

    def __init__(self, brain: TextGenerator, *, template_path: Optional[Path] = None) -> None:
        self._brain = brain
        self._logger = get_logger(self.__class__.__name__)
        self._template = self._load_template(template_path)

    def extract(self, namespace: Namespace, transcript: str) -> List[ExtractedMemory]:
        if not transcript.strip():
            return []
        prompt = self._render_prompt(transcript)
        self._logger.debug("Invoking memory extraction prompt for %s", namespace)
        try:
            llm_response = self._brain.generate_text(
                prompt,
                temperature=0.2,
                max_output_tokens=EXTRACTION_MAX_OUTPUT_TOKENS,
            )
        except EngineError as exc:
            raise ExtractionFailure(f"Memory extraction call failed: {exc}") from exc
        return self.parse_response(llm_response.text)

    def parse_response(self, response: str) -> List[ExtractedMemory]:
        """Parse the model reply; malformed output is logged and yields no memories."""
        cleaned = self._strip_code_fence(response or "")
        start = cleaned.find("[")
        end = cleaned.rfind("]")
        if start == -1 or end <= start:
            if cleaned:
                self._logger.warning("Extraction response contains no JSON array", extra={"response": response})
            return []

        try:
            data = json.loads(cleaned[start:end + 1])
        except json.JSONDecodeError:
            self._logger.warning("Failed to parse extraction response", extra={"response": response})
            return []
        if not isinstance(data, list):
            return []

        memories: List[ExtractedMemory] = []
        for item in data:
            if not isinstance(item, dict):
                continue
            content = self._coerce_text(item.get("content"))
            if not content:
                continue
            memories.append(
                ExtractedMemory(
                    content=content,
                    importance=self._coerce_importance(item.get("importance")),
                    type=MemoryType.parse(item.get("type")),
                )
            )
        return memories

    def _render_prompt(self, transcript: str) -> str:
        memory_types = ", ".join(f'"{memory_type.value}"' for memory_type in MemoryType)
        return (
            self._template
            .replace("{{transcript}}", transcript)
            .replace("{{memory_types}}", memory_types)
        )

    @staticmethod
    def _strip_code_fence(response: str) -> str:
        cleaned = response.strip()
        if cleaned.startswith("```"):
            lines = cleaned.splitlines()
            if lines and lines[0].startswith("```"):
                lines = lines[1:]
            if lines and lines[-1].strip().startswith("```"):
                lines = lines[:-1]
            cleaned = "\n".join(lines).strip()
        return cleaned

    @staticmethod
    def _coerce_text(value: object) -> str:
        if isinstance(value, str):
            return value.strip()
        return ""

    @staticmethod
    def _coerce_importance(value: object) -> Optional[float]:
        if isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return clamp_unit(value)
        if isinstance(value, str):
            try:
                return clamp_unit(float(value))
            except ValueError:
                return None
        return None

    def _load_template(self, template_path: Optional[Path]) -> str:
        path = template_path or _TEMPLATE_DIR / "memory_extraction_prompt.md"
        if not path.exists():  # pragma: no cover - packaging guard
            raise EngineError(f"Memory extraction template not found: {path}")
        return path.read_text(encoding="utf-8")


__all__ = ["Embedder", "LLMMemoryExtractor", "MemoryExtractor", "TextGenerator"]
