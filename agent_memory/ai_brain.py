"""Gemini-backed LLM collaborator used for memory extraction and summarisation."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

try:
    import google.generativeai as genai
except ImportError as exc:  # pragma: no cover - optional dependency
    genai = None  # type: ignore[assignment]
    _IMPORT_ERROR = exc
else:
    _IMPORT_ERROR = None

from agent_memory.core.config import MemoryConfig
from agent_memory.core.exceptions import EngineError
from agent_memory.core.logger import get_logger


@dataclass(frozen=True)
class LLMResponse:
    """LLM completion result that includes token usage metadata."""

    text: str
    metadata: Dict[str, Any]


class AIBrain:
    """Adapter responsible for communicating with the Gemini API.

    The request timeout is owned here; the extraction coordinator treats a
    timeout like any other failed call.
    """

    def __init__(self, config: MemoryConfig) -> None:
        if not config.gemini_api_key:
            raise EngineError("GEMINI_API_KEY is not set. Check your .env file.")

        if _IMPORT_ERROR is not None or genai is None:
            raise EngineError("The google-generativeai package is not installed.") from _IMPORT_ERROR

        self._logger = get_logger(self.__class__.__name__)
        self._model_name = config.gemini_model
        self._timeout = config.extraction_timeout
        genai.configure(api_key=config.gemini_api_key)
        self._logger.debug(
            "Gemini client configured (model=%s, api_key=%s)",
            self._model_name,
            self._mask_key(config.gemini_api_key),
        )
        self._model = genai.GenerativeModel(self._model_name)

    @property
    def model_name(self) -> str:
        return self._model_name

    def generate_text(
        self,
        prompt: str,
        *,
        temperature: float = 0.2,
        max_output_tokens: Optional[int] = None,
        max_retries: int = 3,
    ) -> LLMResponse:
        """Request a single-turn completion from Gemini.

        Args:
            prompt: Fully rendered prompt text.
            temperature: Sampling temperature.
            max_output_tokens: Optional completion cap.
            max_retries: Attempts made when Gemini answers with a 500 error.

        Returns:
            The completion text plus response metadata.

        Raises:
            EngineError: When the request fails or the response has no text.
        """
        from google.api_core.exceptions import InternalServerError

        generation_config: Dict[str, Any] = {"temperature": temperature}
        if max_output_tokens:
            generation_config["max_output_tokens"] = max_output_tokens

        response = None
        for attempt in range(max_retries):
            try:
                response = self._model.generate_content(
                    [{"role": "user", "parts": [prompt]}],
                    generation_config=generation_config,
                    request_options={"timeout": self._timeout},
                )
                break
            except InternalServerError as exc:
                if attempt < max_retries - 1:
                    wait_time = 2 ** attempt
                    self._logger.warning(
                        "Gemini 500 error (attempt %d/%d), retrying in %ds", attempt + 1, max_retries, wait_time
                    )
                    time.sleep(wait_time)
                    continue
                self._logger.error("Gemini request failed after %d attempts: %s", max_retries, exc)
                raise EngineError(f"Gemini request failed (500 Internal Server Error): {exc}") from exc
            except Exception as exc:  # pragma: no cover - API errors surface at runtime
                self._logger.error("Gemini request failed: %s", exc)
                raise EngineError(f"Gemini request failed: {exc}") from exc

        if response is None:
            raise EngineError("Gemini request was not attempted (max_retries must be positive).")

        metadata = self._extract_response_metadata(response)
        metadata.update({"prompt_length": len(prompt), "temperature": temperature})

        text = self._pick_primary_text(response)
        if not text:
            self._logger.warning("Gemini returned an empty response (metadata=%s)", metadata)
            raise EngineError("Gemini returned an empty response.")
        return LLMResponse(text=text, metadata=metadata)

    def _pick_primary_text(self, response: Any) -> str:
        try:
            text_attr = getattr(response, "text", None)
        except ValueError:
            # Accessing .text raises when the candidate was blocked.
            text_attr = None
        if isinstance(text_attr, str) and text_attr.strip():
            return text_attr.strip()

        for candidate in getattr(response, "candidates", None) or []:
            content = getattr(candidate, "content", None)
            parts = getattr(content, "parts", None) if content else None
            if isinstance(parts, list):
                chunks = [getattr(part, "text", "") for part in parts]
                joined = "".join(chunk for chunk in chunks if isinstance(chunk, str))
                if joined.strip():
                    return joined.strip()
        return ""

    def _extract_response_metadata(self, response: Any) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {}
        candidates = getattr(response, "candidates", None)
        if candidates:
            finish_reason = getattr(candidates[0], "finish_reason", None)
            if finish_reason is not None:
                metadata["finish_reason"] = str(finish_reason)

        usage = getattr(response, "usage_metadata", None)
        if usage is not None:
            metadata["usage_metadata"] = {
                key: getattr(usage, key, None)
                for key in ("prompt_token_count", "candidates_token_count", "total_token_count")
            }
        return metadata

    @staticmethod
    def _mask_key(key: str) -> str:
        if len(key) <= 8:
            return "*" * len(key)
        return f"{key[:4]}***{key[-4:]}"


__all__ = ["AIBrain", "LLMResponse"]
