"""Qwen3 embedding model used to vectorise memories and recall queries."""

from __future__ import annotations

import os
from typing import List, Sequence

import numpy as np

from agent_memory.core.exceptions import EngineError

try:  # pragma: no cover - runtime import guard
    import torch
    import torch.nn.functional as F
except ImportError as exc:  # pragma: no cover
    raise EngineError("The torch package is required for QwenEmbeddingModel.") from exc

try:  # pragma: no cover
    from transformers import AutoModel, AutoTokenizer
except ImportError as exc:  # pragma: no cover
    raise EngineError("The transformers package is required for QwenEmbeddingModel.") from exc

from agent_memory.core.logger import get_logger

_MODEL_ENV = "QWEN3_EMBEDDING_PATH"
_DEFAULT_MODEL_ID = "Qwen/Qwen3-Embedding-0.6B"
_DEFAULT_BATCH_SIZE = 16
DEFAULT_QUERY_INSTRUCTION = "Given a question about the user, retrieve stored memories that help answer it"


def _last_token_pool(last_hidden_states, attention_mask):
    left_padding = attention_mask[:, -1].sum() == attention_mask.shape[0]
    if left_padding:
        return last_hidden_states[:, -1]
    sequence_lengths = attention_mask.sum(dim=1) - 1
    batch_indices = torch.arange(last_hidden_states.size(0), device=last_hidden_states.device)
    return last_hidden_states[batch_indices, sequence_lengths]


class QwenEmbeddingModel:
    """Thin wrapper around the Qwen3 embedding model.

    Memories are embedded as plain text; recall queries get the instruction
    prefix Qwen3 expects for asymmetric retrieval.
    """

    def __init__(
        self,
        *,
        model_path: str | None = None,
        max_length: int = 8192,
        batch_size: int = _DEFAULT_BATCH_SIZE,
        query_instruction: str | None = DEFAULT_QUERY_INSTRUCTION,
    ) -> None:
        model_source = model_path or os.getenv(_MODEL_ENV, _DEFAULT_MODEL_ID)
        self._logger = get_logger(self.__class__.__name__)

        try:
            tokenizer = AutoTokenizer.from_pretrained(model_source, trust_remote_code=True)
        except Exception as exc:
            raise EngineError(f"Failed to load Qwen tokenizer from {model_source}: {exc}") from exc

        if tokenizer.pad_token is None and tokenizer.eos_token:
            tokenizer.pad_token = tokenizer.eos_token
        tokenizer.padding_side = "left"

        dtype_name = os.getenv("QWEN_DTYPE", "float32")
        torch_dtype = getattr(torch, dtype_name, torch.float32)

        try:
            model = AutoModel.from_pretrained(model_source, trust_remote_code=True, torch_dtype=torch_dtype)
        except Exception as exc:
            raise EngineError(f"Failed to load Qwen embedding model from {model_source}: {exc}") from exc

        model.eval()
        self._model = model
        self._tokenizer = tokenizer
        self._device = model.device
        self._max_length = max_length
        self._batch_size = max(1, batch_size)
        self._query_instruction = query_instruction
        self._embedding_size = getattr(model.config, "hidden_size", None)
        self._logger.debug("Loaded embedding model %s (dim=%s)", model_source, self._embedding_size)

    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed ``texts`` in order, returning one L2-normalised vector per input."""
        vectors: List[List[float]] = []
        items = list(texts)
        for start in range(0, len(items), self._batch_size):
            vectors.extend(self._embed_batch(items[start:start + self._batch_size]))
        return vectors

    def embed_query(self, query: str) -> List[float]:
        text = query
        if self._query_instruction:
            text = f"Instruct: {self._query_instruction}\nQuery:{query}"
        return self._embed_batch([text])[0]

    @property
    def embedding_size(self) -> int | None:
        return self._embedding_size

    def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        batch_dict = self._tokenizer(
            texts,
            padding=True,
            truncation=True,
            max_length=self._max_length,
            return_tensors="pt",
        ).to(self._device)

        with torch.no_grad():
            outputs = self._model(**batch_dict)

        pooled = _last_token_pool(outputs.last_hidden_state, batch_dict["attention_mask"])
        normalised = F.normalize(pooled, p=2, dim=1)
        matrix = normalised.cpu().numpy().astype(np.float32)
        return [row.tolist() for row in matrix]


__all__ = ["DEFAULT_QUERY_INSTRUCTION", "QwenEmbeddingModel"]
