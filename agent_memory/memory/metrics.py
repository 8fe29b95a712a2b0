"""Utilities for tracking memory extraction and recall metrics."""

from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict


@dataclass(slots=True)
class ExtractionMetrics:
    runs: int = 0
    chunks_attempted: int = 0
    chunks_succeeded: int = 0
    chunks_failed: int = 0
    memories_saved: int = 0
    failure_reasons: Dict[str, int] = field(default_factory=lambda: defaultdict(int))

    def as_dict(self) -> Dict[str, float | int | Dict[str, int]]:
        success_rate = (self.chunks_succeeded / self.chunks_attempted) if self.chunks_attempted else 0.0
        return {
            "runs": self.runs,
            "chunks_attempted": self.chunks_attempted,
            "chunks_succeeded": self.chunks_succeeded,
            "chunks_failed": self.chunks_failed,
            "memories_saved": self.memories_saved,
            "success_rate": round(success_rate, 3),
            "failure_reasons": dict(self.failure_reasons),
        }


@dataclass(slots=True)
class RecallMetrics:
    requests: int = 0
    hits: int = 0
    misses: int = 0
    degraded: int = 0
    total_latency_ms: float = 0.0

    def as_dict(self) -> Dict[str, float | int]:
        hit_rate = (self.hits / self.requests) if self.requests else 0.0
        avg_latency = (self.total_latency_ms / self.requests) if self.requests else 0.0
        return {
            "requests": self.requests,
            "hits": self.hits,
            "misses": self.misses,
            "degraded": self.degraded,
            "hit_rate": round(hit_rate, 3),
            "avg_latency_ms": round(avg_latency, 2),
        }


@dataclass(slots=True)
class MemoryMetrics:
    """Thread-safe counters shared by the coordinator and the recall path."""

    extraction: ExtractionMetrics = field(default_factory=ExtractionMetrics)
    recall: RecallMetrics = field(default_factory=RecallMetrics)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record_extraction(
        self,
        *,
        chunks_attempted: int,
        chunks_succeeded: int,
        memories_saved: int,
        failure: str | None = None,
    ) -> None:
        with self._lock:
            self.extraction.runs += 1
            self.extraction.chunks_attempted += chunks_attempted
            self.extraction.chunks_succeeded += chunks_succeeded
            self.extraction.memories_saved += memories_saved
            if failure:
                self.extraction.chunks_failed += 1
                self.extraction.failure_reasons[failure] += 1

    def record_recall(self, *, match_count: int, latency_ms: float, degraded: bool = False) -> None:
        with self._lock:
            self.recall.requests += 1
            if degraded:
                self.recall.degraded += 1
            if match_count > 0:
                self.recall.hits += 1
            else:
                self.recall.misses += 1
            self.recall.total_latency_ms += max(latency_ms, 0.0)

    def as_dict(self) -> Dict[str, Dict[str, object]]:
        with self._lock:
            return {
                "extraction": self.extraction.as_dict(),
                "recall": self.recall.as_dict(),
            }


__all__ = ["ExtractionMetrics", "MemoryMetrics", "RecallMetrics"]
