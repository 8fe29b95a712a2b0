"""Buffers conversation turns per session and distils them into long-term memories."""

from __future__ import annotations

import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from agent_memory.core.config import MemoryConfig
from agent_memory.core.exceptions import EmbeddingMismatch, StorageError
from agent_memory.core.logger import get_logger

from ..conversation import Message, Role
from ..deduplicator import MemoryDeduplicator
from ..memory_records import MemoryRecord, MemoryType
from ..metrics import MemoryMetrics
from ..namespace import Namespace
from ..storage.repository import MemoryRepository
from ..tokens import total_tokens, truncate_to_tokens
from .extractor import Embedder, MemoryExtractor

SessionKey = Tuple[str, str]


class SessionStatus(str, Enum):
    IDLE = "idle"
    BUFFERING = "buffering"
    EXTRACTING = "extracting"


@dataclass(slots=True)
class ExtractionReport:
    """Outcome of one extraction run over a session buffer."""

    namespace: Namespace
    session_id: Optional[str]
    chunks_attempted: int = 0
    chunks_succeeded: int = 0
    memories_saved: int = 0
    error: Optional[BaseException] = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass(eq=False)
class _SessionState:
    namespace: Namespace
    session_id: Optional[str]
    lock: threading.Lock = field(default_factory=threading.Lock)
    idle: threading.Event = field(default_factory=threading.Event)
    buffer: List[Message] = field(default_factory=list)
    high_water_mark: int = 0
    status: SessionStatus = SessionStatus.IDLE
    running: bool = False
    pending: bool = False
    pending_force: bool = False
    epoch: int = 0

    def __post_init__(self) -> None:
        self.idle.set()


def _session_key(namespace: Namespace, session_id: Optional[str]) -> SessionKey:
    return (namespace.to_path(), session_id or "")


def count_user_turns(messages: Sequence[Message]) -> int:
    return sum(1 for message in messages if message.role is Role.USER)


def split_into_chunks(messages: Sequence[Message], max_turns: int) -> List[List[Message]]:
    """Group messages into chunks of at most ``max_turns`` user turns.

    A chunk always starts at a user message, except that messages preceding
    the first user message ride along with the first chunk.
    """
    chunks: List[List[Message]] = []
    current: List[Message] = []
    turns = 0
    for message in messages:
        if message.role is Role.USER:
            if turns >= max_turns:
                chunks.append(current)
                current, turns = [], 0
            turns += 1
        current.append(message)
    if current:
        chunks.append(current)
    return chunks


class ExtractionCoordinator:
    """Per-session extraction state machine: ``IDLE -> BUFFERING -> EXTRACTING``.

    Each ``(namespace, session_id)`` key owns its lock, buffer and high-water
    mark (user turns already extracted), so sessions never contend with each
    other. At most one extraction runs per key; a trigger that arrives while
    one is running is coalesced into a single follow-up run.

    A chunk that fails leaves its messages in the buffer and the mark where
    it was, and later chunks of that run are not attempted. Failures are
    logged and reported, never raised to the conversation.

    With a deduplicator, each new memory is checked against similar stored
    memories first and the records it supersedes are deleted once it is saved.

    Session state is kept after the session ends so a reopened session never
    re-extracts turns below its mark. Call :meth:`discard_session` to drop a
    finished key for good. Read-only queries never create state.
    """

    def __init__(
        self,
        repository: MemoryRepository,
        extractor: MemoryExtractor,
        embedder: Embedder,
        *,
        config: Optional[MemoryConfig] = None,
        executor: Optional[Executor] = None,
        metrics: Optional[MemoryMetrics] = None,
        on_complete: Optional[Callable[[ExtractionReport], None]] = None,
        deduplicator: Optional[MemoryDeduplicator] = None,
    ) -> None:
        self._repository = repository
        self._extractor = extractor
        self._embedder = embedder
        self._config = config or MemoryConfig()
        self._metrics = metrics
        self._on_complete = on_complete
        if deduplicator is None and self._config.enable_conflict_resolution:
            deduplicator = MemoryDeduplicator(
                repository,
                similarity_threshold=self._config.conflict_similarity_threshold,
                strategy=self._config.conflict_strategy,
            )
        self._deduplicator = deduplicator
        self._owns_executor = executor is None and self._config.async_extraction
        if executor is None and self._config.async_extraction:
            executor = ThreadPoolExecutor(
                max_workers=self._config.extraction_workers,
                thread_name_prefix="memory-extract",
            )
        self._executor = executor
        self._sessions: Dict[SessionKey, _SessionState] = {}
        self._registry_lock = threading.Lock()
        self._logger = get_logger(self.__class__.__name__)

    # ------------------------------------------------------------------ events

    def on_message(self, namespace: Namespace, session_id: Optional[str], message: Message) -> None:
        if message is None or message.role is Role.SYSTEM:
            return
        state = self._state(namespace, session_id)
        with state.lock:
            state.buffer.append(message)
            if not state.running:
                state.status = SessionStatus.BUFFERING
            should_run = self._threshold_reached(state.buffer)
        if should_run:
            self._trigger(state, force=False)

    def flush(self, namespace: Namespace, session_id: Optional[str]) -> None:
        """Extract everything buffered for the session, regardless of thresholds."""
        state = self._lookup(namespace, session_id)
        if state is not None:
            self._trigger(state, force=True)

    def on_session_end(self, namespace: Namespace, session_id: Optional[str]) -> bool:
        """Run a final pass, wait for it, then reset the buffer (the mark is kept).

        Returns ``False`` when the final pass did not finish in time.
        """
        state = self._lookup(namespace, session_id)
        if state is None:
            return True
        completed = True
        if self._config.extract_on_session_end:
            self._trigger(state, force=True)
            completed = self.wait_for_completion(namespace, session_id, timeout=self._config.extraction_timeout)
            if not completed:
                self._logger.warning(
                    "Final extraction for %s/%s did not finish within %.1fs",
                    namespace,
                    session_id,
                    self._config.extraction_timeout,
                )
        with state.lock:
            dropped = len(state.buffer)
            state.buffer.clear()
            state.epoch += 1
            if not state.running:
                state.status = SessionStatus.IDLE
        if dropped:
            self._logger.warning("Session %s/%s ended with %d unextracted messages", namespace, session_id, dropped)
        return completed

    # ----------------------------------------------------------------- queries

    def wait_for_completion(
        self,
        namespace: Namespace,
        session_id: Optional[str],
        timeout: Optional[float] = None,
    ) -> bool:
        state = self._lookup(namespace, session_id)
        return state is None or state.idle.wait(timeout)

    def status(self, namespace: Namespace, session_id: Optional[str]) -> SessionStatus:
        state = self._lookup(namespace, session_id)
        if state is None:
            return SessionStatus.IDLE
        with state.lock:
            return state.status

    def high_water_mark(self, namespace: Namespace, session_id: Optional[str]) -> int:
        state = self._lookup(namespace, session_id)
        if state is None:
            return 0
        with state.lock:
            return state.high_water_mark

    def buffered_messages(self, namespace: Namespace, session_id: Optional[str]) -> List[Message]:
        state = self._lookup(namespace, session_id)
        if state is None:
            return []
        with state.lock:
            return list(state.buffer)

    def buffered_turns(self, namespace: Namespace, session_id: Optional[str]) -> int:
        return count_user_turns(self.buffered_messages(namespace, session_id))

    def tracked_sessions(self) -> int:
        with self._registry_lock:
            return len(self._sessions)

    def discard_session(self, namespace: Namespace, session_id: Optional[str]) -> bool:
        """Forget an idle key entirely, including its high-water mark.

        Returns ``False`` when the key is unknown or still has work in flight.
        """
        key = _session_key(namespace, session_id)
        with self._registry_lock:
            state = self._sessions.get(key)
            if state is None:
                return False
            with state.lock:
                if state.running or state.buffer:
                    return False
            del self._sessions[key]
        return True

    def shutdown(self, wait: bool = True) -> None:
        if self._owns_executor and self._executor is not None:
            self._executor.shutdown(wait=wait)

    # --------------------------------------------------------------- internals

    def _lookup(self, namespace: Namespace, session_id: Optional[str]) -> Optional[_SessionState]:
        with self._registry_lock:
            return self._sessions.get(_session_key(namespace, session_id))

    def _state(self, namespace: Namespace, session_id: Optional[str]) -> _SessionState:
        key = _session_key(namespace, session_id)
        with self._registry_lock:
            state = self._sessions.get(key)
            if state is None:
                state = _SessionState(namespace=namespace, session_id=session_id)
                self._sessions[key] = state
            return state

    def _threshold_reached(self, buffer: Sequence[Message]) -> bool:
        return (
            count_user_turns(buffer) >= self._config.max_buffer_turns
            or total_tokens(buffer) >= self._config.max_buffer_tokens
        )

    def _trigger(self, state: _SessionState, *, force: bool) -> None:
        with state.lock:
            if state.running:
                state.pending = True
                state.pending_force = state.pending_force or force
                return
            if not state.buffer:
                return
            state.running = True
            state.idle.clear()
            state.status = SessionStatus.EXTRACTING

        if self._executor is not None:
            try:
                self._executor.submit(self._run, state, force)
            except RuntimeError as exc:
                # Executor already shut down; fall back to running inline.
                self._logger.warning("Extraction executor unavailable (%s); running inline", exc)
                self._run(state, force)
        else:
            self._run(state, force)

    def _run(self, state: _SessionState, force: bool) -> None:
        try:
            while True:
                report = self._extract(state, force)
                self._publish(report)
                with state.lock:
                    rerun = False
                    if state.pending and report.success and state.buffer:
                        force = state.pending_force
                        rerun = force or self._threshold_reached(state.buffer)
                    state.pending = False
                    state.pending_force = False
                    if not rerun:
                        state.running = False
                        state.status = SessionStatus.BUFFERING if state.buffer else SessionStatus.IDLE
                        state.idle.set()
                        return
        except BaseException:
            with state.lock:
                state.running = False
                state.pending = False
                state.status = SessionStatus.BUFFERING if state.buffer else SessionStatus.IDLE
                state.idle.set()
            raise

    def _extract(self, state: _SessionState, force: bool) -> ExtractionReport:
        report = ExtractionReport(namespace=state.namespace, session_id=state.session_id)
        with state.lock:
            snapshot = list(state.buffer)
            mark = state.high_water_mark
            epoch = state.epoch
        if not force and snapshot and snapshot[-1].role is Role.USER:
            # The newest turn is still waiting for its reply.
            snapshot = snapshot[:-1]
        if not snapshot:
            return report

        for chunk in split_into_chunks(snapshot, self._config.max_turns_per_extraction):
            report.chunks_attempted += 1
            turns = count_user_turns(chunk)
            try:
                saved = self._process_chunk(state, chunk, turn_start=mark + 1, turn_end=mark + turns)
            except Exception as exc:
                report.error = exc
                self._logger.error(
                    "Extraction failed for %s/%s (turns %d-%d): %s",
                    state.namespace,
                    state.session_id,
                    mark + 1,
                    mark + turns,
                    exc,
                )
                break
            with state.lock:
                if state.epoch == epoch:
                    del state.buffer[: len(chunk)]
                state.high_water_mark += turns
                mark = state.high_water_mark
            report.chunks_succeeded += 1
            report.memories_saved += saved

        self._logger.info(
            "Extraction for %s/%s: %d/%d chunks, %d memories",
            state.namespace,
            state.session_id,
            report.chunks_succeeded,
            report.chunks_attempted,
            report.memories_saved,
        )
        return report

    def _process_chunk(self, state: _SessionState, chunk: Sequence[Message], *, turn_start: int, turn_end: int) -> int:
        transcript = self.render_transcript(chunk)
        if not transcript:
            return 0

        candidates = self._extractor.extract(state.namespace, transcript)
        records: List[MemoryRecord] = []
        for candidate in candidates:
            content = (candidate.content or "").strip()
            if not content:
                continue
            records.append(
                MemoryRecord.create(
                    state.namespace,
                    content,
                    type=candidate.type or MemoryType.FACT,
                    importance=candidate.importance,
                    session_id=state.session_id,
                    metadata={"source": "extraction", "turn_start": turn_start, "turn_end": turn_end},
                )
            )
        if not records:
            return 0

        embeddings = self._embed(records)
        superseded: List[MemoryRecord] = []
        if self._deduplicator is not None:
            records, embeddings, superseded = self._resolve_conflicts(records, embeddings)
            if not records:
                return 0

        saved = self._repository.save_all(records, embeddings)
        for record in superseded:
            try:
                self._repository.delete(record.id)
            except StorageError as exc:
                self._logger.warning("Could not delete superseded memory %s: %s", record.id, exc)
        return saved

    def _embed(self, records: Sequence[MemoryRecord]) -> List[List[float]]:
        embeddings = self._embedder.embed([record.content for record in records])
        if len(embeddings) != len(records):
            raise EmbeddingMismatch(expected=len(records), actual=len(embeddings))
        return [list(vector) for vector in embeddings]

    def _resolve_conflicts(
        self,
        records: Sequence[MemoryRecord],
        embeddings: Sequence[List[float]],
    ) -> Tuple[List[MemoryRecord], List[List[float]], List[MemoryRecord]]:
        kept: List[MemoryRecord] = []
        kept_embeddings: List[List[float]] = []
        superseded: Dict[str, MemoryRecord] = {}
        rewritten: List[int] = []
        for record, embedding in zip(records, embeddings):
            conflicts = self._deduplicator.find_conflicts(record, embedding)
            resolved = self._deduplicator.resolve(record, conflicts)
            if resolved is None:
                continue
            if resolved.content != record.content:
                rewritten.append(len(kept))
            kept.append(resolved)
            kept_embeddings.append(embedding)
            for conflict in conflicts:
                superseded.setdefault(conflict.id, conflict)

        if rewritten:
            fresh = self._embed([kept[index] for index in rewritten])
            for index, vector in zip(rewritten, fresh):
                kept_embeddings[index] = vector
        if superseded or len(kept) != len(records):
            self._logger.info(
                "Conflict resolution kept %d of %d memories, superseding %d",
                len(kept),
                len(records),
                len(superseded),
            )
        return kept, kept_embeddings, list(superseded.values())

    def render_transcript(self, messages: Sequence[Message]) -> str:
        """Role-labelled transcript; system and blank messages are left out."""
        lines: List[str] = []
        for message in messages:
            if message.role is Role.SYSTEM or not message.content.strip():
                continue
            content = truncate_to_tokens(message.content, self._config.max_tokens_per_message)
            lines.append(f"{message.role.label}: {content}")
        return "\n".join(lines)

    def _publish(self, report: ExtractionReport) -> None:
        if self._metrics is not None and report.chunks_attempted:
            self._metrics.record_extraction(
                chunks_attempted=report.chunks_attempted,
                chunks_succeeded=report.chunks_succeeded,
                memories_saved=report.memories_saved,
                failure=type(report.error).__name__ if report.error else None,
            )
        if self._on_complete is not None:
            try:
                self._on_complete(report)
            except Exception as exc:
                self._logger.warning("Extraction completion callback raised: %s", exc)


__all__ = [
    "ExtractionCoordinator",
    "ExtractionReport",
    "SessionStatus",
    "count_user_turns",
    "split_into_chunks",
]
