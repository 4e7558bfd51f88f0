"""Chunk indexing: extraction + embedding orchestration and status transitions."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, TypeVar

from transcript_rag.config import settings
from transcript_rag.errors import ServiceError, TransientServiceError
from transcript_rag.extraction.extractor import Extractor
from transcript_rag.indexing.status import COMPLETED, FAILED, PENDING, PROCESSING
from transcript_rag.ingestion.chunking import chunk_transcript
from transcript_rag.ingestion.embeddings import Embedder
from transcript_rag.ingestion.lexical import build_lexical_entry
from transcript_rag.ingestion.models import ChunkRecord, ChunkSignals, ExtractionStatus
from transcript_rag.ingestion.storage import ChunkStore, StatusCounts
from transcript_rag.pipeline_config import ChunkingConfig
from transcript_rag.vocab import VOCABULARY_VERSION

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StepFailure(Exception):
    """A sub-step (extraction or embedding) gave up."""

    def __init__(self, step: str, error: ServiceError, attempts: int) -> None:
        super().__init__(f"{step} failed after {attempts} attempt(s): {error}")
        self.step = step
        self.error = error
        self.attempts = attempts


@dataclass
class IndexOutcome:
    """Result of processing one chunk.

    ``status`` is ``None`` when the chunk was not processed because another
    worker held (or took back) the claim.
    """

    chunk_id: str
    status: ExtractionStatus | None
    attempts: int = 0
    error: str | None = None


@dataclass
class TranscriptIndexResult:
    """Per-transcript summary of an indexing run."""

    transcript_id: str
    total_chunks: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0

    @property
    def succeeded(self) -> bool:
        return self.failed == 0 and self.skipped == 0 and self.completed == self.total_chunks


class Indexer:
    """Drives chunks through extraction and embedding and owns ``extraction_status``.

    A chunk is only ``completed`` when every derived signal was computed and
    written in the same update; any failure marks the whole chunk ``failed``.
    """

    def __init__(
        self,
        store: ChunkStore,
        extractor: Extractor | None = None,
        embedder: Embedder | None = None,
        chunking: ChunkingConfig | None = None,
        max_attempts: int | None = None,
        backoff_base: float | None = None,
        backoff_max: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.extractor = extractor or Extractor()
        self.embedder = embedder or Embedder()
        self.chunking = chunking or ChunkingConfig()
        self.max_attempts = max_attempts or settings.index_max_attempts
        self.backoff_base = settings.index_backoff_base_seconds if backoff_base is None else backoff_base
        self.backoff_max = settings.index_backoff_max_seconds if backoff_max is None else backoff_max
        self.sleep = sleep

    def _now(self) -> str:
        return self.store.clock().isoformat()

    # -- chunking --------------------------------------------------------

    def prepare_transcript(self, transcript_id: str) -> list[ChunkRecord]:
        """Chunk a transcript and persist its chunk rows as ``pending``.

        Re-running it on unchanged text yields the same chunk boundaries.

        Raises:
            LookupError: The transcript does not exist or is soft-deleted.
        """
        transcript = self.store.get_transcript(transcript_id)
        if transcript is None or transcript.is_deleted:
            raise LookupError(f"Transcript {transcript_id} not found")

        chunks = chunk_transcript(transcript.raw_text, self.chunking)
        records = self.store.replace_chunks(transcript_id, chunks)
        logger.info("Chunked transcript %s into %d chunk(s)", transcript_id, len(records))
        return records

    # -- per-chunk processing --------------------------------------------

    def _with_retry(self, step: str, fn: Callable[[str], T], text: str) -> tuple[T, int]:
        """Call *fn* with exponential backoff on transient errors."""
        attempt = 0
        while True:
            attempt += 1
            try:
                return fn(text), attempt
            except TransientServiceError as exc:
                if attempt >= self.max_attempts:
                    raise StepFailure(step, exc, attempt) from exc
                delay = min(self.backoff_max, self.backoff_base * 2 ** (attempt - 1))
                logger.warning(
                    "%s attempt %d/%d failed (%s); retrying in %.2fs",
                    step,
                    attempt,
                    self.max_attempts,
                    exc,
                    delay,
                )
                self.sleep(delay)
            except ServiceError as exc:
                raise StepFailure(step, exc, attempt) from exc

    def process_chunk(self, chunk: ChunkRecord) -> IndexOutcome:
        """Claim a pending chunk, derive all signals and finalise its status."""
        claimed = self.store.update_chunk(
            chunk.id,
            PENDING,
            PROCESSING,
            {"metadata": {**chunk.metadata, "claimed_at": self._now()}},
        )
        if not claimed:
            logger.info("Chunk %s is no longer pending; skipping", chunk.id)
            return IndexOutcome(chunk.id, None, chunk.attempts)

        failures: list[StepFailure] = []
        signals: ChunkSignals | None = None
        embedding: list[float] | None = None
        used_attempts = 1

        # Both sub-steps must finish before the status is finalised.
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix=f"chunk-{chunk.chunk_index}") as pool:
            extract_future = pool.submit(self._with_retry, "extraction", self.extractor.extract, chunk.content)
            embed_future = pool.submit(self._with_retry, "embedding", self.embedder.embed, chunk.content)
            try:
                signals, n = extract_future.result()
                used_attempts = max(used_attempts, n)
            except StepFailure as failure:
                failures.append(failure)
            try:
                embedding, n = embed_future.result()
                used_attempts = max(used_attempts, n)
            except StepFailure as failure:
                failures.append(failure)

        attempts = chunk.attempts + max([used_attempts, *(f.attempts for f in failures)])
        if failures or signals is None or embedding is None:
            return self._mark_failed(chunk, failures, attempts)

        metadata: dict[str, Any] = {
            **chunk.metadata,
            "attempts": attempts,
            "last_error": None,
            "completed_at": self._now(),
            "vocabulary_version": VOCABULARY_VERSION,
        }
        landed = self.store.update_chunk(
            chunk.id,
            PROCESSING,
            COMPLETED,
            {
                "embedding": embedding,
                "lexical": build_lexical_entry(chunk.content),
                "entities": signals.entities,
                "topics": signals.topics,
                "qualification_tags": signals.qualification_tags,
                "metadata": metadata,
            },
        )
        if not landed:
            logger.warning("Lost claim on chunk %s before completion; result discarded", chunk.id)
            return IndexOutcome(chunk.id, None, attempts)
        return IndexOutcome(chunk.id, COMPLETED, attempts)

    def _mark_failed(self, chunk: ChunkRecord, failures: list[StepFailure], attempts: int) -> IndexOutcome:
        message = "; ".join(str(f) for f in failures) or "missing derived signals"
        kinds = {f.error.kind for f in failures}
        metadata: dict[str, Any] = {
            **chunk.metadata,
            "attempts": attempts,
            "last_error": message,
            "error_kind": "permanent" if "permanent" in kinds else "transient",
            "failed_steps": sorted(f.step for f in failures),
            "failed_at": self._now(),
        }
        logger.error("Chunk %s (transcript %s) failed: %s", chunk.id, chunk.transcript_id, message)
        landed = self.store.update_chunk(chunk.id, PROCESSING, FAILED, {"metadata": metadata})
        if not landed:
            logger.warning("Lost claim on chunk %s before marking it failed", chunk.id)
            return IndexOutcome(chunk.id, None, attempts, message)
        return IndexOutcome(chunk.id, FAILED, attempts, message)

    # -- per-transcript processing ----------------------------------------

    def index_transcript(self, transcript_id: str) -> TranscriptIndexResult:
        """Chunk the transcript if needed, then process every pending chunk in order."""
        chunks = self.store.list_chunks(transcript_id)
        if not chunks:
            chunks = self.prepare_transcript(transcript_id)

        attempted: set[str] = set()
        for chunk in chunks:
            if chunk.extraction_status == PENDING:
                attempted.add(chunk.id)
                self.process_chunk(chunk)
        # Chunks reclaimed by the watchdog while this run was in progress.
        for chunk in self.store.list_chunks(transcript_id, statuses=[PENDING]):
            if chunk.id not in attempted:
                attempted.add(chunk.id)
                self.process_chunk(chunk)

        final = self.store.list_chunks(transcript_id)
        result = TranscriptIndexResult(transcript_id, total_chunks=len(final))
        for chunk in final:
            if chunk.extraction_status == COMPLETED:
                result.completed += 1
            elif chunk.extraction_status == FAILED:
                result.failed += 1
            else:
                result.skipped += 1

        logger.info(
            "Indexed transcript %s: %d completed, %d failed, %d skipped of %d",
            transcript_id,
            result.completed,
            result.failed,
            result.skipped,
            result.total_chunks,
        )
        return result

    # -- operator actions -------------------------------------------------

    def requeue_failed(
        self,
        transcript_ids: Iterable[str] | None = None,
        chunk_ids: Iterable[str] | None = None,
    ) -> list[str]:
        """Administrative retry; see :func:`requeue_failed`."""
        return requeue_failed(self.store, transcript_ids, chunk_ids)

    def status_counts(self, transcript_ids: Iterable[str]) -> StatusCounts:
        """Chunk counts by ``extraction_status`` per transcript (operator readout)."""
        return self.store.status_counts(transcript_ids)


def requeue_failed(
    store: ChunkStore,
    transcript_ids: Iterable[str] | None = None,
    chunk_ids: Iterable[str] | None = None,
) -> list[str]:
    """Administrative retry: move failed chunks back to ``pending``.

    Resets the attempt counter and keeps the previous error for reference.
    Failed index jobs of the given transcripts are requeued too.

    Returns:
        Ids of the chunks that were requeued.
    """
    if transcript_ids is None and chunk_ids is None:
        raise ValueError("Either transcript_ids or chunk_ids is required")

    transcript_ids = list(transcript_ids or [])
    targets: list[ChunkRecord] = []
    for transcript_id in transcript_ids:
        targets.extend(store.list_chunks(transcript_id, statuses=[FAILED]))
    for chunk_id in chunk_ids or []:
        chunk = store.get_chunk(chunk_id)
        if chunk is not None and chunk.extraction_status == FAILED:
            targets.append(chunk)

    requeued: list[str] = []
    now = store.clock().isoformat()
    for chunk in targets:
        if chunk.id in requeued:
            continue
        metadata = {
            **chunk.metadata,
            "attempts": 0,
            "previous_error": chunk.metadata.get("last_error"),
            "last_error": None,
            "requeued_at": now,
        }
        if store.update_chunk(chunk.id, FAILED, PENDING, {"metadata": metadata}):
            requeued.append(chunk.id)

    for transcript_id in transcript_ids:
        store.update_job(transcript_id, FAILED, PENDING, {"attempts": 0, "last_error": None})

    logger.info("Requeued %d failed chunk(s)", len(requeued))
    return requeued


def total_counts(counts: StatusCounts) -> dict[ExtractionStatus, int]:
    """Collapse per-transcript counts into totals."""
    totals = {status: 0 for status in ExtractionStatus}
    for per_status in counts.values():
        for status, n in per_status.items():
            totals[status] += n
    return totals
