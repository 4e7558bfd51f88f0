"""Thread-safe in-process ChunkStore, used by tests and local runs."""

from __future__ import annotations

import math
import threading
import uuid
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import datetime
from typing import Any

from transcript_rag.ingestion.lexical import bm25_ranks
from transcript_rag.ingestion.models import (
    AnalysisStatus,
    ChunkRecord,
    ExtractionStatus,
    IndexJob,
    TextChunk,
    Transcript,
)
from transcript_rag.ingestion.storage import ChunkStore, StatusCounts, utcnow
from transcript_rag.retrieval.models import Candidate, RetrievalQuery
from transcript_rag.vocab import intersects


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity in [-1, 1]; 0 when either vector has zero norm."""
    if len(a) != len(b):
        raise ValueError(f"Vector length mismatch: {len(a)} != {len(b)}")
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    if norm == 0:
        return 0.0
    return max(-1.0, min(1.0, dot / norm))


class InMemoryChunkStore(ChunkStore):
    """Dictionary-backed store with the same compare-and-set semantics as Postgres.

    All reads return copies, so callers never mutate stored rows.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        super().__init__(clock)
        self._lock = threading.RLock()
        self._transcripts: dict[str, Transcript] = {}
        self._chunks: dict[str, ChunkRecord] = {}
        self._jobs: dict[str, IndexJob] = {}

    @staticmethod
    def _copy_chunk(chunk: ChunkRecord) -> ChunkRecord:
        return replace(
            chunk,
            embedding=list(chunk.embedding) if chunk.embedding is not None else None,
            metadata=dict(chunk.metadata),
        )

    @staticmethod
    def _copy_job(job: IndexJob) -> IndexJob:
        return replace(job, metadata=dict(job.metadata))

    # -- transcripts -----------------------------------------------------

    def get_transcript(self, transcript_id: str) -> Transcript | None:
        with self._lock:
            transcript = self._transcripts.get(transcript_id)
            return replace(transcript) if transcript else None

    def save_transcript(self, transcript: Transcript) -> None:
        with self._lock:
            self._transcripts[transcript.id] = replace(
                transcript, updated_at=transcript.updated_at or self.clock()
            )

    def unindexed_transcripts(self, analysis_statuses: Iterable[AnalysisStatus]) -> list[str]:
        wanted = set(analysis_statuses)
        with self._lock:
            chunked = {c.transcript_id for c in self._chunks.values()}
            return sorted(
                t.id
                for t in self._transcripts.values()
                if not t.is_deleted and t.analysis_status in wanted and t.id not in chunked
            )

    # -- chunks ----------------------------------------------------------

    def add_chunk(self, chunk: ChunkRecord) -> ChunkRecord:
        """Insert a fully-formed chunk row (fixtures and imports)."""
        with self._lock:
            stored = self._copy_chunk(chunk)
            stored.updated_at = stored.updated_at or self.clock()
            self._chunks[stored.id] = stored
            return self._copy_chunk(stored)

    def replace_chunks(self, transcript_id: str, chunks: list[TextChunk]) -> list[ChunkRecord]:
        with self._lock:
            for chunk_id in [c.id for c in self._chunks.values() if c.transcript_id == transcript_id]:
                del self._chunks[chunk_id]
            now = self.clock()
            stored = []
            for chunk in chunks:
                record = ChunkRecord(
                    id=str(uuid.uuid4()),
                    transcript_id=transcript_id,
                    chunk_index=chunk.chunk_index,
                    content=chunk.content,
                    metadata={"start_char": chunk.start_char, "end_char": chunk.end_char, "attempts": 0},
                    updated_at=now,
                )
                self._chunks[record.id] = record
                stored.append(self._copy_chunk(record))
            return stored

    def list_chunks(
        self,
        transcript_id: str,
        statuses: Iterable[ExtractionStatus] | None = None,
    ) -> list[ChunkRecord]:
        wanted = set(statuses) if statuses is not None else None
        with self._lock:
            rows = [
                self._copy_chunk(c)
                for c in self._chunks.values()
                if c.transcript_id == transcript_id
                and (wanted is None or c.extraction_status in wanted)
            ]
        return sorted(rows, key=lambda c: c.chunk_index)

    def get_chunk(self, chunk_id: str) -> ChunkRecord | None:
        with self._lock:
            chunk = self._chunks.get(chunk_id)
            return self._copy_chunk(chunk) if chunk else None

    def _compare_and_set_chunk(
        self,
        chunk_id: str,
        expected: ExtractionStatus,
        new: ExtractionStatus,
        updates: dict[str, Any],
    ) -> bool:
        with self._lock:
            chunk = self._chunks.get(chunk_id)
            if chunk is None or chunk.extraction_status != expected:
                return False
            self._chunks[chunk_id] = replace(
                chunk, extraction_status=new, updated_at=self.clock(), **updates
            )
            return True

    def stale_chunks(self, older_than: datetime) -> list[ChunkRecord]:
        with self._lock:
            return [
                self._copy_chunk(c)
                for c in self._chunks.values()
                if c.extraction_status == ExtractionStatus.PROCESSING
                and c.updated_at is not None
                and c.updated_at < older_than
            ]

    # -- index jobs ------------------------------------------------------

    def put_job(self, job: IndexJob) -> IndexJob:
        with self._lock:
            stored = replace(self._copy_job(job), updated_at=self.clock())
            self._jobs[job.transcript_id] = stored
            return self._copy_job(stored)

    def get_job(self, transcript_id: str) -> IndexJob | None:
        with self._lock:
            job = self._jobs.get(transcript_id)
            return self._copy_job(job) if job else None

    def list_jobs(self, status: ExtractionStatus, limit: int | None = None) -> list[IndexJob]:
        with self._lock:
            jobs = [self._copy_job(j) for j in self._jobs.values() if j.status == status]
        jobs.sort(key=lambda j: (j.updated_at or self.clock(), j.transcript_id))
        return jobs[:limit] if limit is not None else jobs

    def _compare_and_set_job(
        self,
        transcript_id: str,
        expected: ExtractionStatus,
        new: ExtractionStatus,
        updates: dict[str, Any],
    ) -> bool:
        with self._lock:
            job = self._jobs.get(transcript_id)
            if job is None or job.status != expected:
                return False
            self._jobs[transcript_id] = replace(job, status=new, updated_at=self.clock(), **updates)
            return True

    def stale_jobs(self, older_than: datetime) -> list[IndexJob]:
        with self._lock:
            return [
                self._copy_job(j)
                for j in self._jobs.values()
                if j.status == ExtractionStatus.PROCESSING
                and j.updated_at is not None
                and j.updated_at < older_than
            ]

    # -- retrieval and readout -------------------------------------------

    def fetch_candidates(self, query: RetrievalQuery) -> list[Candidate]:
        with self._lock:
            live = {
                tid: t
                for tid in query.transcript_ids
                if (t := self._transcripts.get(tid)) is not None and not t.is_deleted
            }
            chunks = [
                self._copy_chunk(c)
                for c in self._chunks.values()
                if c.transcript_id in live
                and c.extraction_status == ExtractionStatus.COMPLETED
                and intersects(c.topics, query.topics)
                and intersects(c.qualification_tags, query.qualification_tags)
            ]
        chunks.sort(key=lambda c: (c.transcript_id, c.chunk_index))

        ranks = bm25_ranks(query.text, [c.lexical for c in chunks])
        candidates = []
        for chunk, rank in zip(chunks, ranks, strict=True):
            similarity = None
            if query.embedding is not None and chunk.embedding is not None:
                similarity = cosine_similarity(query.embedding, chunk.embedding)
            candidates.append(
                Candidate(
                    chunk=chunk,
                    similarity=similarity,
                    lexical_rank=rank,
                    transcript_activity_at=live[chunk.transcript_id].updated_at,
                )
            )
        return candidates

    def status_counts(self, transcript_ids: Iterable[str]) -> StatusCounts:
        ids = sorted(set(transcript_ids))
        counts: StatusCounts = {tid: {s: 0 for s in ExtractionStatus} for tid in ids}
        with self._lock:
            for chunk in self._chunks.values():
                if chunk.transcript_id in counts:
                    counts[chunk.transcript_id][chunk.extraction_status] += 1
        return counts
