"""Chunk storage contract and the Supabase implementation."""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Any, cast

from supabase import Client, create_client

from transcript_rag.config import settings
from transcript_rag.indexing.status import check_transition
from transcript_rag.ingestion.models import (
    AnalysisStatus,
    ChunkRecord,
    Entity,
    ExtractionStatus,
    IndexJob,
    LexicalEntry,
    TextChunk,
    Transcript,
)
from transcript_rag.retrieval.models import Candidate, RetrievalQuery
from transcript_rag.vocab import EntityType, QualificationTag, TopicTag, parse_tags

StatusCounts = dict[str, dict[ExtractionStatus, int]]

# Fields a chunk update may write alongside its status.
CHUNK_UPDATE_FIELDS = frozenset(
    {"embedding", "lexical", "entities", "topics", "qualification_tags", "metadata"}
)


def utcnow() -> datetime:
    return datetime.now(UTC)


class ChunkStore(ABC):
    """Storage contract the indexer, watchdog and retriever depend on.

    Status updates are compare-and-set: they land only when the row's current
    status equals ``expected``.  Illegal transitions raise before touching
    storage.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self.clock = clock

    # -- transcripts -----------------------------------------------------

    @abstractmethod
    def get_transcript(self, transcript_id: str) -> Transcript | None:
        """Return the transcript, or ``None`` if it does not exist."""

    @abstractmethod
    def save_transcript(self, transcript: Transcript) -> None:
        """Insert or replace a transcript row."""

    @abstractmethod
    def unindexed_transcripts(self, analysis_statuses: Iterable[AnalysisStatus]) -> list[str]:
        """Ids of live transcripts in *analysis_statuses* that have no chunk rows, sorted."""

    # -- chunks ----------------------------------------------------------

    @abstractmethod
    def replace_chunks(self, transcript_id: str, chunks: list[TextChunk]) -> list[ChunkRecord]:
        """Delete the transcript's chunk rows and insert *chunks* as ``pending``."""

    @abstractmethod
    def list_chunks(
        self,
        transcript_id: str,
        statuses: Iterable[ExtractionStatus] | None = None,
    ) -> list[ChunkRecord]:
        """Chunks of one transcript ordered by ``chunk_index``."""

    @abstractmethod
    def get_chunk(self, chunk_id: str) -> ChunkRecord | None: ...

    def update_chunk(
        self,
        chunk_id: str,
        expected: ExtractionStatus,
        new: ExtractionStatus,
        updates: dict[str, Any] | None = None,
        *,
        reclaim: bool = False,
    ) -> bool:
        """Move a chunk from *expected* to *new*, writing *updates* atomically.

        Returns:
            True if the update landed, False if the chunk was no longer in
            *expected* (another worker got there first).

        Raises:
            InvalidTransition: ``expected -> new`` is not a legal transition.
        """
        check_transition(expected, new, reclaim=reclaim)
        updates = dict(updates or {})
        unknown = set(updates) - CHUNK_UPDATE_FIELDS
        if unknown:
            raise ValueError(f"Unknown chunk fields: {sorted(unknown)}")
        return self._compare_and_set_chunk(chunk_id, expected, new, updates)

    @abstractmethod
    def _compare_and_set_chunk(
        self,
        chunk_id: str,
        expected: ExtractionStatus,
        new: ExtractionStatus,
        updates: dict[str, Any],
    ) -> bool: ...

    @abstractmethod
    def stale_chunks(self, older_than: datetime) -> list[ChunkRecord]:
        """Chunks in ``processing`` last updated strictly before *older_than*."""

    # -- index jobs ------------------------------------------------------

    @abstractmethod
    def put_job(self, job: IndexJob) -> IndexJob:
        """Insert or replace the job for ``job.transcript_id``."""

    @abstractmethod
    def get_job(self, transcript_id: str) -> IndexJob | None: ...

    @abstractmethod
    def list_jobs(self, status: ExtractionStatus, limit: int | None = None) -> list[IndexJob]:
        """Jobs in *status*, oldest first."""

    def update_job(
        self,
        transcript_id: str,
        expected: ExtractionStatus,
        new: ExtractionStatus,
        updates: dict[str, Any] | None = None,
        *,
        reclaim: bool = False,
    ) -> bool:
        """Compare-and-set on a job's status; same semantics as :meth:`update_chunk`."""
        check_transition(expected, new, reclaim=reclaim)
        return self._compare_and_set_job(transcript_id, expected, new, dict(updates or {}))

    @abstractmethod
    def _compare_and_set_job(
        self,
        transcript_id: str,
        expected: ExtractionStatus,
        new: ExtractionStatus,
        updates: dict[str, Any],
    ) -> bool: ...

    @abstractmethod
    def stale_jobs(self, older_than: datetime) -> list[IndexJob]:
        """Jobs in ``processing`` last updated strictly before *older_than*."""

    # -- retrieval and readout -------------------------------------------

    @abstractmethod
    def fetch_candidates(self, query: RetrievalQuery) -> list[Candidate]:
        """Completed chunks of live transcripts in ``query.transcript_ids``.

        Each candidate carries the raw cosine similarity against
        ``query.embedding`` and the raw lexical rank of ``query.text``.
        """

    @abstractmethod
    def status_counts(self, transcript_ids: Iterable[str]) -> StatusCounts:
        """Chunk counts per ``extraction_status``, keyed by transcript id."""


# ---------------------------------------------------------------------------
# Row conversion
# ---------------------------------------------------------------------------


def _parse_ts(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _entity_from_dict(data: dict[str, Any]) -> Entity | None:
    try:
        return Entity(
            type=EntityType(data["type"]),
            value=str(data["value"]),
            mention_count=int(data.get("mention_count", 1)),
        )
    except (KeyError, ValueError):
        return None


def entities_to_json(entities: Iterable[Entity]) -> list[dict[str, Any]]:
    return [
        {"type": str(e.type), "value": e.value, "mention_count": e.mention_count} for e in entities
    ]


def chunk_from_row(row: dict[str, Any]) -> ChunkRecord:
    """Build a :class:`ChunkRecord` from a ``transcript_chunks`` row."""
    embedding = row.get("embedding")
    if isinstance(embedding, str):
        # pgvector text form: "[0.1,0.2,...]"
        embedding = [float(x) for x in embedding.strip("[]").split(",") if x]
    terms = row.get("search_terms")
    entities = [_entity_from_dict(e) for e in row.get("entities") or []]
    return ChunkRecord(
        id=str(row["id"]),
        transcript_id=str(row["transcript_id"]),
        chunk_index=int(row["chunk_index"]),
        content=row.get("chunk_text") or "",
        extraction_status=ExtractionStatus(row.get("extraction_status") or "pending"),
        embedding=embedding,
        lexical=LexicalEntry(terms=dict(terms)) if terms is not None else None,
        entities=tuple(e for e in entities if e is not None),
        topics=parse_tags(row.get("topics"), TopicTag),
        qualification_tags=parse_tags(row.get("meddpicc_elements"), QualificationTag),
        metadata=dict(row.get("metadata") or {}),
        updated_at=_parse_ts(row.get("updated_at")),
    )


def chunk_updates_to_row(updates: dict[str, Any]) -> dict[str, Any]:
    """Translate :class:`ChunkRecord` field updates into column values."""
    row: dict[str, Any] = {}
    for key, value in updates.items():
        if key == "lexical":
            row["search_terms"] = value.terms if value is not None else None
        elif key == "entities":
            row["entities"] = entities_to_json(value)
        elif key == "topics":
            row["topics"] = sorted(str(t) for t in value)
        elif key == "qualification_tags":
            row["meddpicc_elements"] = sorted(str(t) for t in value)
        else:
            row[key] = value
    return row


def job_from_row(row: dict[str, Any]) -> IndexJob:
    return IndexJob(
        transcript_id=str(row["transcript_id"]),
        status=ExtractionStatus(row["status"]),
        attempts=int(row.get("attempts") or 0),
        last_error=row.get("last_error"),
        metadata=dict(row.get("metadata") or {}),
        updated_at=_parse_ts(row.get("updated_at")),
    )


def transcript_from_row(row: dict[str, Any]) -> Transcript:
    return Transcript(
        id=str(row["id"]),
        raw_text=row.get("raw_text") or "",
        rep_id=row.get("rep_id"),
        team_id=row.get("team_id"),
        account_name=row.get("account_name"),
        call_date=row.get("call_date"),
        analysis_status=AnalysisStatus(row.get("analysis_status") or "pending"),
        deleted_at=_parse_ts(row.get("deleted_at")),
        updated_at=_parse_ts(row.get("updated_at")),
    )


# ---------------------------------------------------------------------------
# Supabase
# ---------------------------------------------------------------------------


def get_supabase_client() -> Client:
    """Create and return a Supabase client from settings / environment variables."""
    return create_client(
        settings.supabase_url or os.getenv("SUPABASE_URL", ""),
        settings.supabase_key or os.getenv("SUPABASE_KEY", ""),
    )


class SupabaseChunkStore(ChunkStore):
    """Postgres-backed store (pgvector similarity, ``ts_rank`` lexical ranking).

    Schema and the ``match_transcript_chunks`` function live in
    ``supabase/migrations``.
    """

    TRANSCRIPTS = "call_transcripts"
    CHUNKS = "transcript_chunks"
    JOBS = "chunk_index_jobs"
    BATCH_SIZE = 50
    PAGE_SIZE = 1000

    def __init__(self, client: Client | None = None, clock: Callable[[], datetime] = utcnow) -> None:
        super().__init__(clock)
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_supabase_client()
        return self._client

    def _now(self) -> str:
        return self.clock().isoformat()

    def _fetch_all(self, build: Callable[[], Any]) -> list[dict[str, Any]]:
        """Read every row of a deterministically ordered query, one page at a time.

        PostgREST caps a response at its ``max-rows`` setting, which may be
        below ``PAGE_SIZE``; only an empty page ends the read.
        """
        rows: list[dict[str, Any]] = []
        while True:
            result = build().range(len(rows), len(rows) + self.PAGE_SIZE - 1).execute()
            page = cast(list[dict[str, Any]], result.data)
            if not page:
                return rows
            rows.extend(page)

    def get_transcript(self, transcript_id: str) -> Transcript | None:
        result = self.client.table(self.TRANSCRIPTS).select("*").eq("id", transcript_id).execute()
        rows = cast(list[dict[str, Any]], result.data)
        return transcript_from_row(rows[0]) if rows else None

    def save_transcript(self, transcript: Transcript) -> None:
        self.client.table(self.TRANSCRIPTS).upsert(
            {
                "id": transcript.id,
                "raw_text": transcript.raw_text,
                "rep_id": transcript.rep_id,
                "team_id": transcript.team_id,
                "account_name": transcript.account_name,
                "call_date": transcript.call_date,
                "analysis_status": str(transcript.analysis_status),
                "deleted_at": transcript.deleted_at.isoformat() if transcript.deleted_at else None,
                "updated_at": (transcript.updated_at or self.clock()).isoformat(),
            }
        ).execute()

    def unindexed_transcripts(self, analysis_statuses: Iterable[AnalysisStatus]) -> list[str]:
        params = {"filter_analysis_statuses": sorted(str(s) for s in analysis_statuses)}
        rows = self._fetch_all(lambda: self.client.rpc("unindexed_transcripts", params))
        return [str(row["id"]) for row in rows]

    def replace_chunks(self, transcript_id: str, chunks: list[TextChunk]) -> list[ChunkRecord]:
        self.client.table(self.CHUNKS).delete().eq("transcript_id", transcript_id).execute()
        now = self._now()
        rows = [
            {
                "transcript_id": transcript_id,
                "chunk_index": chunk.chunk_index,
                "chunk_text": chunk.content,
                "extraction_status": str(ExtractionStatus.PENDING),
                "metadata": {"start_char": chunk.start_char, "end_char": chunk.end_char, "attempts": 0},
                "updated_at": now,
            }
            for chunk in chunks
        ]
        stored: list[ChunkRecord] = []
        # Insert in batches of 50
        for i in range(0, len(rows), self.BATCH_SIZE):
            result = self.client.table(self.CHUNKS).insert(rows[i : i + self.BATCH_SIZE]).execute()
            stored.extend(chunk_from_row(r) for r in cast(list[dict[str, Any]], result.data))
        return sorted(stored, key=lambda c: c.chunk_index)

    def list_chunks(
        self,
        transcript_id: str,
        statuses: Iterable[ExtractionStatus] | None = None,
    ) -> list[ChunkRecord]:
        wanted = [str(s) for s in statuses] if statuses is not None else None

        def build() -> Any:
            query = self.client.table(self.CHUNKS).select("*").eq("transcript_id", transcript_id)
            if wanted is not None:
                query = query.in_("extraction_status", wanted)
            return query.order("chunk_index")

        return [chunk_from_row(r) for r in self._fetch_all(build)]

    def get_chunk(self, chunk_id: str) -> ChunkRecord | None:
        result = self.client.table(self.CHUNKS).select("*").eq("id", chunk_id).execute()
        rows = cast(list[dict[str, Any]], result.data)
        return chunk_from_row(rows[0]) if rows else None

    def _compare_and_set_chunk(
        self,
        chunk_id: str,
        expected: ExtractionStatus,
        new: ExtractionStatus,
        updates: dict[str, Any],
    ) -> bool:
        row = chunk_updates_to_row(updates)
        row["extraction_status"] = str(new)
        row["updated_at"] = self._now()
        result = (
            self.client.table(self.CHUNKS)
            .update(row)
            .eq("id", chunk_id)
            .eq("extraction_status", str(expected))
            .execute()
        )
        return bool(result.data)

    def stale_chunks(self, older_than: datetime) -> list[ChunkRecord]:
        rows = self._fetch_all(
            lambda: self.client.table(self.CHUNKS)
            .select("*")
            .eq("extraction_status", str(ExtractionStatus.PROCESSING))
            .lt("updated_at", older_than.isoformat())
            .order("id")
        )
        return [chunk_from_row(r) for r in rows]

    def put_job(self, job: IndexJob) -> IndexJob:
        job.updated_at = self.clock()
        self.client.table(self.JOBS).upsert(
            {
                "transcript_id": job.transcript_id,
                "status": str(job.status),
                "attempts": job.attempts,
                "last_error": job.last_error,
                "metadata": job.metadata,
                "updated_at": job.updated_at.isoformat(),
            },
            on_conflict="transcript_id",
        ).execute()
        return job

    def get_job(self, transcript_id: str) -> IndexJob | None:
        result = self.client.table(self.JOBS).select("*").eq("transcript_id", transcript_id).execute()
        rows = cast(list[dict[str, Any]], result.data)
        return job_from_row(rows[0]) if rows else None

    def list_jobs(self, status: ExtractionStatus, limit: int | None = None) -> list[IndexJob]:
        query = self.client.table(self.JOBS).select("*").eq("status", str(status)).order("updated_at")
        if limit is not None:
            query = query.limit(limit)
        result = query.execute()
        return [job_from_row(r) for r in cast(list[dict[str, Any]], result.data)]

    def _compare_and_set_job(
        self,
        transcript_id: str,
        expected: ExtractionStatus,
        new: ExtractionStatus,
        updates: dict[str, Any],
    ) -> bool:
        row = dict(updates)
        row["status"] = str(new)
        row["updated_at"] = self._now()
        result = (
            self.client.table(self.JOBS)
            .update(row)
            .eq("transcript_id", transcript_id)
            .eq("status", str(expected))
            .execute()
        )
        return bool(result.data)

    def stale_jobs(self, older_than: datetime) -> list[IndexJob]:
        rows = self._fetch_all(
            lambda: self.client.table(self.JOBS)
            .select("*")
            .eq("status", str(ExtractionStatus.PROCESSING))
            .lt("updated_at", older_than.isoformat())
            .order("transcript_id")
        )
        return [job_from_row(r) for r in rows]

    def fetch_candidates(self, query: RetrievalQuery) -> list[Candidate]:
        params = {
            "query_embedding": query.embedding,
            "query_text": query.text or None,
            "filter_transcript_ids": sorted(query.transcript_ids),
            "filter_topics": sorted(str(t) for t in query.topics) or None,
            "filter_meddpicc": sorted(str(t) for t in query.qualification_tags) or None,
        }
        # The function orders by (transcript_id, chunk_index) so pages never overlap.
        rows = self._fetch_all(lambda: self.client.rpc("match_transcript_chunks", params))
        return [
            Candidate(
                chunk=chunk_from_row(row),
                similarity=row.get("similarity"),
                lexical_rank=float(row.get("fts_rank") or 0.0),
                transcript_activity_at=_parse_ts(row.get("transcript_updated_at")),
            )
            for row in rows
        ]

    def status_counts(self, transcript_ids: Iterable[str]) -> StatusCounts:
        ids = sorted(set(transcript_ids))
        counts: StatusCounts = {tid: {s: 0 for s in ExtractionStatus} for tid in ids}
        if not ids:
            return counts
        # Grouped server-side: one row per (transcript, status) pair.
        rows = self._fetch_all(
            lambda: self.client.rpc("transcript_chunk_status_counts", {"filter_transcript_ids": ids})
        )
        for row in rows:
            counts[str(row["transcript_id"])][ExtractionStatus(row["extraction_status"])] = int(
                row["chunk_count"]
            )
        return counts
