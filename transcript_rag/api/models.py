"""Pydantic request/response schemas for the retrieval API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from transcript_rag.ingestion.models import ExtractionStatus
from transcript_rag.vocab import EntityType, QualificationTag, TopicTag


class EntityFilter(BaseModel):
    """An entity the caller wants chunks to mention."""

    type: EntityType
    value: str


class RetrieveRequest(BaseModel):
    """Request body for the /api/retrieve endpoint."""

    query: str = ""
    transcript_ids: list[str]
    query_embedding: list[float] | None = None
    topics: list[TopicTag] = []
    qualification_tags: list[QualificationTag] = []
    entities: list[EntityFilter] = []
    weight_vector: float | None = None
    weight_fts: float | None = None
    weight_entity: float | None = None
    match_count: int | None = None


class EntityOut(BaseModel):
    type: EntityType
    value: str
    mention_count: int


class ScoredChunkOut(BaseModel):
    """A single retrieved chunk with its scores."""

    chunk_id: str
    transcript_id: str
    chunk_index: int
    content: str
    topics: list[str] = []
    qualification_tags: list[str] = []
    entities: list[EntityOut] = []
    vector_score: float
    fts_score: float
    entity_score: float
    relevance_score: float
    transcript_activity_at: datetime | None = None


class RetrieveResponse(BaseModel):
    """Response body for the /api/retrieve endpoint."""

    results: list[ScoredChunkOut]
    grounded: bool
    context: str
    vector_used: bool = True


class TranscriptStatusCounts(BaseModel):
    transcript_id: str
    counts: dict[ExtractionStatus, int]


class IndexingStatusResponse(BaseModel):
    """Operator readout of chunk counts by extraction_status."""

    totals: dict[ExtractionStatus, int]
    transcripts: list[TranscriptStatusCounts]


class RequeueRequest(BaseModel):
    transcript_ids: list[str] | None = None
    chunk_ids: list[str] | None = None


class RequeueResponse(BaseModel):
    requeued: int
    chunk_ids: list[str]


class EnqueueRequest(BaseModel):
    transcript_ids: list[str] = Field(min_length=1, max_length=100)
    rechunk: bool = False


class EnqueueResponse(BaseModel):
    queued: list[str]
    already_queued: list[str]
    errors: list[str]


class ReclaimOut(BaseModel):
    kind: str
    id: str
    transcript_id: str
    previous_status: str
    stuck_seconds: float


class WatchdogResponse(BaseModel):
    reclaimed: list[ReclaimOut]


class BackfillResponse(BaseModel):
    queued: list[str]
