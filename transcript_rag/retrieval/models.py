"""Data models for retrieval queries and scored results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from transcript_rag.ingestion.models import ChunkRecord
from transcript_rag.pipeline_config import ScoringWeights
from transcript_rag.vocab import EntityType, QualificationTag, TopicTag


@dataclass(frozen=True)
class EntityRef:
    """An entity requested by a query (type + value, case-insensitive)."""

    type: EntityType
    value: str

    def key(self) -> tuple[str, str]:
        return (str(self.type), self.value.strip().casefold())


@dataclass
class RetrievalQuery:
    """A retrieval request from the chat assistant.

    ``transcript_ids`` must be non-empty and ``match_count`` positive.  Tag
    filters are inclusion tests: a chunk passes when it shares at least one
    tag with the filter.  ``entities`` only affects scoring.
    """

    text: str
    transcript_ids: frozenset[str]
    embedding: list[float] | None = None
    topics: frozenset[TopicTag] = frozenset()
    qualification_tags: frozenset[QualificationTag] = frozenset()
    entities: tuple[EntityRef, ...] = ()
    weights: ScoringWeights = field(default_factory=ScoringWeights.from_settings)
    match_count: int = 8


@dataclass
class Candidate:
    """A chunk in scope plus the raw signals the storage layer computed for it.

    ``similarity`` is the raw cosine similarity in [-1, 1] (``None`` without a
    query embedding); ``lexical_rank`` is the raw, unbounded lexical rank.
    """

    chunk: ChunkRecord
    similarity: float | None = None
    lexical_rank: float = 0.0
    transcript_activity_at: datetime | None = None


@dataclass
class ScoredChunk:
    """A retrieval result."""

    chunk: ChunkRecord
    vector_score: float
    fts_score: float
    entity_score: float
    relevance_score: float
    transcript_activity_at: datetime | None = None

    @property
    def transcript_id(self) -> str:
        return self.chunk.transcript_id

    @property
    def chunk_index(self) -> int:
        return self.chunk.chunk_index
