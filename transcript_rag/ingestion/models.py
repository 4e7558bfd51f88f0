"""Data models for transcripts, chunks and indexing jobs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from transcript_rag.vocab import EntityType, QualificationTag, TopicTag


class AnalysisStatus(StrEnum):
    """Transcript-level analysis pipeline status (owned by the analysis pipeline)."""

    PENDING = "pending"
    TRANSCRIBING = "transcribing"
    TRANSCRIBED = "transcribed"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"
    SKIPPED = "skipped"


# Analysis has settled; the transcript text is final and may be indexed.
INDEXABLE_ANALYSIS_STATUSES = frozenset({AnalysisStatus.COMPLETED, AnalysisStatus.SKIPPED})


class ExtractionStatus(StrEnum):
    """Indexing status of a chunk (and of a transcript's index job)."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Transcript:
    """A call transcript as seen by the retrieval engine."""

    id: str
    raw_text: str
    rep_id: str | None = None
    team_id: str | None = None
    account_name: str | None = None
    call_date: str | None = None
    analysis_status: AnalysisStatus = AnalysisStatus.PENDING
    deleted_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


@dataclass(frozen=True)
class Entity:
    """A named entity mentioned in a chunk."""

    type: EntityType
    value: str
    mention_count: int = 1

    def key(self) -> tuple[str, str]:
        return (str(self.type), self.value.strip().casefold())


@dataclass(frozen=True)
class ChunkSignals:
    """Structured signals the Extractor derives from one chunk."""

    entities: tuple[Entity, ...] = ()
    topics: frozenset[TopicTag] = frozenset()
    qualification_tags: frozenset[QualificationTag] = frozenset()


@dataclass(frozen=True)
class LexicalEntry:
    """Lexical index entry: normalised term frequencies of a chunk."""

    terms: dict[str, int] = field(default_factory=dict)

    @property
    def length(self) -> int:
        return sum(self.terms.values())


@dataclass(frozen=True)
class TextChunk:
    """A chunk produced by the Chunker, before persistence."""

    chunk_index: int
    content: str
    start_char: int
    end_char: int


@dataclass
class ChunkRecord:
    """A persisted chunk row."""

    id: str
    transcript_id: str
    chunk_index: int
    content: str
    extraction_status: ExtractionStatus = ExtractionStatus.PENDING
    embedding: list[float] | None = None
    lexical: LexicalEntry | None = None
    entities: tuple[Entity, ...] = ()
    topics: frozenset[TopicTag] = frozenset()
    qualification_tags: frozenset[QualificationTag] = frozenset()
    metadata: dict[str, Any] = field(default_factory=dict)
    updated_at: datetime | None = None

    @property
    def attempts(self) -> int:
        return int(self.metadata.get("attempts", 0))


@dataclass
class IndexJob:
    """Durable work-queue entry: one indexing job per transcript."""

    transcript_id: str
    status: ExtractionStatus = ExtractionStatus.PENDING
    attempts: int = 0
    last_error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    updated_at: datetime | None = None
