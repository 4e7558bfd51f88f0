"""Shared test data and store helpers: a controllable clock, a sample call, row builders."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from transcript_rag.ingestion.lexical import build_lexical_entry
from transcript_rag.ingestion.memory_store import InMemoryChunkStore
from transcript_rag.ingestion.models import (
    AnalysisStatus,
    ChunkRecord,
    ChunkSignals,
    Entity,
    ExtractionStatus,
    Transcript,
)
from transcript_rag.vocab import EntityType, QualificationTag, TopicTag

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


SAMPLE_TRANSCRIPT = """REP: Thanks for joining today. I wanted to walk through pricing.
BUYER: Sure. Our budget is around $250k for this year. We are also looking at Gong.
REP: Understood. Who signs off on the final decision?
BUYER: Dana, our CFO, signs anything above $100k. Legal review takes about two weeks.
REP: Great. I will send the proposal by Friday and set up a demo for the team.
"""

DEFAULT_SIGNALS = ChunkSignals(
    entities=(Entity(EntityType.COMPETITOR, "Gong", 1),),
    topics=frozenset({TopicTag.PRICING}),
    qualification_tags=frozenset({QualificationTag.ECONOMIC_BUYER}),
)


def add_transcript(
    store: InMemoryChunkStore,
    transcript_id: str,
    text: str = SAMPLE_TRANSCRIPT,
    **kwargs: object,
) -> Transcript:
    """Save a transcript whose analysis has finished, so it is eligible for indexing."""
    kwargs.setdefault("analysis_status", AnalysisStatus.COMPLETED)
    transcript = Transcript(id=transcript_id, raw_text=text, **kwargs)  # type: ignore[arg-type]
    store.save_transcript(transcript)
    return transcript


def add_completed_chunk(
    store: InMemoryChunkStore,
    transcript_id: str,
    chunk_index: int,
    content: str,
    embedding: list[float] | None = None,
    **kwargs: object,
) -> ChunkRecord:
    """Insert a chunk that has every derived signal, as the indexer would leave it."""
    return store.add_chunk(
        ChunkRecord(
            id=f"{transcript_id}-{chunk_index}",
            transcript_id=transcript_id,
            chunk_index=chunk_index,
            content=content,
            extraction_status=ExtractionStatus.COMPLETED,
            embedding=embedding if embedding is not None else [1.0, 0.0],
            lexical=build_lexical_entry(content),
            **kwargs,  # type: ignore[arg-type]
        )
    )
