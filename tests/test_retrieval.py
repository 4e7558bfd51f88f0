"""Tests for hybrid scoring and the Retriever."""

from __future__ import annotations

import pytest

from transcript_rag.errors import InvalidQuery
from transcript_rag.ingestion.memory_store import InMemoryChunkStore, cosine_similarity
from transcript_rag.ingestion.models import ChunkRecord, Entity, ExtractionStatus
from transcript_rag.pipeline_config import ScoringWeights
from transcript_rag.retrieval.models import Candidate, EntityRef, RetrievalQuery, ScoredChunk
from transcript_rag.retrieval.retriever import NO_GROUNDING, Retriever, build_context
from transcript_rag.retrieval.scoring import (
    entity_score,
    fts_scores,
    mention_weight,
    relevance,
    score_candidates,
    sort_key,
    vector_score,
)
from transcript_rag.vocab import EntityType, QualificationTag, TopicTag

from helpers import FakeClock, add_completed_chunk, add_transcript

VECTOR_ONLY = ScoringWeights(vector=1.0, fts=0.0, entity=0.0)
NO_WEIGHTS = ScoringWeights(vector=0.0, fts=0.0, entity=0.0)


def _chunk(chunk_id: str, transcript_id: str = "a", chunk_index: int = 0, **kwargs) -> ChunkRecord:
    return ChunkRecord(
        id=chunk_id,
        transcript_id=transcript_id,
        chunk_index=chunk_index,
        content="text",
        extraction_status=ExtractionStatus.COMPLETED,
        **kwargs,
    )


def _query(*transcript_ids: str, **kwargs) -> RetrievalQuery:
    kwargs.setdefault("embedding", [1.0, 0.0])
    return RetrievalQuery(text=kwargs.pop("text", ""), transcript_ids=frozenset(transcript_ids), **kwargs)


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


class TestSignals:
    def test_vector_score_rescales(self) -> None:
        assert vector_score(1.0) == 1.0
        assert vector_score(-1.0) == 0.0
        assert vector_score(0.0) == 0.5
        assert vector_score(None) == 0.0

    def test_fts_anchored_to_best_match(self) -> None:
        assert fts_scores([2.0, 1.0, 0.0]) == [1.0, 0.5, 0.0]
        assert fts_scores([0.0, 0.0]) == [0.0, 0.0]
        assert fts_scores([]) == []

    def test_mention_weight_saturates(self) -> None:
        assert mention_weight(0) == 0.0
        assert 0.0 < mention_weight(1) < mention_weight(2) < 1.0
        assert mention_weight(3) == pytest.approx(1.0)
        assert mention_weight(50) == 1.0

    def test_entity_score(self) -> None:
        entities = [Entity(EntityType.COMPETITOR, "Gong", 3), Entity(EntityType.PERSON, "Dana", 1)]
        requested = [EntityRef(EntityType.COMPETITOR, "gong"), EntityRef(EntityType.PRODUCT, "Clari")]
        assert entity_score(requested, entities) == pytest.approx(0.5)
        assert entity_score([], entities) == 0.0

    def test_relevance_example(self) -> None:
        """C1 (0.9, 0.1) and C2 (0.2, 0.9) with weights (1, 1, 0): C2 ranks first."""
        weights = ScoringWeights(vector=1.0, fts=1.0, entity=0.0)
        c1 = relevance(weights, 0.9, 0.1, 0.0)
        c2 = relevance(weights, 0.2, 0.9, 0.0)
        assert c1 == pytest.approx(1.0)
        assert c2 == pytest.approx(1.1)

        ranked = sorted(
            [
                ScoredChunk(_chunk("c1"), 0.9, 0.1, 0.0, c1),
                ScoredChunk(_chunk("c2", chunk_index=1), 0.2, 0.9, 0.0, c2),
            ],
            key=sort_key,
        )
        assert [r.chunk.id for r in ranked] == ["c2", "c1"]


class TestScoreCandidates:
    def test_vector_only_orders_by_vector_score(self) -> None:
        candidates = [
            Candidate(_chunk("low", chunk_index=0), similarity=-0.5, lexical_rank=9.0),
            Candidate(_chunk("high", chunk_index=1), similarity=0.9, lexical_rank=0.0),
            Candidate(_chunk("mid", chunk_index=2), similarity=0.1, lexical_rank=3.0),
        ]
        ranked = score_candidates(candidates, VECTOR_ONLY)
        assert [r.chunk.id for r in ranked] == ["high", "mid", "low"]
        scores = [r.vector_score for r in ranked]
        assert scores == sorted(scores, reverse=True)

    def test_zero_weights_tie_break(self, clock: FakeClock) -> None:
        old, new = clock(), clock.advance(days=1)
        candidates = [
            Candidate(_chunk("a1", "a", 1), similarity=0.9, transcript_activity_at=old),
            Candidate(_chunk("a0", "a", 0), similarity=0.1, transcript_activity_at=old),
            Candidate(_chunk("b3", "b", 3), similarity=0.5, transcript_activity_at=new),
            Candidate(_chunk("z0", "z", 0), similarity=0.5, transcript_activity_at=None),
        ]
        ranked = score_candidates(candidates, NO_WEIGHTS)
        assert all(r.relevance_score == 0.0 for r in ranked)
        assert [r.chunk.id for r in ranked] == ["b3", "a0", "a1", "z0"]

    def test_no_query_embedding(self) -> None:
        ranked = score_candidates([Candidate(_chunk("c"), similarity=0.9)], VECTOR_ONLY, use_vector=False)
        assert ranked[0].vector_score == 0.0

    def test_deterministic(self) -> None:
        candidates = [Candidate(_chunk(f"c{i}", chunk_index=i), similarity=0.3, lexical_rank=1.0) for i in range(5)]
        first = [r.chunk.id for r in score_candidates(candidates, ScoringWeights())]
        second = [r.chunk.id for r in score_candidates(list(reversed(candidates)), ScoringWeights())]
        assert first == second == ["c0", "c1", "c2", "c3", "c4"]


def test_cosine_similarity() -> None:
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)
    assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0
    with pytest.raises(ValueError):
        cosine_similarity([1.0], [1.0, 0.0])


# ---------------------------------------------------------------------------
# Retriever
# ---------------------------------------------------------------------------


@pytest.fixture
def populated(store: InMemoryChunkStore, clock: FakeClock) -> InMemoryChunkStore:
    add_transcript(store, "a")
    add_completed_chunk(
        store,
        "a",
        0,
        "Our budget is $250k and pricing needs to land below that.",
        embedding=[1.0, 0.0],
        topics=frozenset({TopicTag.PRICING, TopicTag.BUDGET}),
        qualification_tags=frozenset({QualificationTag.METRICS}),
        entities=(Entity(EntityType.MONEY, "$250k", 1),),
    )
    add_completed_chunk(
        store,
        "a",
        1,
        "We are also evaluating Gong. Gong has a demo next week.",
        embedding=[0.0, 1.0],
        topics=frozenset({TopicTag.COMPETITOR_DISCUSSION, TopicTag.DEMO}),
        qualification_tags=frozenset({QualificationTag.COMPETITION}),
        entities=(Entity(EntityType.COMPETITOR, "Gong", 2),),
    )
    clock.advance(hours=1)
    add_transcript(store, "b")
    add_completed_chunk(
        store,
        "b",
        0,
        "Dana signs off on pricing above $100k.",
        embedding=[0.6, 0.8],
        topics=frozenset({TopicTag.PRICING, TopicTag.DECISION_PROCESS}),
        qualification_tags=frozenset({QualificationTag.ECONOMIC_BUYER}),
        entities=(Entity(EntityType.PERSON, "Dana", 1),),
    )
    return store


class TestRetriever:
    def test_scope_filtering(self, populated: InMemoryChunkStore) -> None:
        results = Retriever(populated).retrieve(_query("a", text="pricing"))
        assert results
        assert {r.transcript_id for r in results} == {"a"}

    def test_vector_weight_only(self, populated: InMemoryChunkStore) -> None:
        results = Retriever(populated).retrieve(_query("a", "b", weights=VECTOR_ONLY))
        assert [r.chunk.id for r in results] == ["a-0", "b-0", "a-1"]

    def test_lexical_match(self, populated: InMemoryChunkStore) -> None:
        weights = ScoringWeights(vector=0.0, fts=1.0, entity=0.0)
        results = Retriever(populated).retrieve(_query("a", "b", text="Gong demo", weights=weights))
        assert results[0].chunk.id == "a-1"
        assert results[0].fts_score == 1.0

    def test_all_zero_weights_uses_tie_break(self, populated: InMemoryChunkStore) -> None:
        results = Retriever(populated).retrieve(_query("a", "b", weights=NO_WEIGHTS))
        assert [r.relevance_score for r in results] == [0.0, 0.0, 0.0]
        # b has the more recent activity, then a in chunk order.
        assert [r.chunk.id for r in results] == ["b-0", "a-0", "a-1"]

    def test_entity_boost(self, populated: InMemoryChunkStore) -> None:
        weights = ScoringWeights(vector=0.0, fts=0.0, entity=1.0)
        query = _query("a", "b", weights=weights, entities=(EntityRef(EntityType.COMPETITOR, "GONG"),))
        results = Retriever(populated).retrieve(query)
        assert results[0].chunk.id == "a-1"
        assert results[0].entity_score == pytest.approx(mention_weight(2))

    def test_topic_filter_is_inclusion(self, populated: InMemoryChunkStore) -> None:
        results = Retriever(populated).retrieve(_query("a", "b", topics=frozenset({TopicTag.PRICING})))
        assert {r.chunk.id for r in results} == {"a-0", "b-0"}

    def test_qualification_filter(self, populated: InMemoryChunkStore) -> None:
        query = _query("a", "b", qualification_tags=frozenset({QualificationTag.COMPETITION}))
        assert [r.chunk.id for r in Retriever(populated).retrieve(query)] == ["a-1"]

    def test_filters_exclude_everything(self, populated: InMemoryChunkStore) -> None:
        query = _query("a", topics=frozenset({TopicTag.CLOSING}))
        assert Retriever(populated).retrieve(query) == []

    def test_match_count(self, populated: InMemoryChunkStore) -> None:
        results = Retriever(populated).retrieve(_query("a", "b", match_count=2))
        assert len(results) == 2

    def test_incomplete_chunks_never_returned(self, populated: InMemoryChunkStore) -> None:
        for i, status in enumerate(
            [ExtractionStatus.PENDING, ExtractionStatus.PROCESSING, ExtractionStatus.FAILED], start=2
        ):
            populated.add_chunk(
                ChunkRecord(
                    id=f"a-{i}",
                    transcript_id="a",
                    chunk_index=i,
                    content="pricing pricing pricing",
                    extraction_status=status,
                    embedding=[1.0, 0.0],
                )
            )
        results = Retriever(populated).retrieve(_query("a", text="pricing", match_count=50))
        assert {r.chunk.id for r in results} == {"a-0", "a-1"}

    def test_deleted_transcript_excluded(self, populated: InMemoryChunkStore, clock: FakeClock) -> None:
        transcript = populated.get_transcript("b")
        transcript.deleted_at = clock()
        populated.save_transcript(transcript)
        results = Retriever(populated).retrieve(_query("a", "b"))
        assert "b" not in {r.transcript_id for r in results}

    def test_unknown_transcript_is_empty_scope(self, populated: InMemoryChunkStore) -> None:
        assert Retriever(populated).retrieve(_query("nope")) == []

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"match_count": 0},
            {"match_count": -3},
            {"weights": ScoringWeights(vector=-0.1)},
        ],
    )
    def test_invalid_query(self, populated: InMemoryChunkStore, kwargs: dict) -> None:
        with pytest.raises(InvalidQuery):
            Retriever(populated).retrieve(_query("a", **kwargs))

    def test_empty_scope_is_invalid(self, populated: InMemoryChunkStore) -> None:
        with pytest.raises(InvalidQuery):
            Retriever(populated).retrieve(_query())


class TestBuildContext:
    def test_no_results(self) -> None:
        assert build_context([]) == NO_GROUNDING

    def test_formats_sources(self, populated: InMemoryChunkStore) -> None:
        results = Retriever(populated).retrieve(_query("a", "b"))
        context = build_context(results)
        assert context.startswith("[Source 1]")
        assert "Dana signs off" in context

    def test_respects_budget(self, populated: InMemoryChunkStore) -> None:
        results = Retriever(populated).retrieve(_query("a", "b"))
        context = build_context(results, max_chars=10)
        assert context.count("[Source") == 1
