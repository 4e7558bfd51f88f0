"""Hybrid relevance scoring: vector, lexical and entity signals."""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from datetime import datetime

from transcript_rag.ingestion.models import Entity
from transcript_rag.pipeline_config import ScoringWeights
from transcript_rag.retrieval.models import Candidate, EntityRef, ScoredChunk

# Mention count at which an entity's contribution saturates to 1.0
ENTITY_SATURATION = 3


def vector_score(similarity: float | None) -> float:
    """Rescale cosine similarity from [-1, 1] to [0, 1]; 0 without a query embedding."""
    if similarity is None:
        return 0.0
    return (max(-1.0, min(1.0, similarity)) + 1.0) / 2.0


def fts_scores(ranks: Sequence[float]) -> list[float]:
    """Normalise lexical ranks against the best rank in the candidate set."""
    best = max(ranks, default=0.0)
    if best <= 0:
        return [0.0] * len(ranks)
    return [max(0.0, r) / best for r in ranks]


def mention_weight(mentions: int) -> float:
    """Contribution of one matched entity, growing with mentions but capped at 1."""
    if mentions <= 0:
        return 0.0
    return min(1.0, math.log1p(mentions) / math.log1p(ENTITY_SATURATION))


def entity_score(requested: Sequence[EntityRef], entities: Iterable[Entity]) -> float:
    """Mean mention-weighted coverage of the requested entities; 0 without any."""
    if not requested:
        return 0.0
    mentions: dict[tuple[str, str], int] = {}
    for entity in entities:
        mentions[entity.key()] = mentions.get(entity.key(), 0) + entity.mention_count
    wanted = {ref.key() for ref in requested}
    return sum(mention_weight(mentions.get(key, 0)) for key in wanted) / len(wanted)


def relevance(weights: ScoringWeights, vector: float, fts: float, entity: float) -> float:
    return weights.vector * vector + weights.fts * fts + weights.entity * entity


def _activity_key(value: datetime | None) -> float:
    # Negated so that more recent activity sorts first; no activity sorts last.
    return -value.timestamp() if value is not None else math.inf


def sort_key(scored: ScoredChunk) -> tuple[float, float, int, str, str]:
    """Total order: relevance desc, transcript activity desc, chunk_index asc, then ids."""
    return (
        -scored.relevance_score,
        _activity_key(scored.transcript_activity_at),
        scored.chunk.chunk_index,
        scored.chunk.transcript_id,
        scored.chunk.id,
    )


def score_candidates(
    candidates: Sequence[Candidate],
    weights: ScoringWeights,
    requested_entities: Sequence[EntityRef] = (),
    use_vector: bool = True,
) -> list[ScoredChunk]:
    """Score and rank candidates; the result is fully ordered."""
    lexical = fts_scores([c.lexical_rank for c in candidates])
    scored: list[ScoredChunk] = []
    for candidate, fts in zip(candidates, lexical, strict=True):
        v = vector_score(candidate.similarity) if use_vector else 0.0
        e = entity_score(requested_entities, candidate.chunk.entities)
        scored.append(
            ScoredChunk(
                chunk=candidate.chunk,
                vector_score=v,
                fts_score=fts,
                entity_score=e,
                relevance_score=relevance(weights, v, fts, e),
                transcript_activity_at=candidate.transcript_activity_at,
            )
        )
    scored.sort(key=sort_key)
    return scored
