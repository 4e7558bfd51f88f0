"""Hybrid chunk retrieval scoped to an explicit set of transcripts."""

from __future__ import annotations

import logging

from transcript_rag.errors import InvalidQuery
from transcript_rag.ingestion.models import ExtractionStatus
from transcript_rag.ingestion.storage import ChunkStore
from transcript_rag.retrieval.models import Candidate, RetrievalQuery, ScoredChunk
from transcript_rag.retrieval.scoring import score_candidates
from transcript_rag.vocab import intersects

logger = logging.getLogger(__name__)

NO_GROUNDING = "No grounding found in the selected transcripts."


def validate_query(query: RetrievalQuery) -> None:
    """Reject contract violations; never coerce them.

    Raises:
        InvalidQuery: Empty transcript scope, non-positive match_count or a
            negative weight.
    """
    if not query.transcript_ids:
        raise InvalidQuery("transcript_ids must contain at least one transcript id")
    if query.match_count <= 0:
        raise InvalidQuery(f"match_count must be positive, got {query.match_count}")
    if not query.weights.is_valid():
        raise InvalidQuery(f"weights must be non-negative, got {query.weights}")


def _in_scope(candidate: Candidate, query: RetrievalQuery) -> bool:
    chunk = candidate.chunk
    return (
        chunk.transcript_id in query.transcript_ids
        and chunk.extraction_status == ExtractionStatus.COMPLETED
        and intersects(chunk.topics, query.topics)
        and intersects(chunk.qualification_tags, query.qualification_tags)
    )


class Retriever:
    """Ranks completed chunks of the requested transcripts against a query.

    Read-only and stateless: safe to call concurrently with other queries
    and with indexing.
    """

    def __init__(self, store: ChunkStore) -> None:
        self.store = store

    def retrieve(self, query: RetrievalQuery) -> list[ScoredChunk]:
        """Return up to ``query.match_count`` chunks ranked by relevance.

        An empty scope is a normal outcome and returns ``[]``.

        Raises:
            InvalidQuery: The query violates its contract.
        """
        validate_query(query)

        candidates = [c for c in self.store.fetch_candidates(query) if _in_scope(c, query)]
        if not candidates:
            logger.info("No completed chunks in scope for %d transcript(s)", len(query.transcript_ids))
            return []

        ranked = score_candidates(
            candidates,
            query.weights,
            requested_entities=query.entities,
            use_vector=query.embedding is not None,
        )
        return ranked[: query.match_count]


def build_context(results: list[ScoredChunk], max_chars: int = 12000) -> str:
    """Format retrieved chunks as grounding context for the chat assistant.

    Returns :data:`NO_GROUNDING` when there is nothing to ground on, so the
    assistant can answer ungrounded instead of failing the conversation.
    """
    if not results:
        return NO_GROUNDING

    parts: list[str] = []
    used = 0
    for i, result in enumerate(results, 1):
        header = (
            f"[Source {i}] transcript={result.transcript_id} chunk={result.chunk_index} "
            f"relevance={result.relevance_score:.3f}"
        )
        block = f"{header}\n{result.chunk.content}"
        if parts and used + len(block) > max_chars:
            break
        parts.append(block)
        used += len(block)
    return "\n\n---\n\n".join(parts)
