"""Retrieve endpoint: hybrid chunk retrieval for the chat assistant."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace

from fastapi import APIRouter, Depends, HTTPException

from transcript_rag.api.deps import get_embedder, get_store
from transcript_rag.api.models import EntityOut, RetrieveRequest, RetrieveResponse, ScoredChunkOut
from transcript_rag.config import settings
from transcript_rag.errors import InvalidQuery, ServiceError
from transcript_rag.ingestion.embeddings import Embedder
from transcript_rag.ingestion.storage import ChunkStore
from transcript_rag.pipeline_config import ScoringWeights
from transcript_rag.retrieval.models import EntityRef, RetrievalQuery, ScoredChunk
from transcript_rag.retrieval.retriever import Retriever, build_context

logger = logging.getLogger(__name__)

router = APIRouter()


def _weights(request: RetrieveRequest) -> ScoringWeights:
    defaults = ScoringWeights.from_settings()
    return ScoringWeights(
        vector=defaults.vector if request.weight_vector is None else request.weight_vector,
        fts=defaults.fts if request.weight_fts is None else request.weight_fts,
        entity=defaults.entity if request.weight_entity is None else request.weight_entity,
    )


def _to_out(result: ScoredChunk) -> ScoredChunkOut:
    chunk = result.chunk
    return ScoredChunkOut(
        chunk_id=chunk.id,
        transcript_id=chunk.transcript_id,
        chunk_index=chunk.chunk_index,
        content=chunk.content,
        topics=sorted(str(t) for t in chunk.topics),
        qualification_tags=sorted(str(t) for t in chunk.qualification_tags),
        entities=[
            EntityOut(type=e.type, value=e.value, mention_count=e.mention_count) for e in chunk.entities
        ],
        vector_score=result.vector_score,
        fts_score=result.fts_score,
        entity_score=result.entity_score,
        relevance_score=result.relevance_score,
        transcript_activity_at=result.transcript_activity_at,
    )


@router.post("/api/retrieve", response_model=RetrieveResponse)
async def retrieve(
    request: RetrieveRequest,
    store: ChunkStore = Depends(get_store),
    embedder: Embedder = Depends(get_embedder),
) -> RetrieveResponse:
    """Return the chunks that best ground an answer to ``request.query``.

    If no embedding is supplied the query text is embedded here; when that
    fails the vector signal is dropped (weight 0) rather than failing the
    request.  An empty result is a normal 200 with ``grounded=false``.
    """
    weights = _weights(request)
    embedding = request.query_embedding
    if embedding is None and request.query.strip():
        try:
            # Run the synchronous OpenAI SDK in a thread to keep the event loop free.
            embedding = await asyncio.to_thread(embedder.embed, request.query)
        except ServiceError as exc:
            logger.warning("Query embedding failed, retrieving without vectors: %s", exc)
    if embedding is None:
        weights = replace(weights, vector=0.0)

    query = RetrievalQuery(
        text=request.query,
        transcript_ids=frozenset(request.transcript_ids),
        embedding=embedding,
        topics=frozenset(request.topics),
        qualification_tags=frozenset(request.qualification_tags),
        entities=tuple(EntityRef(e.type, e.value) for e in request.entities),
        weights=weights,
        match_count=settings.match_count if request.match_count is None else request.match_count,
    )

    try:
        results = Retriever(store).retrieve(query)
    except InvalidQuery as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    return RetrieveResponse(
        results=[_to_out(r) for r in results],
        grounded=bool(results),
        context=build_context(results),
        vector_used=embedding is not None,
    )
