"""Operator endpoints: indexing status readout, requeue, enqueue, backfill and watchdog."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query

from transcript_rag.api.deps import get_store
from transcript_rag.api.models import (
    BackfillResponse,
    EnqueueRequest,
    EnqueueResponse,
    IndexingStatusResponse,
    ReclaimOut,
    RequeueRequest,
    RequeueResponse,
    TranscriptStatusCounts,
    WatchdogResponse,
)
from transcript_rag.errors import TranscriptNotReady
from transcript_rag.indexing.indexer import requeue_failed, total_counts
from transcript_rag.indexing.watchdog import Watchdog
from transcript_rag.indexing.worker import backfill, enqueue
from transcript_rag.ingestion.storage import ChunkStore

router = APIRouter()


@router.get("/api/indexing/status", response_model=IndexingStatusResponse)
async def indexing_status(
    transcript_ids: Annotated[list[str], Query(min_length=1)],
    store: ChunkStore = Depends(get_store),
) -> IndexingStatusResponse:
    """Chunk counts by extraction_status, per transcript and in total."""
    counts = store.status_counts(transcript_ids)
    return IndexingStatusResponse(
        totals=total_counts(counts),
        transcripts=[
            TranscriptStatusCounts(transcript_id=tid, counts=per_status)
            for tid, per_status in counts.items()
        ],
    )


@router.post("/api/indexing/requeue", response_model=RequeueResponse)
async def requeue(request: RequeueRequest, store: ChunkStore = Depends(get_store)) -> RequeueResponse:
    """Administrative retry: move failed chunks (and failed jobs) back to pending.

    Resets the attempt counter of every requeued chunk.
    """
    if not request.transcript_ids and not request.chunk_ids:
        raise HTTPException(status_code=422, detail="Either transcript_ids or chunk_ids is required")

    chunk_ids = requeue_failed(store, request.transcript_ids, request.chunk_ids)
    return RequeueResponse(requeued=len(chunk_ids), chunk_ids=chunk_ids)


@router.post("/api/indexing/enqueue", response_model=EnqueueResponse)
async def enqueue_transcripts(
    request: EnqueueRequest,
    store: ChunkStore = Depends(get_store),
) -> EnqueueResponse:
    """Queue index jobs for the given transcripts."""
    queued: list[str] = []
    already: list[str] = []
    errors: list[str] = []
    for transcript_id in request.transcript_ids:
        try:
            job = enqueue(store, transcript_id, rechunk=request.rechunk)
        except (LookupError, TranscriptNotReady) as exc:
            errors.append(f"{transcript_id}: {exc}")
            continue
        if job is None:
            already.append(transcript_id)
        else:
            queued.append(transcript_id)
    return EnqueueResponse(queued=queued, already_queued=already, errors=errors)


@router.post("/api/indexing/backfill", response_model=BackfillResponse)
async def backfill_transcripts(store: ChunkStore = Depends(get_store)) -> BackfillResponse:
    """Queue every analysed transcript that has no chunks yet."""
    queued = backfill(store)
    return BackfillResponse(queued=queued)


@router.post("/api/indexing/watchdog", response_model=WatchdogResponse)
async def run_watchdog(store: ChunkStore = Depends(get_store)) -> WatchdogResponse:
    """Run one reclaim pass over stale processing claims."""
    reclaimed = Watchdog(store).run()
    return WatchdogResponse(
        reclaimed=[
            ReclaimOut(
                kind=r.kind,
                id=r.id,
                transcript_id=r.transcript_id,
                previous_status=r.previous_status,
                stuck_seconds=r.stuck_seconds,
            )
            for r in reclaimed
        ]
    )
