"""Worker pool consuming the durable per-transcript index job queue."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from transcript_rag.config import settings
from transcript_rag.errors import TranscriptNotReady
from transcript_rag.indexing.indexer import Indexer, TranscriptIndexResult
from transcript_rag.indexing.status import COMPLETED, FAILED, PENDING, PROCESSING
from transcript_rag.ingestion.models import INDEXABLE_ANALYSIS_STATUSES, IndexJob
from transcript_rag.ingestion.storage import ChunkStore

logger = logging.getLogger(__name__)


def enqueue(store: ChunkStore, transcript_id: str, *, rechunk: bool = False) -> IndexJob | None:
    """Queue an indexing job for a transcript.

    A missing or completed job is (re)created as ``pending``; a failed job is
    requeued; a pending or in-flight job is left alone.

    Args:
        store: Chunk store holding the queue.
        transcript_id: Transcript to index.
        rechunk: Re-split the transcript text before indexing.

    Returns:
        The job as queued, or ``None`` when one was already pending/in flight.

    Raises:
        LookupError: The transcript does not exist or is soft-deleted.
        TranscriptNotReady: Its analysis is still running, so the text may be partial.
    """
    transcript = store.get_transcript(transcript_id)
    if transcript is None or transcript.is_deleted:
        raise LookupError(f"Transcript {transcript_id} not found")
    if transcript.analysis_status not in INDEXABLE_ANALYSIS_STATUSES:
        raise TranscriptNotReady(transcript_id, str(transcript.analysis_status))

    job = store.get_job(transcript_id)
    if job is not None and job.status in (PENDING, PROCESSING):
        logger.info("Transcript %s already queued (%s)", transcript_id, job.status)
        return None
    if job is not None and job.status == FAILED:
        metadata = {**job.metadata, "rechunk": rechunk}
        if store.update_job(transcript_id, FAILED, PENDING, {"attempts": 0, "metadata": metadata}):
            return store.get_job(transcript_id)
        return None
    return store.put_job(IndexJob(transcript_id=transcript_id, metadata={"rechunk": rechunk}))


def backfill(store: ChunkStore) -> list[str]:
    """Queue every live, analysed transcript that has never been chunked.

    Returns:
        Ids of the transcripts that got a new pending job.
    """
    candidates = store.unindexed_transcripts(INDEXABLE_ANALYSIS_STATUSES)
    queued: list[str] = []
    for transcript_id in candidates:
        try:
            job = enqueue(store, transcript_id, rechunk=True)
        except (LookupError, TranscriptNotReady) as exc:
            # Deleted or re-opened since the scan.
            logger.info("Skipping backfill of %s: %s", transcript_id, exc)
            continue
        if job is not None:
            queued.append(transcript_id)
    logger.info("Backfill: %d unindexed transcript(s), %d queued", len(candidates), len(queued))
    return queued


@dataclass
class PoolRunSummary:
    """What one :meth:`IndexWorkerPool.run_once` pass did."""

    claimed: int = 0
    completed: int = 0
    failed: int = 0


class IndexWorkerPool:
    """Processes queued transcripts in parallel, never two workers on one transcript.

    Mutual exclusion comes solely from the job claim: a worker proceeds only
    if its ``pending -> processing`` update is the one that lands.
    """

    def __init__(self, store: ChunkStore, indexer: Indexer, max_workers: int | None = None) -> None:
        self.store = store
        self.indexer = indexer
        self.max_workers = max_workers or settings.index_workers

    def _run_job(self, job: IndexJob) -> TranscriptIndexResult | None:
        claimed = self.store.update_job(
            job.transcript_id,
            PENDING,
            PROCESSING,
            {"attempts": job.attempts + 1},
        )
        if not claimed:
            logger.debug("Job for transcript %s claimed elsewhere", job.transcript_id)
            return None

        try:
            if job.metadata.get("rechunk"):
                self.indexer.prepare_transcript(job.transcript_id)
            result = self.indexer.index_transcript(job.transcript_id)
        except LookupError as exc:
            self.store.update_job(job.transcript_id, PROCESSING, FAILED, {"last_error": str(exc)})
            logger.warning("Dropping job for transcript %s: %s", job.transcript_id, exc)
            return TranscriptIndexResult(job.transcript_id, failed=1)
        except Exception as exc:
            logger.exception("Indexing job for transcript %s crashed", job.transcript_id)
            self.store.update_job(job.transcript_id, PROCESSING, FAILED, {"last_error": str(exc)})
            raise

        if result.succeeded:
            self.store.update_job(job.transcript_id, PROCESSING, COMPLETED, {"last_error": None})
        else:
            error = (
                f"{result.failed} failed, {result.skipped} skipped "
                f"of {result.total_chunks} chunk(s)"
            )
            self.store.update_job(job.transcript_id, PROCESSING, FAILED, {"last_error": error})
        return result

    def run_once(self, limit: int | None = None) -> PoolRunSummary:
        """Claim and process up to *limit* pending jobs, in parallel across transcripts."""
        jobs = self.store.list_jobs(PENDING, limit=limit)
        summary = PoolRunSummary()
        if not jobs:
            return summary

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="index-worker") as pool:
            futures = [pool.submit(self._run_job, job) for job in jobs]
            for future in futures:
                try:
                    result = future.result()
                except Exception:
                    summary.claimed += 1
                    summary.failed += 1
                    continue
                if result is None:
                    continue
                summary.claimed += 1
                if result.succeeded:
                    summary.completed += 1
                else:
                    summary.failed += 1

        logger.info(
            "Worker pass: %d claimed, %d completed, %d failed",
            summary.claimed,
            summary.completed,
            summary.failed,
        )
        return summary

    def run_forever(self, stop: threading.Event, poll_interval: float | None = None) -> None:
        """Poll the queue until *stop* is set."""
        interval = settings.worker_poll_seconds if poll_interval is None else poll_interval
        while not stop.is_set():
            summary = self.run_once(limit=self.max_workers * 4)
            if summary.claimed == 0:
                stop.wait(interval)
