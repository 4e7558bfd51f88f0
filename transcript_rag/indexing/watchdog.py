"""Reclaims index jobs and chunks whose claim was never resolved."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta

from transcript_rag.config import settings
from transcript_rag.indexing.status import COMPLETED, FAILED, PENDING, PROCESSING
from transcript_rag.ingestion.models import IndexJob
from transcript_rag.ingestion.storage import ChunkStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Reclaim:
    """One abandoned claim handed back to the queue."""

    kind: str  # "job" or "chunk"
    id: str
    transcript_id: str
    previous_status: str
    stuck_seconds: float


class Watchdog:
    """Resets stale ``processing`` claims to ``pending``.

    A reclaim is not a failure verdict: the attempt counter and derived
    content are left untouched, and nothing is ever marked successful.
    The threshold must be comfortably larger than the slowest job.
    """

    def __init__(self, store: ChunkStore, threshold: timedelta | None = None) -> None:
        self.store = store
        self.threshold = threshold or timedelta(seconds=settings.watchdog_threshold_seconds)

    def run(self, now: datetime | None = None) -> list[Reclaim]:
        """Reclaim every job and chunk stuck in ``processing`` longer than the threshold."""
        now = now or self.store.clock()
        cutoff = now - self.threshold
        reclaimed: list[Reclaim] = []

        for job in self.store.stale_jobs(cutoff):
            stuck = (now - job.updated_at).total_seconds() if job.updated_at else 0.0
            metadata = {
                **job.metadata,
                "previous_status": str(PROCESSING),
                "stuck_seconds": stuck,
                "reclaimed_at": now.isoformat(),
            }
            if self.store.update_job(
                job.transcript_id, PROCESSING, PENDING, {"metadata": metadata}, reclaim=True
            ):
                reclaimed.append(Reclaim("job", job.transcript_id, job.transcript_id, str(PROCESSING), stuck))

        for chunk in self.store.stale_chunks(cutoff):
            stuck = (now - chunk.updated_at).total_seconds() if chunk.updated_at else 0.0
            metadata = {
                **chunk.metadata,
                "previous_status": str(PROCESSING),
                "stuck_seconds": stuck,
                "reclaimed_at": now.isoformat(),
            }
            if self.store.update_chunk(chunk.id, PROCESSING, PENDING, {"metadata": metadata}, reclaim=True):
                reclaimed.append(Reclaim("chunk", chunk.id, chunk.transcript_id, str(PROCESSING), stuck))

        # A reclaimed chunk needs a pending job, or no worker will pick it up.
        for transcript_id in sorted({r.transcript_id for r in reclaimed if r.kind == "chunk"}):
            self._requeue_job(transcript_id, now)

        for item in reclaimed:
            logger.warning(
                "Reclaimed %s %s (transcript %s) stuck in processing for %.0fs",
                item.kind,
                item.id,
                item.transcript_id,
                item.stuck_seconds,
            )
        return reclaimed

    def _requeue_job(self, transcript_id: str, now: datetime) -> None:
        """Make sure a pending job exists for a transcript whose chunk was reclaimed.

        A pending or in-flight job is left alone; the worker holding it
        re-reads pending chunks before it finishes.
        """
        job = self.store.get_job(transcript_id)
        metadata = {"requeued_by": "watchdog", "requeued_at": now.isoformat()}
        if job is None or job.status == COMPLETED:
            self.store.put_job(IndexJob(transcript_id=transcript_id, metadata=metadata))
        elif job.status == FAILED:
            self.store.update_job(
                transcript_id,
                FAILED,
                PENDING,
                {"attempts": 0, "last_error": None, "metadata": {**job.metadata, **metadata}},
            )
        else:
            return
        logger.info("Requeued index job for transcript %s after chunk reclaim", transcript_id)

    def run_forever(self, stop: threading.Event, interval: float | None = None) -> None:
        """Run on a fixed schedule until *stop* is set, independent of the workers."""
        interval = settings.watchdog_interval_seconds if interval is None else interval
        while not stop.is_set():
            try:
                self.run()
            except Exception:
                logger.exception("Watchdog pass failed")
            stop.wait(interval)
