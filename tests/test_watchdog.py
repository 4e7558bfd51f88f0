"""Tests for reclaiming stale processing claims."""

from __future__ import annotations

from datetime import timedelta

from transcript_rag.indexing.status import COMPLETED, FAILED, PENDING, PROCESSING
from transcript_rag.indexing.watchdog import Watchdog
from transcript_rag.ingestion.memory_store import InMemoryChunkStore
from transcript_rag.ingestion.models import ChunkRecord, IndexJob

from helpers import FakeClock, add_completed_chunk

THRESHOLD = timedelta(minutes=15)
EPSILON = timedelta(seconds=1)


def _claimed_chunk(store: InMemoryChunkStore) -> ChunkRecord:
    return store.add_chunk(
        ChunkRecord(
            id="c1",
            transcript_id="t1",
            chunk_index=0,
            content="REP: Pricing starts at $50 per seat.",
            extraction_status=PROCESSING,
            metadata={"attempts": 2},
        )
    )


class TestWatchdog:
    def test_fresh_claim_left_alone(self, store: InMemoryChunkStore, clock: FakeClock) -> None:
        claimed = _claimed_chunk(store)
        watchdog = Watchdog(store, threshold=THRESHOLD)

        assert watchdog.run(now=claimed.updated_at + THRESHOLD - EPSILON) == []
        assert store.get_chunk("c1").extraction_status == PROCESSING

    def test_exact_threshold_not_reclaimed(self, store: InMemoryChunkStore) -> None:
        claimed = _claimed_chunk(store)
        assert Watchdog(store, threshold=THRESHOLD).run(now=claimed.updated_at + THRESHOLD) == []

    def test_stale_claim_reset_to_pending(self, store: InMemoryChunkStore, clock: FakeClock) -> None:
        claimed = _claimed_chunk(store)
        now = clock.advance(minutes=15, seconds=1)

        reclaimed = Watchdog(store, threshold=THRESHOLD).run(now=now)

        assert len(reclaimed) == 1
        assert reclaimed[0].kind == "chunk"
        assert reclaimed[0].previous_status == "processing"
        assert reclaimed[0].stuck_seconds == (now - claimed.updated_at).total_seconds()
        chunk = store.get_chunk("c1")
        assert chunk.extraction_status == PENDING
        assert chunk.metadata["previous_status"] == "processing"
        assert chunk.metadata["stuck_seconds"] == 901.0
        # A reclaim is not a failure: attempts are untouched.
        assert chunk.attempts == 2

    def test_completed_chunks_never_touched(self, store: InMemoryChunkStore, clock: FakeClock) -> None:
        add_completed_chunk(store, "t1", 0, "Budget is $250k.")
        now = clock.advance(hours=2)

        assert Watchdog(store, threshold=THRESHOLD).run(now=now) == []
        assert store.get_chunk("t1-0").extraction_status == COMPLETED

    def test_stale_job_reclaimed(self, store: InMemoryChunkStore, clock: FakeClock) -> None:
        store.put_job(IndexJob(transcript_id="t1", status=PROCESSING, attempts=1))
        now = clock.advance(minutes=20)

        reclaimed = Watchdog(store, threshold=THRESHOLD).run(now=now)

        assert [(r.kind, r.id) for r in reclaimed] == [("job", "t1")]
        job = store.get_job("t1")
        assert job.status == PENDING
        assert job.attempts == 1
        assert job.metadata["stuck_seconds"] == 1200.0

    def test_default_clock(self, store: InMemoryChunkStore, clock: FakeClock) -> None:
        _claimed_chunk(store)
        clock.advance(hours=1)
        assert len(Watchdog(store, threshold=THRESHOLD).run()) == 1


class TestJobRequeueAfterChunkReclaim:
    def test_failed_job_reset_to_pending(self, store: InMemoryChunkStore, clock: FakeClock) -> None:
        _claimed_chunk(store)
        store.put_job(IndexJob(transcript_id="t1", status=FAILED, attempts=2, last_error="1 skipped"))
        now = clock.advance(minutes=20)

        Watchdog(store, threshold=THRESHOLD).run(now=now)

        job = store.get_job("t1")
        assert job.status == PENDING
        assert job.attempts == 0
        assert job.last_error is None
        assert job.metadata["requeued_by"] == "watchdog"

    def test_missing_job_created(self, store: InMemoryChunkStore, clock: FakeClock) -> None:
        _claimed_chunk(store)
        now = clock.advance(minutes=20)

        Watchdog(store, threshold=THRESHOLD).run(now=now)

        assert store.get_job("t1").status == PENDING

    def test_completed_job_replaced(self, store: InMemoryChunkStore, clock: FakeClock) -> None:
        _claimed_chunk(store)
        store.put_job(IndexJob(transcript_id="t1", status=COMPLETED, attempts=1))
        now = clock.advance(minutes=20)

        Watchdog(store, threshold=THRESHOLD).run(now=now)

        assert store.get_job("t1").status == PENDING

    def test_in_flight_job_left_alone(self, store: InMemoryChunkStore, clock: FakeClock) -> None:
        _claimed_chunk(store)
        clock.advance(minutes=10)
        store.put_job(IndexJob(transcript_id="t1", status=PROCESSING, attempts=1))
        now = clock.advance(minutes=10)

        reclaimed = Watchdog(store, threshold=THRESHOLD).run(now=now)

        assert [r.kind for r in reclaimed] == ["chunk"]
        assert store.get_job("t1").status == PROCESSING

    def test_job_reclaim_alone_does_not_touch_chunks(self, store: InMemoryChunkStore, clock: FakeClock) -> None:
        store.put_job(IndexJob(transcript_id="t1", status=PROCESSING, attempts=1))
        now = clock.advance(minutes=20)

        Watchdog(store, threshold=THRESHOLD).run(now=now)

        assert store.get_job("t1").status == PENDING
        assert store.list_chunks("t1") == []
