"""Run the index worker pool and the watchdog until interrupted."""

import argparse
import logging
import sys
import threading
from datetime import timedelta
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from transcript_rag.config import settings
from transcript_rag.indexing.indexer import Indexer
from transcript_rag.indexing.watchdog import Watchdog
from transcript_rag.indexing.worker import IndexWorkerPool, backfill
from transcript_rag.ingestion.storage import SupabaseChunkStore


def run(workers: int, threshold_seconds: float, once: bool, backfill_first: bool) -> None:
    store = SupabaseChunkStore()
    if backfill_first:
        queued = backfill(store)
        print(f"Backfill queued {len(queued)} transcript(s)")
    pool = IndexWorkerPool(store, Indexer(store), max_workers=workers)
    watchdog = Watchdog(store, threshold=timedelta(seconds=threshold_seconds))

    if once:
        reclaimed = watchdog.run()
        summary = pool.run_once()
        print(
            f"Reclaimed {len(reclaimed)}; claimed {summary.claimed}, "
            f"completed {summary.completed}, failed {summary.failed}"
        )
        return

    stop = threading.Event()
    watchdog_thread = threading.Thread(target=watchdog.run_forever, args=(stop,), name="watchdog", daemon=True)
    watchdog_thread.start()
    print(f"Indexing with {workers} worker(s); watchdog threshold {threshold_seconds:.0f}s. Ctrl-C to stop.")
    try:
        pool.run_forever(stop)
    except KeyboardInterrupt:
        print("\nStopping...")
    finally:
        stop.set()
        watchdog_thread.join(timeout=5)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    parser = argparse.ArgumentParser()
    parser.add_argument("--workers", type=int, default=settings.index_workers)
    parser.add_argument("--threshold", type=float, default=settings.watchdog_threshold_seconds)
    parser.add_argument("--once", action="store_true", help="Run one watchdog + worker pass and exit")
    parser.add_argument("--backfill", action="store_true", help="First queue analysed transcripts that have no chunks")
    args = parser.parse_args()
    run(args.workers, args.threshold, args.once, args.backfill)
