"""Load plain-text call transcripts and queue them for indexing."""

import argparse
import sys
import uuid
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from transcript_rag.indexing.worker import enqueue
from transcript_rag.ingestion.models import AnalysisStatus, Transcript
from transcript_rag.ingestion.storage import SupabaseChunkStore


def load_transcripts(data_dir: str = "data/transcripts", max_files: int | None = None) -> None:
    """Insert each ``*.txt`` file as a transcript and enqueue an index job."""
    data_path = Path(data_dir)

    if not data_path.exists():
        print(f"Data directory {data_dir} not found.")
        return

    files = sorted(data_path.glob("*.txt"))
    if max_files:
        files = files[:max_files]

    print(f"Loading {len(files)} transcripts...")

    store = SupabaseChunkStore()
    loaded = 0
    errors = 0

    for i, filepath in enumerate(files):
        try:
            raw_text = filepath.read_text(encoding="utf-8")
            if not raw_text.strip():
                print(f"  [{i + 1}] SKIP {filepath.name} -- empty transcript")
                continue

            transcript_id = str(uuid.uuid5(uuid.NAMESPACE_URL, filepath.resolve().as_uri()))
            store.save_transcript(
                Transcript(
                    id=transcript_id,
                    raw_text=raw_text,
                    account_name=filepath.stem,
                    analysis_status=AnalysisStatus.COMPLETED,
                )
            )
            enqueue(store, transcript_id, rechunk=True)

            loaded += 1
            print(f"  [{i + 1}/{len(files)}] Queued {filepath.name} as {transcript_id}")

        except Exception as e:
            errors += 1
            print(f"  [{i + 1}] ERROR {filepath.name}: {e}")

    print(f"\nDone! Queued {loaded} transcripts, {errors} errors.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--dir", default="data/transcripts")
    parser.add_argument("--max", type=int, default=None)
    args = parser.parse_args()
    load_transcripts(args.dir, args.max)
