"""Shared dependencies for the API routes."""

from __future__ import annotations

from functools import lru_cache

from transcript_rag.ingestion.embeddings import Embedder
from transcript_rag.ingestion.storage import ChunkStore, SupabaseChunkStore


@lru_cache(maxsize=1)
def get_store() -> ChunkStore:
    return SupabaseChunkStore()


@lru_cache(maxsize=1)
def get_embedder() -> Embedder:
    return Embedder()
