"""Shared fixtures: an in-memory store on a fake clock and mocked model clients."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from transcript_rag.indexing.indexer import Indexer
from transcript_rag.ingestion.memory_store import InMemoryChunkStore

from helpers import DEFAULT_SIGNALS, FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryChunkStore:
    return InMemoryChunkStore(clock=clock)


@pytest.fixture
def extractor() -> MagicMock:
    mock = MagicMock()
    mock.extract.return_value = DEFAULT_SIGNALS
    return mock


@pytest.fixture
def embedder() -> MagicMock:
    mock = MagicMock()
    mock.embed.return_value = [1.0, 0.0, 0.0]
    return mock


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def indexer(
    store: InMemoryChunkStore,
    extractor: MagicMock,
    embedder: MagicMock,
    sleeps: list[float],
) -> Indexer:
    return Indexer(
        store,
        extractor=extractor,
        embedder=embedder,
        max_attempts=3,
        backoff_base=0.2,
        backoff_max=5.0,
        sleep=sleeps.append,
    )
