"""Tests for settings and pipeline configuration defaults."""

from __future__ import annotations

from transcript_rag.config import Settings, get_settings
from transcript_rag.pipeline_config import ChunkingConfig, LengthUnit, ScoringWeights


def test_settings_defaults() -> None:
    s = Settings(_env_file=None)  # type: ignore[call-arg]
    assert s.embedding_model == "text-embedding-3-small"
    assert s.embedding_dimensions == 1536
    assert s.index_max_attempts == 3
    assert s.weight_vector == 0.6
    assert s.weight_fts == 0.4


def test_settings_from_env(monkeypatch) -> None:
    monkeypatch.setenv("WATCHDOG_THRESHOLD_SECONDS", "120")
    monkeypatch.setenv("WEIGHT_ENTITY", "0.5")
    s = Settings(_env_file=None)  # type: ignore[call-arg]
    assert s.watchdog_threshold_seconds == 120.0
    assert s.weight_entity == 0.5


def test_get_settings_is_cached() -> None:
    assert get_settings() is get_settings()


def test_chunking_defaults() -> None:
    config = ChunkingConfig()
    assert config.unit == LengthUnit.WORDS
    assert 0 <= config.overlap < config.max_length


def test_scoring_weights() -> None:
    assert ScoringWeights().is_valid()
    assert not ScoringWeights(fts=-1.0).is_valid()
    assert ScoringWeights.from_settings() == ScoringWeights(
        vector=get_settings().weight_vector,
        fts=get_settings().weight_fts,
        entity=get_settings().weight_entity,
    )
