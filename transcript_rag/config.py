from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings validated via Pydantic.

    Values are loaded from environment variables and/or a .env file.
    """

    # API Keys
    anthropic_api_key: str = ""
    openai_api_key: str = ""

    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""

    # App config
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536
    extraction_model: str = "claude-sonnet-4-20250514"
    chunk_size: int = 400
    chunk_overlap: int = 50

    # Indexing
    index_workers: int = 4
    index_max_attempts: int = 3
    index_backoff_base_seconds: float = 0.2
    index_backoff_max_seconds: float = 5.0
    worker_poll_seconds: float = 5.0
    watchdog_threshold_seconds: float = 900.0
    watchdog_interval_seconds: float = 60.0

    # Retrieval weights (relative emphasis, need not sum to 1)
    weight_vector: float = 0.6
    weight_fts: float = 0.4
    weight_entity: float = 0.2
    match_count: int = 8

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance.

    Gracefully handles missing .env files (e.g. in CI/testing) by falling
    back to environment variables and defaults.
    """
    try:
        return Settings()
    except Exception:
        # If .env is missing or unreadable, build settings from env vars only.
        return Settings(_env_file=None)  # type: ignore[call-arg]


settings = get_settings()
