"""Embedding helpers using OpenAI text-embedding-3-small."""

from __future__ import annotations

import openai
from openai import OpenAI

from transcript_rag.config import settings
from transcript_rag.errors import PermanentServiceError, TransientServiceError

# Embedding API input limit (characters)
MAX_EMBED_CHARS = 8000


def classify_openai_error(exc: openai.OpenAIError) -> TransientServiceError | PermanentServiceError:
    """Map an OpenAI SDK exception onto the transient/permanent taxonomy."""
    if isinstance(
        exc,
        (openai.APITimeoutError, openai.APIConnectionError, openai.RateLimitError, openai.InternalServerError),
    ):
        return TransientServiceError(f"Embedding service unavailable: {exc}")
    if isinstance(exc, openai.APIStatusError) and exc.status_code >= 500:
        return TransientServiceError(f"Embedding service error {exc.status_code}: {exc}")
    return PermanentServiceError(f"Embedding request rejected: {exc}")


class Embedder:
    """Computes fixed-length embedding vectors via the OpenAI embeddings API."""

    def __init__(
        self,
        client: OpenAI | None = None,
        model: str | None = None,
        dimensions: int | None = None,
    ) -> None:
        self._client = client
        self.model = model or settings.embedding_model
        self.dimensions = dimensions or settings.embedding_dimensions

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(api_key=settings.openai_api_key or None)
        return self._client

    def embed(self, text: str) -> list[float]:
        """Embed a single text.

        Args:
            text: Chunk or query text; truncated to the API input limit.

        Returns:
            The embedding vector.

        Raises:
            PermanentServiceError: Empty text, rejected request or wrong vector length.
            TransientServiceError: Timeout, connection, rate-limit or server error.
        """
        if not text or not text.strip():
            raise PermanentServiceError("Cannot embed empty text")
        try:
            response = self.client.embeddings.create(input=[text[:MAX_EMBED_CHARS]], model=self.model)
        except openai.OpenAIError as exc:
            raise classify_openai_error(exc) from exc

        if not response.data:
            raise PermanentServiceError("Embedding response contained no vectors")
        embedding = list(response.data[0].embedding)
        if len(embedding) != self.dimensions:
            raise PermanentServiceError(
                f"Expected a {self.dimensions}-dimensional embedding, got {len(embedding)}"
            )
        return embedding
