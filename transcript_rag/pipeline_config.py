"""Pipeline configuration: chunking and scoring dataclasses with documented defaults."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from transcript_rag.config import settings


class LengthUnit(str, Enum):
    """Unit used to measure chunk length and overlap."""

    WORDS = "words"
    SENTENCES = "sentences"
    CHARACTERS = "characters"


@dataclass(frozen=True)
class ChunkingConfig:
    """Immutable chunker configuration.

    ``overlap`` is measured in the same unit as ``max_length`` and must be
    strictly shorter than it.
    """

    max_length: int = settings.chunk_size
    overlap: int = settings.chunk_overlap
    unit: LengthUnit = LengthUnit.WORDS

    def __post_init__(self) -> None:
        if self.max_length <= 0:
            raise ValueError(f"max_length must be positive, got {self.max_length}")
        if not 0 <= self.overlap < self.max_length:
            raise ValueError(
                f"overlap must be in [0, max_length), got {self.overlap} for max_length {self.max_length}"
            )


@dataclass(frozen=True)
class ScoringWeights:
    """Relative emphasis of each retrieval signal.

    Weights are non-negative and need not sum to 1.  Defaults:

    - ``vector`` (0.6): semantic similarity between query and chunk embeddings.
    - ``fts`` (0.4): lexical match of the query text, normalised to the best match.
    - ``entity`` (0.2): coverage of the requested entities, saturating on mentions.
    """

    vector: float = 0.6
    fts: float = 0.4
    entity: float = 0.2

    @classmethod
    def from_settings(cls) -> ScoringWeights:
        return cls(
            vector=settings.weight_vector,
            fts=settings.weight_fts,
            entity=settings.weight_entity,
        )

    def is_valid(self) -> bool:
        return min(self.vector, self.fts, self.entity) >= 0
