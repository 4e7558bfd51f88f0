"""Claude-powered extraction of entities, topics and MEDDPICC tags per chunk."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

import anthropic
from anthropic import Anthropic

from transcript_rag.config import settings
from transcript_rag.errors import PermanentServiceError, TransientServiceError
from transcript_rag.ingestion.models import ChunkSignals, Entity
from transcript_rag.vocab import EntityType, QualificationTag, TopicTag, parse_tags

logger = logging.getLogger(__name__)

TOOL_NAME = "record_chunk_signals"

# Chunk text sent to the model is capped (characters)
MAX_CHUNK_CHARS = 6000

# Response keys for each entity type
_ENTITY_KEYS: dict[str, EntityType] = {
    "people": EntityType.PERSON,
    "organizations": EntityType.ORGANIZATION,
    "competitors": EntityType.COMPETITOR,
    "products": EntityType.PRODUCT,
    "money_amounts": EntityType.MONEY,
    "dates": EntityType.DATE,
}

_STRING_LIST: dict[str, Any] = {"type": "array", "items": {"type": "string"}}

# Tool definition for Claude structured output
EXTRACTION_TOOL: dict[str, Any] = {
    "name": TOOL_NAME,
    "description": (
        "Record the entities, conversation topics and MEDDPICC qualification "
        "elements found in one sales call transcript chunk."
    ),
    "input_schema": {
        "type": "object",
        "properties": {
            "entities": {
                "type": "object",
                "properties": {
                    "people": {**_STRING_LIST, "description": "Names of people mentioned."},
                    "organizations": {**_STRING_LIST, "description": "Companies or teams mentioned."},
                    "competitors": {**_STRING_LIST, "description": "Competing vendors mentioned."},
                    "products": {**_STRING_LIST, "description": "Products or services mentioned."},
                    "money_amounts": {
                        **_STRING_LIST,
                        "description": "Monetary amounts exactly as written (e.g. '$250k').",
                    },
                    "dates": {
                        **_STRING_LIST,
                        "description": "Dates or deadlines exactly as written (e.g. 'end of Q3').",
                    },
                },
            },
            "topics": {
                "type": "array",
                "items": {"type": "string", "enum": [t.value for t in TopicTag]},
            },
            "meddpicc_elements": {
                "type": "array",
                "items": {"type": "string", "enum": [q.value for q in QualificationTag]},
            },
        },
        "required": ["entities", "topics", "meddpicc_elements"],
    },
}

SYSTEM_PROMPT = (
    "You are a sales call analyst. Extract structured signals from the "
    "transcript chunk provided.\n\n"
    "Extract:\n"
    "1. **Entities** — people, organizations, competitors, products, money "
    "amounts and dates, written exactly as they appear in the text.\n"
    "2. **Topics** — which conversation topics the chunk covers.\n"
    "3. **MEDDPICC elements** — which qualification criteria the chunk gives "
    "evidence for.\n\n"
    f"Use the {TOOL_NAME} tool to return your results. Only extract what the "
    "chunk clearly supports; return empty lists when nothing applies."
)


def classify_anthropic_error(
    exc: anthropic.AnthropicError,
) -> TransientServiceError | PermanentServiceError:
    """Map an Anthropic SDK exception onto the transient/permanent taxonomy."""
    if isinstance(
        exc,
        (
            anthropic.APITimeoutError,
            anthropic.APIConnectionError,
            anthropic.RateLimitError,
            anthropic.InternalServerError,
        ),
    ):
        return TransientServiceError(f"Extraction service unavailable: {exc}")
    # 529 overloaded and other 5xx responses
    if isinstance(exc, anthropic.APIStatusError) and exc.status_code >= 500:
        return TransientServiceError(f"Extraction service error {exc.status_code}: {exc}")
    return PermanentServiceError(f"Extraction request rejected: {exc}")


def count_mentions(text: str, value: str) -> int:
    """Case-insensitive occurrences of *value* in *text* on word boundaries (min 1)."""
    pattern = r"(?<!\w)" + re.escape(value.strip()) + r"(?!\w)"
    return max(1, len(re.findall(pattern, text, flags=re.IGNORECASE)))


def _parse_tool_response(response: Any, chunk_text: str) -> ChunkSignals:
    """Parse the Claude tool_use response into :class:`ChunkSignals`."""
    for block in response.content:
        if block.type != "tool_use" or block.name != TOOL_NAME:
            continue

        data = block.input
        if isinstance(data, str):
            data = json.loads(data)

        merged: dict[tuple[str, str], Entity] = {}
        raw_entities = data.get("entities") or {}
        for key, entity_type in _ENTITY_KEYS.items():
            for raw in raw_entities.get(key) or []:
                # Older prompt versions returned objects ({"name": ...} / {"amount": ...})
                if isinstance(raw, dict):
                    raw = raw.get("name") or raw.get("amount") or raw.get("date") or ""
                value = str(raw).strip()
                if not value:
                    continue
                entity = Entity(entity_type, value, count_mentions(chunk_text, value))
                merged.setdefault(entity.key(), entity)

        return ChunkSignals(
            entities=tuple(merged.values()),
            topics=parse_tags(data.get("topics"), TopicTag),
            qualification_tags=parse_tags(data.get("meddpicc_elements"), QualificationTag),
        )

    raise PermanentServiceError(f"Extraction response contained no {TOOL_NAME} tool call")


class Extractor:
    """Derives entities, topic tags and qualification tags from chunk text."""

    def __init__(self, client: Anthropic | None = None, model: str | None = None) -> None:
        self._client = client
        self.model = model or settings.extraction_model

    @property
    def client(self) -> Anthropic:
        if self._client is None:
            self._client = Anthropic(api_key=settings.anthropic_api_key or None)
        return self._client

    def extract(self, chunk_text: str) -> ChunkSignals:
        """Extract structured signals from one chunk.

        Raises:
            PermanentServiceError: Empty text, rejected request or malformed response.
            TransientServiceError: Timeout, connection, rate-limit or server error.
        """
        if not chunk_text or not chunk_text.strip():
            raise PermanentServiceError("Cannot extract from empty chunk text")

        try:
            response = self.client.messages.create(
                model=self.model,
                max_tokens=2048,
                system=SYSTEM_PROMPT,
                tools=[EXTRACTION_TOOL],
                tool_choice={"type": "tool", "name": TOOL_NAME},
                messages=[
                    {
                        "role": "user",
                        "content": (
                            "Extract entities, topics and MEDDPICC elements from this "
                            f"sales call transcript chunk:\n\n{chunk_text[:MAX_CHUNK_CHARS]}"
                        ),
                    }
                ],
            )
        except anthropic.AnthropicError as exc:
            raise classify_anthropic_error(exc) from exc

        try:
            return _parse_tool_response(response, chunk_text)
        except json.JSONDecodeError as exc:
            logger.warning("Malformed extraction payload: %s", exc)
            raise PermanentServiceError(f"Malformed extraction payload: {exc}") from exc
