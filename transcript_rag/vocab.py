"""Closed, versioned tag vocabularies for chunk extraction and query filters."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from enum import StrEnum
from typing import TypeVar

logger = logging.getLogger(__name__)

# Bump when a member is added or removed; stored alongside extracted signals.
VOCABULARY_VERSION = "2025-12.1"


class TopicTag(StrEnum):
    """Conversation topics a chunk can be tagged with."""

    PRICING = "pricing"
    OBJECTIONS = "objections"
    DEMO = "demo"
    NEXT_STEPS = "next_steps"
    DISCOVERY = "discovery"
    NEGOTIATION = "negotiation"
    TECHNICAL = "technical"
    COMPETITOR_DISCUSSION = "competitor_discussion"
    BUDGET = "budget"
    TIMELINE = "timeline"
    DECISION_PROCESS = "decision_process"
    PAIN_POINTS = "pain_points"
    VALUE_PROP = "value_prop"
    CLOSING = "closing"


class QualificationTag(StrEnum):
    """MEDDPICC deal-qualification elements."""

    METRICS = "metrics"
    ECONOMIC_BUYER = "economic_buyer"
    DECISION_CRITERIA = "decision_criteria"
    DECISION_PROCESS = "decision_process"
    PAPER_PROCESS = "paper_process"
    IDENTIFY_PAIN = "identify_pain"
    CHAMPION = "champion"
    COMPETITION = "competition"


class EntityType(StrEnum):
    """Kinds of named entities extracted from a chunk."""

    PERSON = "person"
    ORGANIZATION = "organization"
    COMPETITOR = "competitor"
    PRODUCT = "product"
    MONEY = "money"
    DATE = "date"


TagT = TypeVar("TagT", bound=StrEnum)


def parse_tags(values: Iterable[str] | None, vocabulary: type[TagT]) -> frozenset[TagT]:
    """Map raw strings onto *vocabulary*, dropping anything outside it."""
    if not values:
        return frozenset()
    tags: set[TagT] = set()
    for raw in values:
        try:
            tags.add(vocabulary(str(raw).strip().lower()))
        except ValueError:
            logger.warning("Dropping unknown %s value %r", vocabulary.__name__, raw)
    return frozenset(tags)


def intersects(chunk_tags: Iterable[str], wanted: Iterable[str] | None) -> bool:
    """Generic inclusion filter: no filter passes everything, else any overlap."""
    if not wanted:
        return True
    return not set(chunk_tags).isdisjoint(wanted)
