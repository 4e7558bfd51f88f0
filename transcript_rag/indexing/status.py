"""The extraction_status state machine shared by chunks and index jobs."""

from __future__ import annotations

from transcript_rag.errors import InvalidTransition
from transcript_rag.ingestion.models import ExtractionStatus

PENDING = ExtractionStatus.PENDING
PROCESSING = ExtractionStatus.PROCESSING
COMPLETED = ExtractionStatus.COMPLETED
FAILED = ExtractionStatus.FAILED

# Worker-driven transitions. failed -> pending is the administrative requeue.
ALLOWED_TRANSITIONS: frozenset[tuple[ExtractionStatus, ExtractionStatus]] = frozenset(
    {
        (PENDING, PROCESSING),
        (PROCESSING, COMPLETED),
        (PROCESSING, FAILED),
        (FAILED, PENDING),
    }
)

# Only the watchdog may hand an abandoned claim back to the queue.
RECLAIM_TRANSITION: tuple[ExtractionStatus, ExtractionStatus] = (PROCESSING, PENDING)


def is_allowed(current: ExtractionStatus, new: ExtractionStatus, *, reclaim: bool = False) -> bool:
    if reclaim:
        return (current, new) == RECLAIM_TRANSITION
    return (current, new) in ALLOWED_TRANSITIONS


def check_transition(
    current: ExtractionStatus | str,
    new: ExtractionStatus | str,
    *,
    reclaim: bool = False,
) -> None:
    """Raise :class:`InvalidTransition` unless ``current -> new`` is legal."""
    try:
        current, new = ExtractionStatus(current), ExtractionStatus(new)
    except ValueError as exc:
        raise InvalidTransition(str(current), str(new)) from exc
    if not is_allowed(current, new, reclaim=reclaim):
        raise InvalidTransition(current, new)
