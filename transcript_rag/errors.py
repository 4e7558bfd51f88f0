"""Exception types shared across indexing and retrieval."""

from __future__ import annotations


class InvalidQuery(ValueError):
    """A retrieval query violates its contract (empty scope, bad match_count, ...)."""


class TranscriptNotReady(ValueError):
    """The transcript is still being transcribed or analysed, so its text may be partial."""

    def __init__(self, transcript_id: str, analysis_status: str) -> None:
        super().__init__(
            f"Transcript {transcript_id} is not ready for indexing (analysis_status={analysis_status})"
        )
        self.transcript_id = transcript_id
        self.analysis_status = analysis_status


class InvalidTransition(ValueError):
    """An extraction_status update that the state machine does not allow."""

    def __init__(self, current: str, new: str) -> None:
        super().__init__(f"Invalid extraction_status transition: {current} -> {new}")
        self.current = current
        self.new = new


class ServiceError(Exception):
    """Base class for failures of the embedding / extraction services."""

    kind = "unknown"


class TransientServiceError(ServiceError):
    """Network, timeout, rate-limit or 5xx failure; safe to retry."""

    kind = "transient"


class PermanentServiceError(ServiceError):
    """The service rejected the input outright; retrying will not help."""

    kind = "permanent"
