"""Status codes and states used across subsystem boundaries."""

from enum import StrEnum


class StopReason(StrEnum):
    """Why a run stopped admitting documents.

    COMPLETED is the only reason that does not trip the cancellation latch.
    """

    COMPLETED = "completed"
    DEADLINE_EXCEEDED = "deadline_exceeded"
    ABORT_REQUESTED = "abort_requested"
    SOURCE_FAILED = "source_failed"


class DocumentOutcome(StrEnum):
    """Final outcome of one document's mutation task."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class FlushState(StrEnum):
    """Lifecycle of a per-document flush scheduler.

    Transitions:
        IDLE -> PENDING (first record after a flush)
        PENDING -> FLUSHING (timer fired or explicit flush)
        FLUSHING -> IDLE (batch persisted)
        any -> CLOSED (shutdown flush finished, or a flush was rejected)
    """

    IDLE = "idle"
    PENDING = "pending"
    FLUSHING = "flushing"
    CLOSED = "closed"
