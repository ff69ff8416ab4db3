"""Exception types for mutation runs.

Document-level failures never escape a run: they are recorded on the
DocumentResult. Only ConfigError is raised to the caller, before any
document is touched.
"""

from __future__ import annotations

from typing import Any


class RoomflushError(Exception):
    """Base class for all roomflush errors."""


class ConfigError(RoomflushError, ValueError):
    """Raised when run configuration is invalid.

    Attributes:
        errors: One "location: message" entry per validation failure
    """

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        self.errors = errors or []
        if self.errors:
            message = message + "\n" + "\n".join(f"  - {error}" for error in self.errors)
        super().__init__(message)

    @classmethod
    def from_validation_errors(cls, title: str, details: list[dict[str, Any]]) -> ConfigError:
        """Build from pydantic's ``ValidationError.errors()`` output."""
        formatted = []
        for detail in details:
            loc = ".".join(str(part) for part in detail["loc"]) or "<root>"
            formatted.append(f"{loc}: {detail['msg']}")
        return cls(title, formatted)


class FlushError(RoomflushError):
    """Raised by a persistence backend that rejects a batch.

    Attributes:
        document_id: Document whose batch was rejected
        batch_size: Number of mutations in the rejected batch
    """

    def __init__(self, document_id: str, message: str, batch_size: int = 0) -> None:
        super().__init__(f"Flush rejected for document {document_id!r}: {message}")
        self.document_id = document_id
        self.batch_size = batch_size


class FlushFailedError(RoomflushError):
    """Raised when recording to a scheduler whose previous flush failed."""

    def __init__(self, document_id: str, cause: FlushError) -> None:
        super().__init__(f"Document {document_id!r} no longer accepts writes: {cause}")
        self.document_id = document_id
        self.cause = cause


class SchedulerClosedError(RoomflushError):
    """Raised when recording to a scheduler after its shutdown flush."""


class MutationCancelledError(RoomflushError):
    """Raised inside a mutation function once the run has been cancelled.

    Mutation functions should let this propagate. Catching it does not
    re-enable writes: every later write or pace raises it again.
    """


class PermitReleasedError(RoomflushError):
    """Raised when a concurrency permit is released more than once."""
