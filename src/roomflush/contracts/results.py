"""Run and document result contracts."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from roomflush.contracts.enums import DocumentOutcome, StopReason


@dataclass(frozen=True, slots=True)
class DocumentResult:
    """Outcome of one admitted document.

    Attributes:
        document_id: The document this result describes
        outcome: succeeded, failed or cancelled
        writes_recorded: Mutations the task issued
        writes_flushed: Mutations the backend accepted
        flush_count: Backend flush calls that succeeded
        error: String form of the failure, if any
        error_type: Exception class name of the failure, if any
        duration_seconds: Wall-clock time from admission to settlement
    """

    document_id: str
    outcome: DocumentOutcome
    writes_recorded: int = 0
    writes_flushed: int = 0
    flush_count: int = 0
    error: str | None = None
    error_type: str | None = None
    duration_seconds: float = 0.0

    @property
    def fully_flushed(self) -> bool:
        """True when every recorded write reached the backend."""
        return self.writes_flushed == self.writes_recorded


@dataclass(frozen=True, slots=True)
class RunResult:
    """Aggregate outcome of a mutation run.

    ``documents`` holds one entry per admitted document, in admission order.
    Documents pulled from the source but never admitted (deadline, abort,
    duplicates) are only counted in ``skipped``.
    """

    documents: tuple[DocumentResult, ...] = ()
    stop_reason: StopReason = StopReason.COMPLETED
    error: BaseException | None = None
    elapsed_seconds: float = 0.0
    max_concurrent_reached: int = 0
    skipped: int = 0
    stats: dict[str, Any] = field(default_factory=dict)

    def _ids(self, outcome: DocumentOutcome) -> tuple[str, ...]:
        return tuple(doc.document_id for doc in self.documents if doc.outcome == outcome)

    @property
    def processed(self) -> int:
        return len(self.documents)

    @property
    def succeeded(self) -> tuple[str, ...]:
        return self._ids(DocumentOutcome.SUCCEEDED)

    @property
    def failed(self) -> tuple[str, ...]:
        return self._ids(DocumentOutcome.FAILED)

    @property
    def cancelled(self) -> tuple[str, ...]:
        return self._ids(DocumentOutcome.CANCELLED)

    @property
    def aborted(self) -> bool:
        """True when the run stopped before exhausting the source."""
        return self.stop_reason != StopReason.COMPLETED

    def get(self, document_id: str) -> DocumentResult:
        """Look up the result for one document.

        Raises:
            KeyError: If the document was never admitted
        """
        for doc in self.documents:
            if doc.document_id == document_id:
                return doc
        raise KeyError(document_id)

    def summary(self) -> dict[str, Any]:
        """JSON-serializable summary for CLI output and logs."""
        return {
            "stop_reason": self.stop_reason.value,
            "processed": self.processed,
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "cancelled": len(self.cancelled),
            "skipped": self.skipped,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "max_concurrent_reached": self.max_concurrent_reached,
            "error": str(self.error) if self.error is not None else None,
        }
