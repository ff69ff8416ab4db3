"""Protocols for the collaborators a run consumes.

A run never implements storage itself. It pulls documents from a
DocumentSource, hands each one to a caller-supplied MutationFn and
persists writes through a PersistenceBackend.
"""

from __future__ import annotations

from collections.abc import AsyncIterable, Awaitable, Callable, Iterable, Sequence
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from roomflush.contracts.documents import DocumentHandle, Mutation

if TYPE_CHECKING:
    from roomflush.engine.task import MutationContext

DocumentPredicate = Callable[[DocumentHandle], bool]
MutationFn = Callable[["MutationContext"], Awaitable[None]]


@runtime_checkable
class DocumentSource(Protocol):
    """Produces the documents a run should mutate.

    The returned sequence is consumed lazily, once. It may be a plain
    iterable or an async iterable (for sources that page over the network).
    """

    def enumerate(
        self,
        predicate: DocumentPredicate | None = None,
    ) -> Iterable[DocumentHandle] | AsyncIterable[DocumentHandle]:
        """Yield documents matching ``predicate`` (all documents if None)."""
        ...


@runtime_checkable
class PersistenceBackend(Protocol):
    """Persists batches of mutations for one document at a time.

    Implementations must tolerate concurrent flushes for different
    documents. Flushes for the same document are never concurrent.
    """

    async def flush(self, document_id: str, batch: Sequence[Mutation]) -> None:
        """Persist ``batch`` atomically, in order.

        Raises:
            FlushError: If the batch was rejected
        """
        ...
