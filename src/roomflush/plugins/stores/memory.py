"""In-memory document store, usable as both source and backend."""

from __future__ import annotations

import copy
from collections.abc import Iterator, Mapping, Sequence
from typing import Any

from roomflush.contracts.documents import DocumentHandle, Mutation, apply_mutations
from roomflush.contracts.errors import FlushError
from roomflush.contracts.protocols import DocumentPredicate


class InMemoryDocumentStore:
    """Dict-backed documents with atomic batch flushes.

    Handles returned by ``enumerate`` carry a deep copy of the stored root,
    so the stored state only changes through ``flush``. Every accepted
    batch is appended to ``flush_log``.

    Example:
        store = InMemoryDocumentStore({"room-1": {}, "room-2": {"title": "x"}})
        result = await mass_mutate(store, store, paint, RunConfig())
        store.get("room-1")
    """

    def __init__(
        self,
        documents: Mapping[str, Mapping[str, Any]] | None = None,
        metadata: Mapping[str, Mapping[str, Any]] | None = None,
    ) -> None:
        self._roots: dict[str, dict[str, Any]] = {}
        self._metadata: dict[str, dict[str, Any]] = {}
        self.flush_log: list[tuple[str, tuple[Mutation, ...]]] = []
        for document_id, root in (documents or {}).items():
            self.add(document_id, root, (metadata or {}).get(document_id))

    def add(
        self,
        document_id: str,
        root: Mapping[str, Any] | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        """Create or replace a document."""
        self._roots[document_id] = dict(root or {})
        self._metadata[document_id] = dict(metadata or {})

    def __contains__(self, document_id: object) -> bool:
        return document_id in self._roots

    def __len__(self) -> int:
        return len(self._roots)

    def get(self, document_id: str) -> dict[str, Any]:
        """Copy of the persisted root state.

        Raises:
            KeyError: If the document does not exist
        """
        return copy.deepcopy(self._roots[document_id])

    def flushes_for(self, document_id: str) -> list[tuple[Mutation, ...]]:
        """Accepted batches for one document, in flush order."""
        return [batch for doc_id, batch in self.flush_log if doc_id == document_id]

    def enumerate(self, predicate: DocumentPredicate | None = None) -> Iterator[DocumentHandle]:
        for document_id in list(self._roots):
            handle = DocumentHandle(
                document_id=document_id,
                root=copy.deepcopy(self._roots[document_id]),
                metadata=self._metadata[document_id],
            )
            if predicate is None or predicate(handle):
                yield handle

    async def flush(self, document_id: str, batch: Sequence[Mutation]) -> None:
        if document_id not in self._roots:
            raise FlushError(document_id, "unknown document", batch_size=len(batch))
        # Apply to a copy and swap, so a batch is all-or-nothing
        staged = dict(self._roots[document_id])
        apply_mutations(staged, batch)
        self._roots[document_id] = staged
        self.flush_log.append((document_id, tuple(batch)))
