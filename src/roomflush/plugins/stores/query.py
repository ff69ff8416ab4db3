"""Document enumeration filters."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from roomflush.contracts.documents import DocumentHandle


@dataclass(frozen=True)
class DocumentQuery:
    """Predicate selecting documents by id prefix and metadata equality.

    All configured conditions must match. An empty query matches every
    document.

    Example:
        query = DocumentQuery(id_prefix="sveltekit-pixel", metadata={"kind": "canvas"})
        store.enumerate(query)
    """

    id_prefix: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __call__(self, document: DocumentHandle) -> bool:
        if self.id_prefix is not None and not document.document_id.startswith(self.id_prefix):
            return False
        for key, expected in self.metadata.items():
            if key not in document.metadata or document.metadata[key] != expected:
                return False
        return True
