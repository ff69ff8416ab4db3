"""Document and mutation data contracts."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any


@dataclass(frozen=True, slots=True)
class Mutation:
    """A single keyed write against a document's root state.

    Mutations are applied in issuance order; the last write for a key wins.
    """

    key: str
    value: Any

    def apply(self, root: dict[str, Any]) -> None:
        """Apply this write to a root state mapping in place."""
        root[self.key] = self.value


def apply_mutations(root: dict[str, Any], batch: Sequence[Mutation]) -> None:
    """Apply a batch of mutations to ``root`` in order."""
    for mutation in batch:
        mutation.apply(root)


@dataclass(eq=False)
class DocumentHandle:
    """One independently mutable document targeted by a run.

    Attributes:
        document_id: Stable identifier of the document
        root: Mutable root state. Mutation tasks write to it in place.
        metadata: Read-only attributes, used by enumeration filters
    """

    document_id: str
    root: dict[str, Any] = field(default_factory=dict)
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.document_id:
            raise ValueError("document_id must be a non-empty string")
        self.metadata = MappingProxyType(dict(self.metadata))
