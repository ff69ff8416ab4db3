# tests/fixtures/stores.py
"""Test persistence backends and mutation functions.

RecordingBackend wraps an InMemoryDocumentStore and can be told to delay
or reject flushes for specific documents, so engine tests can observe
exactly what reached the backend and when.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field

from roomflush.contracts import FlushError, Mutation
from roomflush.engine.task import MutationContext
from roomflush.plugins.stores import InMemoryDocumentStore


@dataclass
class FlushCall:
    """One flush the backend received."""

    document_id: str
    batch: tuple[Mutation, ...]
    at: float


@dataclass
class RecordingBackend:
    """Persistence backend that records every flush call.

    Attributes:
        store: Underlying store the accepted batches are applied to
        delay_seconds: Sleep before accepting each flush
        reject: Document ids whose flushes raise FlushError
        reject_after: Number of flushes to accept per rejected document first
        crash: Document ids whose flushes raise a non-FlushError exception
    """

    store: InMemoryDocumentStore = field(default_factory=InMemoryDocumentStore)
    delay_seconds: float = 0.0
    reject: set[str] = field(default_factory=set)
    reject_after: int = 0
    crash: set[str] = field(default_factory=set)
    calls: list[FlushCall] = field(default_factory=list)
    in_flight: dict[str, int] = field(default_factory=dict)
    max_in_flight_per_document: int = 0

    async def flush(self, document_id: str, batch: Sequence[Mutation]) -> None:
        self.in_flight[document_id] = self.in_flight.get(document_id, 0) + 1
        self.max_in_flight_per_document = max(self.max_in_flight_per_document, self.in_flight[document_id])
        try:
            self.calls.append(FlushCall(document_id, tuple(batch), time.monotonic()))
            if self.delay_seconds:
                await asyncio.sleep(self.delay_seconds)
            if document_id in self.crash:
                raise ConnectionError("backend unavailable")
            if document_id in self.reject and len(self.calls_for(document_id)) > self.reject_after:
                raise FlushError(document_id, "rejected by test backend", batch_size=len(batch))
            await self.store.flush(document_id, batch)
        finally:
            self.in_flight[document_id] -= 1

    def calls_for(self, document_id: str) -> list[FlushCall]:
        return [call for call in self.calls if call.document_id == document_id]


def make_store(count: int, prefix: str = "room") -> InMemoryDocumentStore:
    """Store with ``count`` empty documents named ``{prefix}-{i}``."""
    return InMemoryDocumentStore({f"{prefix}-{i}": {} for i in range(count)})


def paced_writer(writes: int, pace_ms: float) -> Callable[[MutationContext], Awaitable[None]]:
    """Mutation function issuing ``writes`` keyed writes, pacing after each."""

    async def mutate(ctx: MutationContext) -> None:
        for i in range(writes):
            ctx.write(f"k{i}", i)
            await ctx.pace(pace_ms)

    return mutate
