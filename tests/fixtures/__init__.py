# tests/fixtures/__init__.py
"""Shared test helpers for roomflush tests.

Available helpers:
- RecordingBackend: persistence backend that records, delays or rejects flushes
- make_store: InMemoryDocumentStore pre-populated with empty documents
- paced_writer: mutation function issuing paced keyed writes
"""

from tests.fixtures.stores import FlushCall, RecordingBackend, make_store, paced_writer

__all__ = [
    "FlushCall",
    "RecordingBackend",
    "make_store",
    "paced_writer",
]
