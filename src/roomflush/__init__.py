"""
Roomflush: bounded-concurrency batch mutation of remote documents.

Applies a caller-supplied mutation function to many independent documents
with a concurrency cap, per-document write pacing, periodic flushing to a
persistence backend and a global deadline.
"""

__version__ = "0.1.0"
