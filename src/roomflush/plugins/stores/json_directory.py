"""JSON directory document store.

Each document is one file, ``<document_id>.json``, holding:

    {"metadata": {...}, "root": {...}}

Flushes rewrite the file atomically (temp file + os.replace). Listing,
reads and rewrites all run in worker threads so the event loop keeps
running other tasks.
"""

from __future__ import annotations

import asyncio
import json
import os
import re
import tempfile
from collections.abc import AsyncIterator, Mapping, Sequence
from pathlib import Path
from typing import Any

from roomflush.contracts.documents import DocumentHandle, Mutation, apply_mutations
from roomflush.contracts.errors import FlushError
from roomflush.contracts.protocols import DocumentPredicate
from roomflush.core.logging import get_logger

logger = get_logger(__name__)

__all__ = ["JsonDirectoryStore"]

# Document ids become file names: no separators, no leading dot
_VALID_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")

_SUFFIX = ".json"


class JsonDirectoryStore:
    """Filesystem-backed documents, usable as both source and backend.

    Structure: base_path/<document_id>.json
    """

    def __init__(self, base_path: Path, *, create: bool = True, encoding: str = "utf-8") -> None:
        """Initialize the store.

        Args:
            base_path: Directory holding the document files
            create: Create ``base_path`` if it does not exist
            encoding: File encoding

        Raises:
            FileNotFoundError: If ``base_path`` is missing and ``create`` is False
        """
        self.base_path = base_path
        self._encoding = encoding
        if create:
            self.base_path.mkdir(parents=True, exist_ok=True)
        elif not self.base_path.is_dir():
            raise FileNotFoundError(f"Document directory not found: {base_path}")

    def _path_for(self, document_id: str) -> Path:
        """Get the file path for a document id.

        Raises:
            ValueError: If the id is not a safe file name or escapes base_path
        """
        if not _VALID_ID_PATTERN.match(document_id):
            raise ValueError(f"Invalid document_id: {document_id!r}")
        path = self.base_path / f"{document_id}{_SUFFIX}"
        if not path.resolve().is_relative_to(self.base_path.resolve()):
            raise ValueError(f"Invalid document_id: path traversal detected for {document_id!r}")
        return path

    def _list(self) -> list[Path]:
        return sorted(self.base_path.glob(f"*{_SUFFIX}"))

    def _read(self, path: Path) -> dict[str, Any]:
        data = json.loads(path.read_text(encoding=self._encoding))
        if not isinstance(data, dict) or not isinstance(data.get("root", {}), dict):
            raise ValueError(f"Malformed document file {path}: expected an object with a 'root' object")
        return data

    def _write_atomic(self, path: Path, data: dict[str, Any]) -> None:
        payload = json.dumps(data, ensure_ascii=False, sort_keys=True, indent=2)
        fd, tmp_name = tempfile.mkstemp(dir=self.base_path, prefix=f".{path.stem}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding=self._encoding) as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def create(
        self,
        document_id: str,
        root: Mapping[str, Any] | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> Path:
        """Create or replace a document file."""
        path = self._path_for(document_id)
        self._write_atomic(path, {"metadata": dict(metadata or {}), "root": dict(root or {})})
        return path

    def load(self, document_id: str) -> DocumentHandle:
        """Read one document.

        Raises:
            KeyError: If the document does not exist
        """
        path = self._path_for(document_id)
        if not path.exists():
            raise KeyError(f"Document not found: {document_id}")
        data = self._read(path)
        return DocumentHandle(document_id, root=data.get("root", {}), metadata=data.get("metadata", {}))

    async def enumerate(self, predicate: DocumentPredicate | None = None) -> AsyncIterator[DocumentHandle]:
        """Yield documents in sorted id order.

        The listing and each file read run in a worker thread, one file per
        pull, so large directories never block the event loop.
        """
        paths = await asyncio.to_thread(self._list)
        for path in paths:
            document_id = path.name[: -len(_SUFFIX)]
            if not _VALID_ID_PATTERN.match(document_id):
                logger.debug("Ignoring file with invalid document id", path=str(path))
                continue
            data = await asyncio.to_thread(self._read, path)
            handle = DocumentHandle(document_id, root=data.get("root", {}), metadata=data.get("metadata", {}))
            if predicate is None or predicate(handle):
                yield handle

    async def flush(self, document_id: str, batch: Sequence[Mutation]) -> None:
        await asyncio.to_thread(self._apply, document_id, tuple(batch))

    def _apply(self, document_id: str, batch: tuple[Mutation, ...]) -> None:
        try:
            path = self._path_for(document_id)
        except ValueError as e:
            raise FlushError(document_id, str(e), batch_size=len(batch)) from e
        if not path.exists():
            raise FlushError(document_id, "document file does not exist", batch_size=len(batch))
        try:
            data = self._read(path)
            root = data.setdefault("root", {})
            apply_mutations(root, batch)
            self._write_atomic(path, data)
        except (OSError, TypeError, ValueError) as e:
            raise FlushError(document_id, f"{type(e).__name__}: {e}", batch_size=len(batch)) from e
