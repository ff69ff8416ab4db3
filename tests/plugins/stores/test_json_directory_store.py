# tests/plugins/stores/test_json_directory_store.py
"""Tests for JsonDirectoryStore."""

import json
from pathlib import Path

import pytest

from roomflush.contracts import FlushError, Mutation
from roomflush.plugins.stores import DocumentQuery, JsonDirectoryStore


@pytest.fixture
def store(tmp_path: Path) -> JsonDirectoryStore:
    return JsonDirectoryStore(tmp_path / "rooms")


class TestConstruction:
    def test_creates_directory(self, tmp_path: Path) -> None:
        JsonDirectoryStore(tmp_path / "new" / "rooms")
        assert (tmp_path / "new" / "rooms").is_dir()

    def test_missing_directory_without_create(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            JsonDirectoryStore(tmp_path / "absent", create=False)


class TestDocuments:
    def test_create_and_load(self, store: JsonDirectoryStore) -> None:
        path = store.create("room-1", {"title": "a"}, {"kind": "canvas"})

        handle = store.load("room-1")

        assert path.name == "room-1.json"
        assert handle.root == {"title": "a"}
        assert handle.metadata == {"kind": "canvas"}

    def test_load_missing(self, store: JsonDirectoryStore) -> None:
        with pytest.raises(KeyError):
            store.load("ghost")

    @pytest.mark.parametrize("document_id", ["../escape", "a/b", ".hidden", ""])
    def test_unsafe_ids_rejected(self, store: JsonDirectoryStore, document_id: str) -> None:
        with pytest.raises(ValueError, match="Invalid document_id"):
            store.create(document_id)

    @pytest.mark.asyncio
    async def test_enumerate_sorted_and_filtered(self, store: JsonDirectoryStore) -> None:
        store.create("pixel-2", metadata={"kind": "canvas"})
        store.create("chat-1", metadata={"kind": "chat"})
        store.create("pixel-1", metadata={"kind": "canvas"})

        all_ids = [h.document_id async for h in store.enumerate()]
        canvas_ids = [h.document_id async for h in store.enumerate(DocumentQuery(metadata={"kind": "canvas"}))]

        assert all_ids == ["chat-1", "pixel-1", "pixel-2"]
        assert canvas_ids == ["pixel-1", "pixel-2"]

    @pytest.mark.asyncio
    async def test_enumerate_rejects_malformed_file(self, store: JsonDirectoryStore) -> None:
        (store.base_path / "broken.json").write_text("[1, 2, 3]")

        with pytest.raises(ValueError, match="Malformed"):
            [h async for h in store.enumerate()]

    @pytest.mark.asyncio
    async def test_enumerate_reads_lazily(self, store: JsonDirectoryStore) -> None:
        store.create("room-1")
        store.create("room-2")
        documents = store.enumerate()

        first = await anext(documents)
        (store.base_path / "room-2.json").write_text("[1, 2, 3]")

        assert first.document_id == "room-1"
        with pytest.raises(ValueError, match="Malformed"):
            await anext(documents)

    @pytest.mark.asyncio
    async def test_enumerate_skips_invalid_file_names(self, store: JsonDirectoryStore) -> None:
        store.create("room-1")
        (store.base_path / ".hidden.json").write_text("{}")

        assert [h.document_id async for h in store.enumerate()] == ["room-1"]


class TestFlush:
    @pytest.mark.asyncio
    async def test_flush_persists_batch(self, store: JsonDirectoryStore) -> None:
        store.create("room-1", {"keep": 1}, {"kind": "canvas"})

        await store.flush("room-1", [Mutation("0_0_0", "#ff0000"), Mutation("0_0_1", "#00ff00")])

        data = json.loads((store.base_path / "room-1.json").read_text())
        assert data["root"] == {"keep": 1, "0_0_0": "#ff0000", "0_0_1": "#00ff00"}
        assert data["metadata"] == {"kind": "canvas"}

    @pytest.mark.asyncio
    async def test_flush_leaves_no_temp_files(self, store: JsonDirectoryStore) -> None:
        store.create("room-1")

        await store.flush("room-1", [Mutation("a", 1)])

        assert sorted(p.name for p in store.base_path.iterdir()) == ["room-1.json"]

    @pytest.mark.asyncio
    async def test_flush_missing_document_rejected(self, store: JsonDirectoryStore) -> None:
        with pytest.raises(FlushError, match="does not exist"):
            await store.flush("ghost", [Mutation("a", 1)])

    @pytest.mark.asyncio
    async def test_flush_unserializable_value_rejected(self, store: JsonDirectoryStore) -> None:
        store.create("room-1", {"a": 1})

        with pytest.raises(FlushError, match="TypeError"):
            await store.flush("room-1", [Mutation("b", object())])

        assert store.load("room-1").root == {"a": 1}
