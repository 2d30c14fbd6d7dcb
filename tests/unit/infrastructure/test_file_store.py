"""Unit tests for the file-backed persistence stores."""

import pytest

from coachforce.infrastructure.persistence.file_store import (
    FileBlobStore,
    FileKeyValueStore,
    FileVectorStore,
)


class TestFileKeyValueStore:
    @pytest.mark.asyncio
    async def test_save_and_load(self, tmp_path):
        store = FileKeyValueStore(tmp_path)

        await store.save("user#u1", "program#p1", {"name": "Block"})

        item = await store.load("user#u1", "program#p1")
        assert item == {"pk": "user#u1", "sk": "program#p1", "name": "Block"}

    @pytest.mark.asyncio
    async def test_missing_item(self, tmp_path):
        assert await FileKeyValueStore(tmp_path).load("user#u1", "nope") is None

    @pytest.mark.asyncio
    async def test_query_by_prefix(self, tmp_path):
        store = FileKeyValueStore(tmp_path)
        await store.save("user#u1", "workout#1", {"n": 1})
        await store.save("user#u1", "workout#2", {"n": 2})
        await store.save("user#u1", "memory#1", {"n": 3})

        workouts = await store.query("user#u1", "workout#")

        assert sorted(w["n"] for w in workouts) == [1, 2]
        assert await store.query("user#other") == []

    @pytest.mark.asyncio
    async def test_overwrite_leaves_no_temp_files(self, tmp_path):
        store = FileKeyValueStore(tmp_path)
        await store.save("user#u1", "coach#c1", {"v": 1})
        await store.save("user#u1", "coach#c1", {"v": 2})

        assert (await store.load("user#u1", "coach#c1"))["v"] == 2
        assert not list(tmp_path.rglob("*.tmp"))

    @pytest.mark.asyncio
    async def test_corrupt_file_reads_as_missing(self, tmp_path):
        store = FileKeyValueStore(tmp_path)
        await store.save("user#u1", "coach#c1", {"v": 1})
        path = next((tmp_path / "kv").rglob("*.json"))
        path.write_text("{not json", encoding="utf-8")

        assert await store.load("user#u1", "coach#c1") is None


class TestFileBlobStore:
    @pytest.mark.asyncio
    async def test_put_and_get_nested_key(self, tmp_path):
        store = FileBlobStore(tmp_path)

        key = await store.put("programs/u1/p1/details.json", {"programId": "p1"})

        assert key == "programs/u1/p1/details.json"
        assert await store.get(key) == {"programId": "p1"}
        assert (tmp_path / "blobs" / "programs" / "u1" / "p1" / "details.json").exists()

    @pytest.mark.asyncio
    async def test_path_traversal_is_contained(self, tmp_path):
        store = FileBlobStore(tmp_path)

        await store.put("../../escape.json", {"x": 1})

        assert not (tmp_path.parent / "escape.json").exists()
        assert await store.get("escape.json") == {"x": 1}


class TestFileVectorStore:
    @pytest.mark.asyncio
    async def test_store_and_query(self, tmp_path):
        store = FileVectorStore(tmp_path)
        await store.store("user_u1", "Squat technique and knee tracking", {"recordId": "r1"})
        await store.store("user_u1", "Marathon pacing for beginners", {"recordId": "r2"})

        results = await store.query("user_u1", "squat knee pain", top_k=5)

        assert [r["id"] for r in results] == ["r1"]
        assert results[0]["score"] == pytest.approx(0.667, abs=0.001)

    @pytest.mark.asyncio
    async def test_same_record_id_is_replaced(self, tmp_path):
        store = FileVectorStore(tmp_path)
        await store.store("ns", "first version", {"recordId": "r1"})
        await store.store("ns", "second version", {"recordId": "r1"})

        results = await store.query("ns", "version")

        assert len(results) == 1
        assert results[0]["content"] == "second version"

    @pytest.mark.asyncio
    async def test_oversized_record_raises_size_error(self, tmp_path):
        store = FileVectorStore(tmp_path, metadata_limit_bytes=100)

        with pytest.raises(ValueError, match="exceeds the limit"):
            await store.store("ns", "x" * 200, {})

    @pytest.mark.asyncio
    async def test_empty_query(self, tmp_path):
        store = FileVectorStore(tmp_path)
        await store.store("ns", "anything", {})

        assert await store.query("ns", "  ") == []
