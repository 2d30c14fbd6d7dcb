"""
File-backed persistence collaborators.

JSON documents under a work directory, written atomically (temp file in the
same directory, then rename) with one asyncio lock per target file:

    <work_dir>/kv/<partition>/<sort_key>.json
    <work_dir>/blobs/<key>
    <work_dir>/vectors/<namespace>.json
"""

import asyncio
import json
import os
import re
import tempfile
import uuid
from pathlib import Path
from typing import Any

import aiofiles
import structlog

from coachforce.infrastructure.compression import METADATA_LIMIT_BYTES, metadata_size

logger = structlog.get_logger()

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._#@=-]")
_TOKEN_RE = re.compile(r"[a-z0-9]+")


def _safe_name(value: str) -> str:
    return _UNSAFE_CHARS.sub("_", value) or "_"


class _JsonFileStore:
    """Shared atomic JSON read/write with per-path locks."""

    def __init__(self, root: Path, component: str):
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)
        self._locks: dict[Path, asyncio.Lock] = {}
        self.logger = logger.bind(component=component)

    def _lock(self, path: Path) -> asyncio.Lock:
        if path not in self._locks:
            self._locks[path] = asyncio.Lock()
        return self._locks[path]

    async def _write_json(self, path: Path, data: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        async with self._lock(path):
            temp_fd, temp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp", prefix=".cf_")
            os.close(temp_fd)
            try:
                async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
                    await f.write(json.dumps(data, ensure_ascii=False, indent=2, default=str))
                os.replace(temp_path, path)
            except Exception:
                if Path(temp_path).exists():
                    Path(temp_path).unlink()
                raise
        self.logger.debug("json_written", path=str(path))

    async def _read_json(self, path: Path) -> Any | None:
        if not path.exists():
            return None
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            raw = await f.read()
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            self.logger.warning("json_corrupt", path=str(path), error=str(e))
            return None


class FileKeyValueStore(_JsonFileStore):
    """Partition/sort-key item store."""

    def __init__(self, work_dir: str | Path):
        super().__init__(Path(work_dir) / "kv", "file_kv_store")

    def _path(self, partition_key: str, sort_key: str) -> Path:
        return self.root / _safe_name(partition_key) / f"{_safe_name(sort_key)}.json"

    async def load(self, partition_key: str, sort_key: str) -> dict[str, Any] | None:
        return await self._read_json(self._path(partition_key, sort_key))

    async def save(self, partition_key: str, sort_key: str, item: dict[str, Any]) -> None:
        record = {"pk": partition_key, "sk": sort_key, **item}
        await self._write_json(self._path(partition_key, sort_key), record)
        self.logger.info("item_saved", pk=partition_key, sk=sort_key)

    async def query(self, partition_key: str, sort_key_prefix: str = "") -> list[dict[str, Any]]:
        directory = self.root / _safe_name(partition_key)
        if not directory.exists():
            return []
        items: list[dict[str, Any]] = []
        for path in sorted(directory.glob("*.json")):
            item = await self._read_json(path)
            if item and str(item.get("sk", "")).startswith(sort_key_prefix):
                items.append(item)
        return items


class FileBlobStore(_JsonFileStore):
    """Key to JSON document store for large payloads."""

    def __init__(self, work_dir: str | Path):
        super().__init__(Path(work_dir) / "blobs", "file_blob_store")

    def _path(self, key: str) -> Path:
        parts = [_safe_name(p) for p in key.split("/") if p and p not in (".", "..")]
        return self.root.joinpath(*parts) if parts else self.root / "_"

    async def get(self, key: str) -> Any | None:
        return await self._read_json(self._path(key))

    async def put(self, key: str, value: Any) -> str:
        await self._write_json(self._path(key), value)
        self.logger.info("blob_stored", key=key)
        return key


class FileVectorStore(_JsonFileStore):
    """
    Minimal semantic index: lexical overlap scoring over stored records.

    Enforces the same metadata size ceiling as hosted vector databases so
    that oversized writes fail with a size error.
    """

    def __init__(self, work_dir: str | Path, metadata_limit_bytes: int = METADATA_LIMIT_BYTES):
        super().__init__(Path(work_dir) / "vectors", "file_vector_store")
        self.metadata_limit_bytes = metadata_limit_bytes

    def _path(self, namespace: str) -> Path:
        return self.root / f"{_safe_name(namespace)}.json"

    async def store(self, namespace: str, content: str, metadata: dict[str, Any]) -> str:
        size = metadata_size(content, metadata)
        if size > self.metadata_limit_bytes:
            raise ValueError(
                f"Metadata size is {size} bytes, which exceeds the limit of "
                f"{self.metadata_limit_bytes} bytes"
            )
        record_id = metadata.get("recordId") or f"rec_{uuid.uuid4().hex[:12]}"
        path = self._path(namespace)
        records = await self._read_json(path) or []
        records = [r for r in records if r.get("id") != record_id]
        records.append({"id": record_id, "content": content, "metadata": metadata})
        await self._write_json(path, records)
        self.logger.info("vector_record_stored", namespace=namespace, record_id=record_id, size=size)
        return record_id

    async def query(self, namespace: str, query: str, top_k: int = 5) -> list[dict[str, Any]]:
        records = await self._read_json(self._path(namespace)) or []
        terms = set(_TOKEN_RE.findall(query.lower()))
        if not terms:
            return []
        scored = []
        for record in records:
            tokens = set(_TOKEN_RE.findall(record.get("content", "").lower()))
            overlap = len(terms & tokens)
            if overlap:
                scored.append({**record, "score": round(overlap / len(terms), 3)})
        scored.sort(key=lambda r: r["score"], reverse=True)
        return scored[:top_k]
