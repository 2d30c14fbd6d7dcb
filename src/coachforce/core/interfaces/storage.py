"""
Protocols for the persistence collaborators used by tools.

The orchestration core never calls these directly; only tool ``execute``
functions do.
"""

from typing import Any, Protocol


class KeyValueStoreProtocol(Protocol):
    """Partition/sort-key item store (sessions, programs, workouts)."""

    async def load(self, partition_key: str, sort_key: str) -> dict[str, Any] | None:
        ...

    async def save(self, partition_key: str, sort_key: str, item: dict[str, Any]) -> None:
        ...

    async def query(self, partition_key: str, sort_key_prefix: str = "") -> list[dict[str, Any]]:
        ...


class BlobStoreProtocol(Protocol):
    """Store for large JSON payloads such as full program details."""

    async def get(self, key: str) -> Any | None:
        ...

    async def put(self, key: str, value: Any) -> str:
        """Store ``value`` and return its key."""
        ...


class VectorStoreProtocol(Protocol):
    """
    Semantic index with a metadata size ceiling.

    ``store`` raises an error mentioning "Metadata size ... exceeds the limit"
    when content plus metadata is too large.
    """

    async def store(self, namespace: str, content: str, metadata: dict[str, Any]) -> str:
        ...

    async def query(
        self, namespace: str, query: str, top_k: int = 5
    ) -> list[dict[str, Any]]:
        ...
