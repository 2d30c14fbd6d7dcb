"""Unit tests for the resilient compression helper."""

from unittest.mock import AsyncMock, MagicMock, call

import pytest

from coachforce.core.domain.errors import ThrottlingError
from coachforce.infrastructure.compression import (
    CompressionSettings,
    ResilientTransformer,
    estimate_target_chars,
    metadata_size,
    store_with_auto_compression,
    truncate_to_size,
    utf8_size,
)


@pytest.fixture
def client():
    client = MagicMock()
    client.complete_text = AsyncMock()
    return client


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def transformer(client, sleep):
    return ResilientTransformer(client, CompressionSettings(metadata_limit_bytes=1000), sleep=sleep)


class TestTruncateToSize:
    def test_short_content_unchanged(self):
        assert truncate_to_size("hello", 100) == "hello"

    def test_ascii_fits_target(self):
        result = truncate_to_size("x" * 500, 100)

        assert utf8_size(result) <= 100
        assert result.endswith("...")

    def test_multibyte_characters_are_not_split(self):
        content = "ü€😀" * 200

        result = truncate_to_size(content, 101)

        assert utf8_size(result) <= 101
        result.encode("utf-8").decode("utf-8")
        assert result[:-3] == content[: len(result) - 3]

    def test_zero_target(self):
        assert truncate_to_size("anything", 0) == ""

    def test_estimate_uses_ratio_and_margin(self):
        assert estimate_target_chars("a" * 1000, 500, 0.9) == 450
        assert estimate_target_chars("", 500) == 0


class TestResilientTransformer:
    @pytest.mark.asyncio
    async def test_content_within_target_is_returned(self, transformer, client):
        assert await transformer.transform("short", 100) == "short"
        client.complete_text.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_compressed_output_is_used(self, transformer, client):
        client.complete_text.return_value = "compact summary"

        result = await transformer.transform("long text " * 100, 200, "memory")

        assert result == "compact summary"
        prompt = client.complete_text.await_args.args[1]
        assert "memory content" in prompt

    @pytest.mark.asyncio
    async def test_persistent_throttling_truncates_after_schedule(self, transformer, client, sleep):
        client.complete_text.side_effect = ThrottlingError("ThrottlingException: slow down")
        content = "a" * 5000

        result = await transformer.transform(content, 300)

        assert utf8_size(result) <= 300
        assert client.complete_text.await_count == 5
        assert sleep.await_args_list == [call(30), call(90), call(180), call(300)]

    @pytest.mark.asyncio
    async def test_throttling_then_success(self, transformer, client, sleep):
        client.complete_text.side_effect = [RuntimeError("429 Too Many Requests"), "ok now"]

        result = await transformer.transform("b" * 5000, 300)

        assert result == "ok now"
        sleep.assert_awaited_once_with(30)

    @pytest.mark.asyncio
    async def test_other_errors_truncate_immediately(self, transformer, client, sleep):
        client.complete_text.side_effect = ValueError("bad request")

        result = await transformer.transform("c" * 5000, 300)

        assert utf8_size(result) <= 300
        assert client.complete_text.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_overshooting_output_is_truncated(self, transformer, client):
        client.complete_text.return_value = "d" * 1000

        result = await transformer.transform("e" * 5000, 300)

        assert utf8_size(result) <= 300
        assert result.startswith("d")

    @pytest.mark.asyncio
    async def test_empty_output_truncates_original(self, transformer, client):
        client.complete_text.return_value = ""

        result = await transformer.transform("f" * 5000, 300)

        assert result.startswith("f")
        assert utf8_size(result) <= 300


class TestStoreWithAutoCompression:
    @pytest.mark.asyncio
    async def test_small_content_stored_directly(self, transformer, client):
        store_fn = AsyncMock(return_value="rec1")

        result = await store_with_auto_compression(store_fn, "small", {"a": 1}, "memory", transformer)

        assert result == "rec1"
        store_fn.assert_awaited_once_with("small")
        client.complete_text.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_oversized_content_is_compressed_first(self, transformer, client):
        client.complete_text.return_value = "short version"
        store_fn = AsyncMock(return_value="rec2")

        result = await store_with_auto_compression(store_fn, "g" * 2000, {"a": 1}, "program", transformer)

        assert result == "rec2"
        store_fn.assert_awaited_once_with("short version")

    @pytest.mark.asyncio
    async def test_size_error_triggers_compression_and_retry(self, transformer, client):
        client.complete_text.return_value = "shrunk"
        store_fn = AsyncMock(
            side_effect=[ValueError("Metadata size is 50000 bytes, which exceeds the limit"), "rec3"]
        )

        result = await store_with_auto_compression(store_fn, "h" * 900, {}, "memory", transformer)

        assert result == "rec3"
        assert store_fn.await_args_list[-1] == call("shrunk")

    @pytest.mark.asyncio
    async def test_other_store_errors_propagate(self, transformer):
        store_fn = AsyncMock(side_effect=ConnectionError("store unavailable"))

        with pytest.raises(ConnectionError):
            await store_with_auto_compression(store_fn, "small", {}, "memory", transformer)

    @pytest.mark.asyncio
    async def test_compressed_content_fits_with_metadata(self, transformer, client):
        client.complete_text.side_effect = RuntimeError("model down")
        store_fn = AsyncMock(return_value="rec4")
        metadata = {"programId": "p" * 200}

        await store_with_auto_compression(store_fn, "i" * 3000, metadata, "program", transformer)

        stored = store_fn.await_args.args[0]
        assert metadata_size(stored, metadata) <= 1000
