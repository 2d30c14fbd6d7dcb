"""
Resilient content compression for size-limited stores.

Two tiers: ask the model to compress content semantically to an estimated
character budget, retrying throttling failures on a fixed backoff schedule;
if that fails or still overshoots, truncate deterministically. The result
always fits the byte target and the transform never raises.
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

import structlog

from coachforce.core.domain.errors import is_throttling_error
from coachforce.core.interfaces.llm import ModelClientProtocol

T = TypeVar("T")

METADATA_LIMIT_BYTES = 40960
DEFAULT_TARGET_RATIO = 0.8
SAFETY_MARGIN = 0.9
BACKOFF_SCHEDULE: tuple[float, ...] = (30, 90, 180, 300)
TRUNCATION_SUFFIX = "..."
SIZE_ERROR_MARKERS = ("Metadata size", "exceeds the limit")

COMPRESSION_SYSTEM_PROMPT = "You are a semantic compression expert."


@dataclass
class CompressionSettings:
    """Limits and retry policy for the compression helper."""

    metadata_limit_bytes: int = METADATA_LIMIT_BYTES
    target_ratio: float = DEFAULT_TARGET_RATIO
    safety_margin: float = SAFETY_MARGIN
    backoff_schedule: tuple[float, ...] = field(default_factory=lambda: BACKOFF_SCHEDULE)
    model: str | None = None

    @property
    def default_target_bytes(self) -> int:
        return int(self.metadata_limit_bytes * self.target_ratio)

    @classmethod
    def from_config(cls, config: dict[str, Any] | None) -> "CompressionSettings":
        config = config or {}
        return cls(
            metadata_limit_bytes=int(config.get("metadata_limit_bytes", METADATA_LIMIT_BYTES)),
            target_ratio=float(config.get("target_ratio", DEFAULT_TARGET_RATIO)),
            safety_margin=float(config.get("safety_margin", SAFETY_MARGIN)),
            backoff_schedule=tuple(config.get("backoff_schedule", BACKOFF_SCHEDULE)),
            model=config.get("model"),
        )


def utf8_size(text: str) -> int:
    return len(text.encode("utf-8"))


def metadata_size(content: str, metadata: dict[str, Any]) -> int:
    """Approximate stored size: content bytes plus JSON-encoded metadata bytes."""
    return utf8_size(content) + utf8_size(json.dumps(metadata, ensure_ascii=False, default=str))


def estimate_target_chars(content: str, target_bytes: int, safety_margin: float = SAFETY_MARGIN) -> int:
    """Character budget: len(content) * (target / current bytes) * safety margin."""
    current = utf8_size(content)
    if current == 0:
        return 0
    return max(0, int(len(content) * (target_bytes / current) * safety_margin))


def truncate_to_size(
    content: str, target_bytes: int, safety_margin: float = SAFETY_MARGIN
) -> str:
    """
    Cut ``content`` so its UTF-8 encoding is at most ``target_bytes``.

    The estimated cut point is re-checked against the byte size and
    tightened until it fits; a multi-byte character is never split.
    """
    if target_bytes <= 0:
        return ""
    if utf8_size(content) <= target_bytes:
        return content

    suffix = TRUNCATION_SUFFIX if target_bytes > utf8_size(TRUNCATION_SUFFIX) else ""
    budget = target_bytes - utf8_size(suffix)
    cut = min(len(content), estimate_target_chars(content, budget, safety_margin))
    candidate = content[:cut]
    if utf8_size(candidate) > budget:
        encoded = candidate.encode("utf-8")[:budget]
        candidate = encoded.decode("utf-8", errors="ignore")
    result = candidate + suffix
    while utf8_size(result) > target_bytes and candidate:
        candidate = candidate[:-1]
        result = candidate + suffix
    if utf8_size(result) > target_bytes:
        return ""
    return result


class ResilientTransformer:
    """Model-backed compression with throttling backoff and truncation fallback."""

    def __init__(
        self,
        client: ModelClientProtocol,
        settings: CompressionSettings | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.client = client
        self.settings = settings or CompressionSettings()
        self._sleep = sleep
        self.logger = structlog.get_logger().bind(component="resilient_transformer")

    def _build_prompt(self, content: str, content_type: str, target_chars: int) -> str:
        return (
            f"Compress the following {content_type} content to approximately "
            f"{target_chars} characters while preserving all key information for "
            "semantic search. Keep important keywords, entities, names, numbers and "
            "dates. Remove redundancy. Return ONLY the compressed content.\n\n"
            f"Content:\n{content}"
        )

    async def transform(
        self, content: str, target_size: int | None = None, content_type: str = "text"
    ) -> str:
        """
        Return ``content`` compressed to at most ``target_size`` UTF-8 bytes.

        Throttling failures are retried after each delay of the backoff
        schedule; any other failure goes straight to truncation.
        """
        target = self.settings.default_target_bytes if target_size is None else target_size
        current = utf8_size(content)
        if current <= target:
            return content
        if target <= 0:
            return ""

        target_chars = estimate_target_chars(content, target, self.settings.safety_margin)
        prompt = self._build_prompt(content, content_type, target_chars)
        schedule = self.settings.backoff_schedule
        attempts = len(schedule) + 1

        self.logger.info(
            "compression_started",
            content_type=content_type,
            original_bytes=current,
            target_bytes=target,
            target_chars=target_chars,
        )

        for attempt in range(attempts):
            try:
                compressed = await self.client.complete_text(
                    COMPRESSION_SYSTEM_PROMPT, prompt, model=self.settings.model
                )
            except Exception as e:
                if is_throttling_error(e) and attempt < len(schedule):
                    delay = schedule[attempt]
                    self.logger.warning(
                        "compression_throttled",
                        attempt=attempt + 1,
                        max_attempts=attempts,
                        backoff_seconds=delay,
                    )
                    await self._sleep(delay)
                    continue
                self.logger.warning(
                    "compression_failed_truncating",
                    attempt=attempt + 1,
                    error=str(e)[:200],
                    error_type=type(e).__name__,
                    throttled=is_throttling_error(e),
                )
                return truncate_to_size(content, target, self.settings.safety_margin)

            compressed = compressed or ""
            size = utf8_size(compressed)
            if 0 < size <= target:
                self.logger.info(
                    "compression_complete",
                    original_bytes=current,
                    compressed_bytes=size,
                    attempt=attempt + 1,
                )
                return compressed
            self.logger.warning("compression_over_target", compressed_bytes=size, target_bytes=target)
            source = compressed if size else content
            return truncate_to_size(source, target, self.settings.safety_margin)

        return truncate_to_size(content, target, self.settings.safety_margin)


def is_size_error(error: BaseException) -> bool:
    message = str(error)
    return any(marker in message for marker in SIZE_ERROR_MARKERS)


async def store_with_auto_compression(
    store_fn: Callable[[str], Awaitable[T]],
    content: str,
    metadata: dict[str, Any],
    content_type: str,
    transformer: ResilientTransformer,
) -> T:
    """
    Store content, compressing it first when content plus metadata is too big.

    A size error from ``store_fn`` despite a passing estimate also triggers
    compression and one retry. Any other error propagates.
    """
    settings = transformer.settings
    logger = transformer.logger
    limit = settings.metadata_limit_bytes
    initial = metadata_size(content, metadata)

    logger.info(
        "store_size_checked",
        content_type=content_type,
        estimated_bytes=initial,
        limit_bytes=limit,
        utilization_percent=round(initial / limit * 100),
    )

    if initial <= limit:
        try:
            return await store_fn(content)
        except Exception as e:
            if not is_size_error(e):
                raise
            logger.warning("store_size_error_despite_estimate", estimated_bytes=initial, error=str(e)[:200])

    metadata_bytes = initial - utf8_size(content)
    target = max(0, min(settings.default_target_bytes, limit - metadata_bytes))
    compressed = await transformer.transform(content, target, content_type)
    logger.info(
        "store_retry_compressed",
        content_type=content_type,
        original_bytes=initial,
        compressed_bytes=metadata_size(compressed, metadata),
    )
    return await store_fn(compressed)
