"""
Protocol for the language-model inference service.

The ReAct loop only needs ``stream``. Program generation, pruning and the
resilient transform helper use the non-streaming ``call_tool`` and
``complete_text`` calls.
"""

from collections.abc import AsyncIterator
from typing import Any, Protocol

from coachforce.core.domain.events import ModelEvent
from coachforce.core.domain.models import ConversationState


class ModelClientProtocol(Protocol):
    """Narrow interface over a language-model provider."""

    def stream(
        self,
        system_prompt: str,
        state: ConversationState,
        tools: list[dict[str, Any]],
    ) -> AsyncIterator[ModelEvent]:
        """
        Stream one model turn.

        Yields TextDelta, ToolCallStarted, ToolCallDelta and ToolCallStopped
        events, then exactly one TurnComplete.

        Raises:
            ThrottlingError: When the provider rate-limits the call
            ModelCallError: For any other provider failure
        """
        ...

    async def call_tool(
        self,
        system_prompt: str,
        prompt: str,
        tool: dict[str, Any],
        model: str | None = None,
    ) -> dict[str, Any]:
        """
        Force a single structured tool call.

        ``tool`` is ``{"name", "description", "input_schema"}``.

        Returns:
            ``{"tool_name": str | None, "input": dict, "stop_reason": str}``
        """
        ...

    async def complete_text(
        self,
        system_prompt: str,
        prompt: str,
        model: str | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Plain text completion."""
        ...
