"""
Tool Converter - OpenAI function calling format conversion.

Converts provider-neutral tool schemas and conversation turns into the
message format used by OpenAI-style chat completion APIs (litellm).
"""

import json
from typing import Any

from coachforce.core.domain.models import ConversationState, Turn, TurnRole


def tools_to_openai_format(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """
    Convert ``{"name", "description", "input_schema"}`` schemas to OpenAI tools.

    Returns:
        [{"type": "function", "function": {"name", "description", "parameters"}}, ...]
    """
    return [
        {
            "type": "function",
            "function": {
                "name": tool["name"],
                "description": tool.get("description", ""),
                "parameters": tool.get("input_schema")
                or {"type": "object", "properties": {}},
            },
        }
        for tool in tools
    ]


def tool_result_to_message(
    tool_call_id: str,
    result: dict[str, Any],
    max_output_chars: int = 20000,
) -> dict[str, Any]:
    """
    Convert one tool result block to an OpenAI tool message.

    Large fields are truncated to keep the next model call within limits.
    """
    truncated_result = _truncate_tool_result(result, max_output_chars)
    content = json.dumps(truncated_result, ensure_ascii=False, default=str)
    return {
        "role": "tool",
        "tool_call_id": tool_call_id,
        "content": content,
    }


def _truncate_tool_result(
    result: dict[str, Any],
    max_chars: int,
) -> dict[str, Any]:
    """
    Truncate large fields in a tool result.

    Handles the fields that tend to carry bulk output: output, result,
    content, data, and prunedWorkoutTemplates.
    """
    truncated = result.copy()
    large_fields = ["output", "result", "content", "data", "prunedWorkoutTemplates"]

    for field in large_fields:
        if field in truncated:
            value = truncated[field]
            if isinstance(value, str) and len(value) > max_chars:
                overflow = len(value) - max_chars
                truncated[field] = (
                    value[:max_chars]
                    + f"\n\n[... TRUNCATED - {overflow} more chars ...]"
                )
            elif isinstance(value, (list, dict)):
                value_str = json.dumps(value, ensure_ascii=False, default=str)
                if len(value_str) > max_chars:
                    overflow = len(value_str) - max_chars
                    truncated[field] = (
                        value_str[:max_chars]
                        + f"\n\n[... TRUNCATED - {overflow} more chars ...]"
                    )

    return truncated


def assistant_turn_to_message(turn: Turn) -> dict[str, Any]:
    """
    Convert an assistant turn to an OpenAI assistant message.

    Tool-use blocks become ``tool_calls`` with JSON-encoded arguments;
    content is None when the turn carries no text.
    """
    tool_calls = [
        {
            "id": block["id"],
            "type": "function",
            "function": {
                "name": block["name"],
                "arguments": json.dumps(block.get("input", {}), ensure_ascii=False),
            },
        }
        for block in turn.content
        if block.get("type") == "tool_use"
    ]
    message: dict[str, Any] = {"role": "assistant", "content": turn.text or None}
    if tool_calls:
        message["tool_calls"] = tool_calls
    return message


def conversation_to_openai_messages(
    system_prompt: str, state: ConversationState
) -> list[dict[str, Any]]:
    """Flatten conversation state to an OpenAI message list, system prompt first."""
    messages: list[dict[str, Any]] = [{"role": "system", "content": system_prompt}]
    for turn in state.turns:
        if turn.role == TurnRole.USER:
            messages.append({"role": "user", "content": turn.text})
        elif turn.role == TurnRole.ASSISTANT:
            messages.append(assistant_turn_to_message(turn))
        else:
            for block in turn.content:
                payload = block.get("content")
                if not isinstance(payload, dict):
                    payload = {"result": payload}
                messages.append(tool_result_to_message(block["tool_use_id"], payload))
    return messages
