"""
Streamed Model Events

Low-level events produced by a single streamed model call. They are consumed
in order by the ReAct loop and never persisted:

- TextDelta: a fragment of assistant text, forwarded to the client at once
- ToolCallStarted / ToolCallDelta / ToolCallStopped: the lifecycle of one
  tool invocation whose JSON input arrives in fragments
- TurnComplete: the end of the model turn with its stop reason and usage
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


class StopReason(str, Enum):
    """Terminal classification of one model turn."""

    END_TURN = "end_turn"
    STOP_SEQUENCE = "stop_sequence"
    CONTENT_FILTERED = "content_filtered"
    MAX_TOKENS = "max_tokens"
    TOOL_USE = "tool_use"

    @classmethod
    def parse(cls, value: str | None) -> "StopReason | None":
        """Return the matching member, or None for unknown values."""
        if value is None:
            return None
        try:
            return cls(value)
        except ValueError:
            return None


TERMINAL_STOP_REASONS = frozenset(
    {
        StopReason.END_TURN,
        StopReason.STOP_SEQUENCE,
        StopReason.CONTENT_FILTERED,
        StopReason.MAX_TOKENS,
    }
)


@dataclass
class Usage:
    """Token usage reported by the model for one turn."""

    input_tokens: int = 0
    output_tokens: int = 0

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class TextDelta:
    text: str


@dataclass
class ToolCallStarted:
    call_id: str
    name: str


@dataclass
class ToolCallDelta:
    call_id: str
    fragment: str


@dataclass
class ToolCallStopped:
    call_id: str


@dataclass
class TurnComplete:
    """
    End of a model turn.

    Attributes:
        stop_reason: Raw stop reason string as reported by the client
        content: Full assistant content blocks for the turn (may be empty,
            in which case the loop rebuilds them from the streamed events)
        usage: Token usage for this turn
    """

    stop_reason: str
    content: list[dict[str, Any]] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)


ModelEvent = Union[TextDelta, ToolCallStarted, ToolCallDelta, ToolCallStopped, TurnComplete]
