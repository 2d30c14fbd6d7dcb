"""
Core Domain Models

Data models shared by the ReAct loop, the tools, and the outer surfaces:
conversation turns, tool calls and results, validation verdicts, the
aggregate loop result, and the outbound events sent to clients.
"""

import json
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from coachforce.core.domain.events import Usage

BRIDGING_MESSAGES: tuple[str, ...] = (
    "Processing your request...",
    "Working on that...",
    "Pulling that together...",
    "One moment while I check...",
)


class TurnRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL_RESULT = "tool_result"


@dataclass
class Turn:
    """
    One entry of the conversation state.

    Content is a list of blocks: ``{"type": "text", "text": ...}``,
    ``{"type": "tool_use", "id": ..., "name": ..., "input": {...}}`` or
    ``{"type": "tool_result", "tool_use_id": ..., "content": ..., "status": ...}``.
    """

    role: TurnRole
    content: list[dict[str, Any]]

    def tool_use_ids(self) -> list[str]:
        return [b["id"] for b in self.content if b.get("type") == "tool_use"]

    def tool_result_ids(self) -> list[str]:
        return [b["tool_use_id"] for b in self.content if b.get("type") == "tool_result"]

    @property
    def text(self) -> str:
        return "".join(b.get("text", "") for b in self.content if b.get("type") == "text")


class ConversationState:
    """
    Ordered, append-only sequence of turns owned by one loop execution.

    Every tool_use block in an assistant turn must be answered by exactly one
    tool_result block (matched by call id) in the turn that follows it.
    """

    def __init__(self, turns: list[Turn] | None = None):
        self._turns: list[Turn] = list(turns or [])

    @classmethod
    def from_history(cls, history: list[dict[str, Any]] | None) -> "ConversationState":
        """Build state from plain ``{"role", "content"}`` chat history."""
        state = cls()
        for message in history or []:
            role = message.get("role")
            content = message.get("content", "")
            if role in ("user", "assistant") and content:
                state._turns.append(
                    Turn(role=TurnRole(role), content=[{"type": "text", "text": content}])
                )
        return state

    @property
    def turns(self) -> tuple[Turn, ...]:
        return tuple(self._turns)

    def __len__(self) -> int:
        return len(self._turns)

    def append_user(self, text: str) -> None:
        self._turns.append(Turn(role=TurnRole.USER, content=[{"type": "text", "text": text}]))

    def append_assistant(self, content: list[dict[str, Any]]) -> None:
        self._turns.append(Turn(role=TurnRole.ASSISTANT, content=list(content)))

    def append_tool_results(self, results: list["ToolResult"]) -> None:
        """Append one combined tool-result turn, in call order."""
        self._turns.append(
            Turn(role=TurnRole.TOOL_RESULT, content=[r.to_block() for r in results])
        )

    def unanswered_tool_calls(self) -> list[str]:
        """
        Return tool_use ids that have no matching result yet.

        Only the most recent assistant turn can be unanswered; anything
        earlier would already have been sent to the model.
        """
        for index in range(len(self._turns) - 1, -1, -1):
            turn = self._turns[index]
            if turn.role != TurnRole.ASSISTANT:
                continue
            call_ids = turn.tool_use_ids()
            if not call_ids:
                return []
            answered: list[str] = []
            if index + 1 < len(self._turns):
                answered = self._turns[index + 1].tool_result_ids()
            return [call_id for call_id in call_ids if answered.count(call_id) != 1]
        return []


@dataclass
class PendingToolCall:
    """
    Accumulator for one streamed tool call.

    Fragments are kept in arrival order and parsed only once, at stop.
    """

    call_id: str
    name: str
    fragments: list[str] = field(default_factory=list)

    def append(self, fragment: str) -> None:
        self.fragments.append(fragment)

    def finalize(self) -> "ToolCall":
        raw = "".join(self.fragments)
        if not raw.strip():
            return ToolCall(call_id=self.call_id, name=self.name, input={}, raw_input=raw)
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            return ToolCall(
                call_id=self.call_id,
                name=self.name,
                input={},
                raw_input=raw,
                parse_error=str(e),
            )
        if not isinstance(parsed, dict):
            return ToolCall(
                call_id=self.call_id,
                name=self.name,
                input={},
                raw_input=raw,
                parse_error=f"Tool input must be a JSON object, got {type(parsed).__name__}",
            )
        return ToolCall(call_id=self.call_id, name=self.name, input=parsed, raw_input=raw)


@dataclass
class ToolCall:
    call_id: str
    name: str
    input: dict[str, Any]
    raw_input: str = ""
    parse_error: str | None = None

    def to_block(self) -> dict[str, Any]:
        return {"type": "tool_use", "id": self.call_id, "name": self.name, "input": self.input}


@dataclass
class ToolResult:
    """
    Result of one tool call.

    Attributes:
        call_id: Identifier of the tool call this answers
        payload: JSON-serializable result returned to the model
        status: "success" or "error"
        tool_name: Name of the tool that was called
    """

    call_id: str
    payload: dict[str, Any]
    status: str = "success"
    tool_name: str = ""

    @property
    def is_error(self) -> bool:
        return self.status == "error"

    @classmethod
    def error(cls, call_id: str, message: str, tool_name: str = "") -> "ToolResult":
        return cls(call_id=call_id, payload={"error": message}, status="error", tool_name=tool_name)

    def to_block(self) -> dict[str, Any]:
        return {
            "type": "tool_result",
            "tool_use_id": self.call_id,
            "content": self.payload,
            "status": self.status,
        }


@dataclass
class ValidationVerdict:
    """
    Authoritative outcome of a validation tool.

    Attributes:
        decision_flag: Whether the job may proceed (e.g. isValid / shouldSave)
        blocking_reasons: Human-readable reasons when the flag is negative
        confidence: Confidence score in [0, 1]
        flag_name: Name of the flag in the originating payload
        error: Set when the validation step itself raised
    """

    decision_flag: bool
    blocking_reasons: list[str] = field(default_factory=list)
    confidence: float = 1.0
    flag_name: str = "isValid"
    error: str | None = None

    @property
    def is_negative(self) -> bool:
        return self.error is not None or not self.decision_flag

    @classmethod
    def from_payload(
        cls, payload: dict[str, Any] | None, flag_name: str = "isValid"
    ) -> "ValidationVerdict | None":
        """Build a verdict from a validation tool's payload, if there is one."""
        if not payload:
            return None
        error = payload.get("error")
        if error:
            return cls(
                decision_flag=False,
                blocking_reasons=[str(error)],
                confidence=0.0,
                flag_name=flag_name,
                error=str(error),
            )
        return cls(
            decision_flag=bool(payload.get(flag_name, False)),
            blocking_reasons=list(payload.get("validationIssues", [])),
            confidence=float(payload.get("confidence", 1.0)),
            flag_name=flag_name,
        )


@dataclass
class LoopResult:
    """
    Aggregate result of one ReAct loop run.

    Attributes:
        text: All assistant text streamed during the run
        tools_used: Tool names in call order (repeats included)
        iteration_count: Number of model calls made
        stop_reason: Final stop reason, or "iteration_cap", "protocol_error", "model_error"
        reached_iteration_cap: True when the loop stopped at max_iterations
        usage: Summed token usage across all turns
        error: Message for model_error / protocol_error stops
    """

    text: str = ""
    tools_used: list[str] = field(default_factory=list)
    iteration_count: int = 0
    stop_reason: str | None = None
    reached_iteration_cap: bool = False
    usage: Usage = field(default_factory=Usage)
    error: str | None = None


class OutboundEventType(str, Enum):
    CHUNK = "chunk"
    CONTEXTUAL = "contextual"


@dataclass
class OutboundEvent:
    """Event sent to the client: a text chunk or a contextual progress message."""

    type: OutboundEventType
    content: str

    @classmethod
    def chunk(cls, text: str) -> "OutboundEvent":
        return cls(type=OutboundEventType.CHUNK, content=text)

    @classmethod
    def contextual(cls, message: str) -> "OutboundEvent":
        return cls(type=OutboundEventType.CONTEXTUAL, content=message)

    @classmethod
    def bridging(cls, rng: random.Random | None = None) -> "OutboundEvent":
        chooser = rng or random
        return cls.contextual(chooser.choice(BRIDGING_MESSAGES))

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "content": self.content}

    def to_sse(self) -> str:
        return f"data: {json.dumps(self.to_dict(), ensure_ascii=False)}\n\n"
