"""
ReAct Loop Engine - streaming reason/act/observe driver

Drives a language model through iterations of:
1. Stream a model turn with the current conversation state and tool schemas
2. Forward text deltas to the caller immediately; buffer tool-call fragments
3. On ``tool_use``: parse each call, run the tools one after another, and
   append one combined tool-result turn
4. Repeat until a terminal stop reason or the iteration cap

The engine is consumed lazily: ``run()`` returns a LoopRun that yields
OutboundEvents and exposes the aggregate LoopResult once exhausted.
Every started tool call gets exactly one ToolResult, even when its input
cannot be parsed or its tool does not exist.
"""

import json
import random
from collections.abc import AsyncIterator, Callable
from typing import Any

import structlog

from coachforce.core.domain.errors import ConfigurationError
from coachforce.core.domain.events import (
    TERMINAL_STOP_REASONS,
    StopReason,
    TextDelta,
    ToolCallDelta,
    ToolCallStarted,
    ToolCallStopped,
    TurnComplete,
    Usage,
)
from coachforce.core.domain.models import (
    ConversationState,
    LoopResult,
    OutboundEvent,
    PendingToolCall,
    ToolCall,
    ToolResult,
)
from coachforce.core.interfaces.llm import ModelClientProtocol
from coachforce.core.tools.base import validate_required_fields
from coachforce.core.tools.job_context import JobContext
from coachforce.core.tools.registry import ToolRegistry

Gate = Callable[[str, JobContext], dict[str, Any] | None]

PREVIEW_CHARS = 200


class LoopRun:
    """
    One lazily consumed loop execution.

    Iterate it to receive OutboundEvents; ``result`` is filled in as the
    run progresses and is final once iteration finishes. The conversation
    state is owned by this run only.
    """

    def __init__(
        self,
        loop: "ReActLoop",
        user_input: str,
        context: JobContext,
        state: ConversationState | None = None,
    ):
        self._loop = loop
        self.user_input = user_input
        self.context = context
        self.state = state if state is not None else ConversationState()
        self.result = LoopResult()

    def __aiter__(self) -> AsyncIterator[OutboundEvent]:
        return self._loop._drive(self)


class ReActLoop:
    """Streaming ReAct loop over a closed tool registry."""

    DEFAULT_MAX_ITERATIONS = 15

    def __init__(
        self,
        model_client: ModelClientProtocol,
        registry: ToolRegistry,
        system_prompt: str,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        gate: Gate | None = None,
        rng: random.Random | None = None,
    ):
        """
        Args:
            model_client: Streamed model client
            registry: Tools the model may call
            system_prompt: System prompt sent with every model call
            max_iterations: Hard cap on model calls per run
            gate: Optional callable returning a blocked payload for a tool id
            rng: Random source for bridging messages (tests pass a seeded one)
        """
        if max_iterations < 1:
            raise ConfigurationError(f"max_iterations must be >= 1, got {max_iterations}")
        self.model_client = model_client
        self.registry = registry
        self.system_prompt = system_prompt
        self.max_iterations = max_iterations
        self.gate = gate
        self._rng = rng or random.Random()
        self.logger = structlog.get_logger().bind(component="react_loop")

    def run(
        self,
        user_input: str,
        context: JobContext,
        state: ConversationState | None = None,
    ) -> LoopRun:
        if not user_input or not user_input.strip():
            raise ConfigurationError("user_input is required")
        return LoopRun(self, user_input, context, state)

    async def converse(
        self,
        user_input: str,
        context: JobContext,
        state: ConversationState | None = None,
    ) -> LoopResult:
        """Run to completion, discarding outbound events."""
        loop_run = self.run(user_input, context, state)
        async for _ in loop_run:
            pass
        return loop_run.result

    async def _drive(self, run: LoopRun) -> AsyncIterator[OutboundEvent]:
        result = run.result
        state = run.state
        state.append_user(run.user_input)
        tool_schemas = self.registry.schemas()
        text_parts: list[str] = []

        self.logger.info(
            "loop_start",
            job_id=run.context.job_id,
            tools=self.registry.ids,
            max_iterations=self.max_iterations,
        )

        while result.iteration_count < self.max_iterations:
            missing = state.unanswered_tool_calls()
            if missing:
                self.logger.error("tool_results_missing", call_ids=missing)
                result.stop_reason = "protocol_error"
                result.error = f"Tool calls without results: {', '.join(missing)}"
                break

            result.iteration_count += 1
            iteration = result.iteration_count
            self.logger.info("loop_step", job_id=run.context.job_id, step=iteration)

            if iteration > 1:
                yield OutboundEvent.bridging(self._rng)

            pending: dict[str, PendingToolCall] = {}
            call_order: list[str] = []
            finished: dict[str, ToolCall] = {}
            turn_text: list[str] = []
            turn_complete: TurnComplete | None = None

            try:
                async for event in self.model_client.stream(
                    self.system_prompt, state, tool_schemas
                ):
                    if isinstance(event, TextDelta):
                        if not event.text:
                            continue
                        if not turn_text and text_parts:
                            text_parts.append("\n\n")
                            yield OutboundEvent.chunk("\n\n")
                        turn_text.append(event.text)
                        text_parts.append(event.text)
                        yield OutboundEvent.chunk(event.text)

                    elif isinstance(event, ToolCallStarted):
                        if event.call_id in pending or event.call_id in finished:
                            self.logger.warning("tool_call_duplicate_start", call_id=event.call_id)
                            continue
                        pending[event.call_id] = PendingToolCall(event.call_id, event.name)
                        call_order.append(event.call_id)

                    elif isinstance(event, ToolCallDelta):
                        accumulator = pending.get(event.call_id)
                        if accumulator is None:
                            self.logger.warning("tool_call_fragment_orphaned", call_id=event.call_id)
                            continue
                        accumulator.append(event.fragment)

                    elif isinstance(event, ToolCallStopped):
                        accumulator = pending.pop(event.call_id, None)
                        if accumulator is None:
                            self.logger.warning("tool_call_stop_orphaned", call_id=event.call_id)
                            continue
                        finished[event.call_id] = accumulator.finalize()

                    elif isinstance(event, TurnComplete):
                        turn_complete = event
            except ConfigurationError:
                raise
            except Exception as e:
                self.logger.error(
                    "model_stream_failed",
                    step=iteration,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                result.stop_reason = "model_error"
                result.error = str(e)
                break

            for call_id, accumulator in pending.items():
                self.logger.warning("tool_call_not_stopped", call_id=call_id, tool=accumulator.name)
                finished[call_id] = accumulator.finalize()
            pending.clear()
            calls = [finished[call_id] for call_id in call_order]

            if turn_complete is None:
                self.logger.error("turn_incomplete", step=iteration)
                result.stop_reason = "model_error"
                result.error = "Model stream ended without turn completion"
                break

            result.usage = result.usage + (turn_complete.usage or Usage())
            state.append_assistant(
                turn_complete.content or self._build_assistant_content("".join(turn_text), calls)
            )

            stop_reason = StopReason.parse(turn_complete.stop_reason)
            result.stop_reason = turn_complete.stop_reason

            if stop_reason in TERMINAL_STOP_REASONS:
                self.logger.info("loop_terminal_stop", step=iteration, stop_reason=stop_reason.value)
                break

            if stop_reason is not StopReason.TOOL_USE:
                self.logger.warning(
                    "unknown_stop_reason", step=iteration, stop_reason=turn_complete.stop_reason
                )
                break

            if not calls:
                self.logger.error("tool_use_without_calls", step=iteration)
                result.stop_reason = "protocol_error"
                result.error = "Model reported tool_use but no tool calls were collected"
                break

            self.logger.info(
                "tool_calls_received",
                step=iteration,
                count=len(calls),
                tools=[c.name for c in calls],
            )

            results: list[ToolResult] = []
            for call in calls:
                tool = self.registry.get(call.name)
                message = self._pick_contextual_message(tool)
                if message:
                    yield OutboundEvent.contextual(message)
                results.append(await self._execute_tool(call, run.context))
                result.tools_used.append(call.name)

            state.append_tool_results(results)
        else:
            result.reached_iteration_cap = True
            result.stop_reason = "iteration_cap"
            self.logger.warning("iteration_cap_reached", max_iterations=self.max_iterations)

        result.text = "".join(text_parts)
        self.logger.info(
            "loop_complete",
            job_id=run.context.job_id,
            iterations=result.iteration_count,
            stop_reason=result.stop_reason,
            tools_used=result.tools_used,
            input_tokens=result.usage.input_tokens,
            output_tokens=result.usage.output_tokens,
        )

    @staticmethod
    def _build_assistant_content(text: str, calls: list[ToolCall]) -> list[dict[str, Any]]:
        content: list[dict[str, Any]] = []
        if text:
            content.append({"type": "text", "text": text})
        content.extend(call.to_block() for call in calls)
        return content

    def _pick_contextual_message(self, tool: Any) -> str | None:
        message = getattr(tool, "contextual_message", None) if tool is not None else None
        if isinstance(message, (list, tuple)):
            return self._rng.choice(message) if message else None
        return message

    async def _execute_tool(self, call: ToolCall, context: JobContext) -> ToolResult:
        """Run one tool call, converting every failure into an error result."""
        if call.parse_error is not None:
            self.logger.warning(
                "tool_input_parse_failed",
                tool=call.name,
                call_id=call.call_id,
                error=call.parse_error,
                raw_preview=call.raw_input[:PREVIEW_CHARS],
            )
            return ToolResult.error(
                call.call_id, f"Invalid tool input JSON: {call.parse_error}", call.name
            )

        tool = self.registry.get(call.name)
        if tool is None:
            self.logger.warning("tool_not_found", tool=call.name, call_id=call.call_id)
            return ToolResult.error(call.call_id, f"Tool not found: {call.name}", call.name)

        valid, problem = validate_required_fields(tool.input_schema, call.input)
        if not valid:
            self.logger.warning("tool_input_invalid", tool=call.name, error=problem)
            return ToolResult.error(call.call_id, problem or "Invalid input", call.name)

        if self.gate is not None:
            blocked = self.gate(tool.id, context)
            if blocked is not None:
                self.logger.warning("tool_blocked", tool=tool.id, reason=blocked.get("reason"))
                return ToolResult(call.call_id, blocked, status="error", tool_name=tool.id)

        self.logger.info(
            "tool_execute",
            tool=tool.id,
            call_id=call.call_id,
            input_preview=json.dumps(call.input, default=str)[:PREVIEW_CHARS],
        )
        try:
            raw = await tool.execute(call.input, context)
        except Exception as e:
            self.logger.error(
                "tool_exception",
                tool=tool.id,
                call_id=call.call_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return ToolResult.error(call.call_id, str(e) or type(e).__name__, tool.id)

        payload = self._normalize_payload(raw)
        status = "error" if payload.get("error") else "success"
        self.logger.info(
            "tool_complete",
            tool=tool.id,
            call_id=call.call_id,
            status=status,
            result_size=len(json.dumps(payload, default=str)),
        )
        return ToolResult(call.call_id, payload, status=status, tool_name=tool.id)

    @staticmethod
    def _normalize_payload(raw: Any) -> dict[str, Any]:
        if raw is None:
            return {}
        if isinstance(raw, dict):
            return raw
        return {"result": raw}
