"""
LiteLLM model client.

Adapts ``litellm.acompletion`` to the ModelClientProtocol:

- ``stream`` converts streamed chat-completion chunks into model events,
  keyed by tool-call index the way OpenAI-style providers stream them
- ``call_tool`` forces a single function call and returns its parsed input
- ``complete_text`` returns plain text

Provider failures are raised as ThrottlingError or ModelCallError. The
non-streaming calls retry errors listed in the retry policy.
"""

import asyncio
import json
import time
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

import litellm
import structlog

from coachforce.core.domain.errors import (
    ConfigurationError,
    ModelCallError,
    ThrottlingError,
    is_throttling_error,
)
from coachforce.core.domain.events import (
    ModelEvent,
    StopReason,
    TextDelta,
    ToolCallDelta,
    ToolCallStarted,
    ToolCallStopped,
    TurnComplete,
    Usage,
)
from coachforce.core.domain.models import ConversationState
from coachforce.infrastructure.tools.tool_converter import (
    conversation_to_openai_messages,
    tools_to_openai_format,
)

FINISH_REASON_MAP = {
    "stop": StopReason.END_TURN,
    "end_turn": StopReason.END_TURN,
    "tool_calls": StopReason.TOOL_USE,
    "function_call": StopReason.TOOL_USE,
    "tool_use": StopReason.TOOL_USE,
    "length": StopReason.MAX_TOKENS,
    "max_tokens": StopReason.MAX_TOKENS,
    "content_filter": StopReason.CONTENT_FILTERED,
    "stop_sequence": StopReason.STOP_SEQUENCE,
}


@dataclass
class RetryPolicy:
    """Retry policy configuration."""

    max_attempts: int = 3
    backoff_multiplier: float = 2.0
    timeout: int = 120
    retry_on_errors: list[str] = field(default_factory=list)


def map_finish_reason(finish_reason: str | None, has_tool_calls: bool) -> StopReason:
    if has_tool_calls and finish_reason in (None, "stop", "tool_calls", "function_call", "tool_use"):
        return StopReason.TOOL_USE
    if finish_reason is None:
        return StopReason.END_TURN
    return FINISH_REASON_MAP.get(finish_reason, StopReason.END_TURN)


def _usage_from(raw: Any) -> Usage:
    if raw is None:
        return Usage()
    if isinstance(raw, dict):
        return Usage(
            input_tokens=int(raw.get("prompt_tokens", 0) or 0),
            output_tokens=int(raw.get("completion_tokens", 0) or 0),
        )
    return Usage(
        input_tokens=int(getattr(raw, "prompt_tokens", 0) or 0),
        output_tokens=int(getattr(raw, "completion_tokens", 0) or 0),
    )


class LiteLLMClient:
    """Model client backed by litellm with model alias resolution."""

    def __init__(
        self,
        models: dict[str, str],
        default_model: str = "main",
        temperature: float = 0.2,
        max_tokens: int = 4096,
        retry_policy: RetryPolicy | None = None,
    ):
        if not models:
            raise ConfigurationError("LLM config must define at least one model in 'models'")
        self.models = dict(models)
        self.default_model = default_model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.retry_policy = retry_policy or RetryPolicy()
        self.logger = structlog.get_logger().bind(component="litellm_client")

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "LiteLLMClient":
        retry = config.get("retry_policy", {})
        return cls(
            models=config.get("models", {}),
            default_model=config.get("default_model", "main"),
            temperature=float(config.get("temperature", 0.2)),
            max_tokens=int(config.get("max_tokens", 4096)),
            retry_policy=RetryPolicy(
                max_attempts=int(retry.get("max_attempts", 3)),
                backoff_multiplier=float(retry.get("backoff_multiplier", 2.0)),
                timeout=int(retry.get("timeout", 120)),
                retry_on_errors=list(retry.get("retry_on_errors", [])),
            ),
        )

    def resolve_model(self, model: str | None) -> str:
        alias = model or self.default_model
        return self.models.get(alias, alias)

    def _wrap_error(self, error: Exception) -> ModelCallError:
        if isinstance(error, ModelCallError):
            return error
        if is_throttling_error(error):
            return ThrottlingError(f"{type(error).__name__}: {error}")
        return ModelCallError(f"{type(error).__name__}: {error}")

    async def stream(
        self,
        system_prompt: str,
        state: ConversationState,
        tools: list[dict[str, Any]],
    ) -> AsyncIterator[ModelEvent]:
        actual_model = self.resolve_model(None)
        messages = conversation_to_openai_messages(system_prompt, state)
        params: dict[str, Any] = {
            "model": actual_model,
            "messages": messages,
            "stream": True,
            "stream_options": {"include_usage": True},
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "timeout": self.retry_policy.timeout,
        }
        if tools:
            params["tools"] = tools_to_openai_format(tools)
            params["tool_choice"] = "auto"

        self.logger.info("llm_stream_started", model=actual_model, message_count=len(messages))
        start_time = time.time()

        call_ids: dict[int, str] = {}
        finish_reason: str | None = None
        usage = Usage()

        try:
            response = await litellm.acompletion(**params)
            async for chunk in response:
                chunk_usage = getattr(chunk, "usage", None)
                if chunk_usage:
                    usage = _usage_from(chunk_usage)
                choices = getattr(chunk, "choices", None) or []
                if not choices:
                    continue
                choice = choices[0]
                delta = getattr(choice, "delta", None)

                content = getattr(delta, "content", None) if delta else None
                if content:
                    yield TextDelta(content)

                for tc in (getattr(delta, "tool_calls", None) or []) if delta else []:
                    index = getattr(tc, "index", None) or 0
                    function = getattr(tc, "function", None)
                    if index not in call_ids:
                        call_id = getattr(tc, "id", None) or f"call_{uuid.uuid4().hex[:12]}"
                        call_ids[index] = call_id
                        yield ToolCallStarted(call_id, getattr(function, "name", None) or "")
                    arguments = getattr(function, "arguments", None) if function else None
                    if arguments:
                        yield ToolCallDelta(call_ids[index], arguments)

                if getattr(choice, "finish_reason", None):
                    finish_reason = choice.finish_reason
        except Exception as e:
            wrapped = self._wrap_error(e)
            self.logger.error(
                "llm_stream_failed",
                model=actual_model,
                error_type=type(e).__name__,
                error=str(e)[:200],
                throttled=isinstance(wrapped, ThrottlingError),
            )
            raise wrapped from e

        for call_id in call_ids.values():
            yield ToolCallStopped(call_id)

        stop_reason = map_finish_reason(finish_reason, bool(call_ids))
        self.logger.info(
            "llm_stream_complete",
            model=actual_model,
            stop_reason=stop_reason.value,
            tool_calls=len(call_ids),
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            latency_ms=int((time.time() - start_time) * 1000),
        )
        yield TurnComplete(stop_reason=stop_reason.value, usage=usage)

    async def _complete(self, model: str | None, messages: list[dict[str, Any]], **kwargs: Any) -> Any:
        """acompletion with the retry policy; raises wrapped errors."""
        actual_model = self.resolve_model(model)
        params = {
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            **{k: v for k, v in kwargs.items() if v is not None},
        }
        policy = self.retry_policy
        for attempt in range(policy.max_attempts):
            try:
                start_time = time.time()
                response = await litellm.acompletion(
                    model=actual_model,
                    messages=messages,
                    timeout=policy.timeout,
                    **params,
                )
                usage = _usage_from(getattr(response, "usage", None))
                self.logger.info(
                    "llm_completion_success",
                    model=actual_model,
                    tokens=usage.total_tokens,
                    latency_ms=int((time.time() - start_time) * 1000),
                )
                return response
            except Exception as e:
                error_type = type(e).__name__
                error_msg = str(e)
                should_retry = attempt < policy.max_attempts - 1 and any(
                    err_type in error_type or err_type in error_msg
                    for err_type in policy.retry_on_errors
                )
                if should_retry:
                    backoff_time = policy.backoff_multiplier**attempt
                    self.logger.warning(
                        "llm_completion_retry",
                        model=actual_model,
                        error_type=error_type,
                        attempt=attempt + 1,
                        backoff_seconds=backoff_time,
                    )
                    await asyncio.sleep(backoff_time)
                    continue
                self.logger.error(
                    "llm_completion_failed",
                    model=actual_model,
                    error_type=error_type,
                    error=error_msg[:200],
                    attempts=attempt + 1,
                )
                raise self._wrap_error(e) from e
        raise ModelCallError("Max retries exceeded")

    async def call_tool(
        self,
        system_prompt: str,
        prompt: str,
        tool: dict[str, Any],
        model: str | None = None,
    ) -> dict[str, Any]:
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": prompt},
        ]
        response = await self._complete(
            model,
            messages,
            tools=tools_to_openai_format([tool]),
            tool_choice={"type": "function", "function": {"name": tool["name"]}},
        )
        choice = response.choices[0]
        tool_calls = getattr(choice.message, "tool_calls", None) or []
        stop_reason = map_finish_reason(getattr(choice, "finish_reason", None), bool(tool_calls))
        if not tool_calls:
            self.logger.warning("llm_tool_call_missing", tool=tool["name"])
            return {"tool_name": None, "input": {}, "stop_reason": stop_reason.value}

        call = tool_calls[0]
        raw_arguments = call.function.arguments or "{}"
        try:
            arguments = json.loads(raw_arguments)
        except json.JSONDecodeError as e:
            self.logger.warning(
                "llm_tool_args_parse_failed",
                tool=tool["name"],
                error=str(e),
                raw_preview=raw_arguments[:200],
            )
            arguments = {}
        return {
            "tool_name": call.function.name,
            "input": arguments if isinstance(arguments, dict) else {},
            "stop_reason": stop_reason.value,
        }

    async def complete_text(
        self,
        system_prompt: str,
        prompt: str,
        model: str | None = None,
        max_tokens: int | None = None,
    ) -> str:
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": prompt},
        ]
        response = await self._complete(model, messages, max_tokens=max_tokens)
        return response.choices[0].message.content or ""
