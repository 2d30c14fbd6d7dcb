"""
Application Layer - Coach Executor Service

Service layer used by both the CLI and the API. It creates agents through
CoachFactory, owns the per-job JobContext, and turns loop output into
plain event dicts for streaming transports. Side tasks started by jobs
(semantic index writes) belong to the executor and are only awaited by
``shutdown()``, never before a result is returned.
"""

import uuid
from collections.abc import AsyncIterator
from datetime import datetime
from typing import Any, Optional

import structlog

from coachforce.application.factory import CoachFactory
from coachforce.core.domain.models import LoopResult
from coachforce.core.tools.job_context import DetachedTasks, JobContext

logger = structlog.get_logger()


def result_event(result: LoopResult) -> dict[str, Any]:
    """Final ``complete`` event for a finished loop run."""
    return {
        "type": "complete",
        "stopReason": result.stop_reason,
        "iterations": result.iteration_count,
        "toolsUsed": result.tools_used,
        "reachedIterationCap": result.reached_iteration_cap,
        "usage": {
            "inputTokens": result.usage.input_tokens,
            "outputTokens": result.usage.output_tokens,
        },
        "error": result.error,
    }


class CoachExecutor:
    """Service layer orchestrating conversation and program design jobs."""

    def __init__(self, factory: Optional[CoachFactory] = None, profile: str = "dev"):
        self.factory = factory or CoachFactory()
        self.profile = profile
        self.detached = DetachedTasks()
        self.logger = logger.bind(component="coach_executor")

    def _new_context(self, user_id: str, job_id: Optional[str] = None, **values: Any) -> JobContext:
        return JobContext(
            job_id=job_id or self._generate_job_id(),
            user_id=user_id,
            detached=self.detached,
            **values,
        )

    async def shutdown(self) -> None:
        """Wait for outstanding side tasks before the process exits."""
        if len(self.detached):
            self.logger.info("executor.shutdown.draining", pending=len(self.detached))
        await self.detached.drain()

    async def stream_conversation(
        self,
        message: str,
        user_id: str,
        history: Optional[list[dict[str, Any]]] = None,
        job_id: Optional[str] = None,
        coach_name: Optional[str] = None,
        coach_persona: str = "",
    ) -> AsyncIterator[dict[str, Any]]:
        """
        Stream one coaching reply.

        Yields ``chunk`` and ``contextual`` event dicts while the loop runs,
        then one ``complete`` event. A failure after streaming started is
        logged and reported as a final ``error`` event.

        Raises:
            ConfigurationError: If the message is empty (raised before any event)
        """
        agent = self.factory.create_conversation_agent(
            profile=self.profile, coach_name=coach_name, coach_persona=coach_persona
        )
        context = self._new_context(user_id, job_id)
        loop_run = agent.stream(message, context, history)

        self.logger.info(
            "conversation.streaming.started",
            job_id=context.job_id,
            user_id=user_id,
            history_turns=len(history or []),
        )
        start_time = datetime.now()
        try:
            async for event in loop_run:
                yield event.to_dict()
        except Exception as e:
            self.logger.error(
                "conversation.streaming.failed",
                job_id=context.job_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            yield {"type": "error", "error": str(e), "errorType": type(e).__name__}
            return

        result = loop_run.result
        self.logger.info(
            "conversation.streaming.completed",
            job_id=context.job_id,
            stop_reason=result.stop_reason,
            duration_seconds=(datetime.now() - start_time).total_seconds(),
        )
        yield result_event(result)

    async def run_conversation(
        self,
        message: str,
        user_id: str,
        history: Optional[list[dict[str, Any]]] = None,
    ) -> LoopResult:
        agent = self.factory.create_conversation_agent(profile=self.profile)
        context = self._new_context(user_id)
        return await agent.reply(message, context, history)

    async def design_program(
        self,
        user_id: str,
        requirements: dict[str, Any],
        program_id: Optional[str] = None,
    ) -> dict[str, Any]:
        """Run one program design job; its index write continues in the background."""
        program_id = program_id or f"program_{user_id}_{uuid.uuid4().hex[:8]}"
        agent = self.factory.create_program_designer(profile=self.profile)
        context = self._new_context(
            user_id, program_id=program_id, requirements_input=requirements
        )

        self.logger.info(
            "program.design.started",
            job_id=context.job_id,
            user_id=user_id,
            program_id=program_id,
        )
        start_time = datetime.now()
        result = await agent.design_program(context)

        self.logger.info(
            "program.design.completed",
            job_id=context.job_id,
            success=result["success"],
            duration_seconds=(datetime.now() - start_time).total_seconds(),
        )
        return result

    def _generate_job_id(self) -> str:
        return str(uuid.uuid4())
