"""
Conversation Agent

Streams coaching replies through the ReAct loop. Program design runs as a
separate job with its own JobContext, so the conversation and the program
designer never share a memo.
"""

import uuid
from typing import Any

import structlog

from coachforce.agents.conversation.prompts import build_conversation_prompt
from coachforce.agents.conversation.tools import (
    create_design_program_tool,
    create_recent_workouts_tool,
    create_save_memory_tool,
    create_search_knowledge_tool,
)
from coachforce.agents.program_designer.agent import ProgramDesignerAgent
from coachforce.core.domain.models import ConversationState, LoopResult
from coachforce.core.domain.react_loop import LoopRun, ReActLoop
from coachforce.core.interfaces.llm import ModelClientProtocol
from coachforce.core.interfaces.storage import KeyValueStoreProtocol, VectorStoreProtocol
from coachforce.core.tools.job_context import JobContext
from coachforce.core.tools.registry import ToolRegistry


class ConversationAgent:
    def __init__(
        self,
        client: ModelClientProtocol,
        kv_store: KeyValueStoreProtocol,
        vector_store: VectorStoreProtocol,
        program_designer: ProgramDesignerAgent | None = None,
        coach_name: str | None = None,
        coach_persona: str = "",
        max_iterations: int = ReActLoop.DEFAULT_MAX_ITERATIONS,
    ):
        self.program_designer = program_designer
        tools = [
            create_search_knowledge_tool(vector_store),
            create_recent_workouts_tool(kv_store),
            create_save_memory_tool(kv_store, vector_store),
        ]
        if program_designer is not None:
            tools.append(create_design_program_tool(self._design_program))
        self.registry = ToolRegistry(tools)
        self.loop = ReActLoop(
            model_client=client,
            registry=self.registry,
            system_prompt=build_conversation_prompt(coach_name, coach_persona),
            max_iterations=max_iterations,
        )
        self.logger = structlog.get_logger().bind(component="conversation_agent")

    def stream(
        self,
        message: str,
        context: JobContext,
        history: list[dict[str, Any]] | None = None,
    ) -> LoopRun:
        """Start a streamed reply; iterate the returned run for outbound events."""
        return self.loop.run(message, context, ConversationState.from_history(history))

    async def reply(
        self,
        message: str,
        context: JobContext,
        history: list[dict[str, Any]] | None = None,
    ) -> LoopResult:
        return await self.loop.converse(message, context, ConversationState.from_history(history))

    async def _design_program(self, input: dict[str, Any], context: JobContext) -> dict[str, Any]:
        program_id = f"program_{context.user_id}_{uuid.uuid4().hex[:8]}"
        job = JobContext(
            job_id=f"{context.job_id}:program",
            user_id=context.user_id,
            detached=context.detached,
            program_id=program_id,
            requirements_input=input,
        )
        self.logger.info("conversation_program_design_started", program_id=program_id)
        return await self.program_designer.design_program(job)
