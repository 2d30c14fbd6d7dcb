"""
Program Designer Agent

Runs the program design workflow through the ReAct loop. The model decides
the tool order; the validation gate makes sure a negative validation
verdict can never be followed by normalization or a save.
"""

from typing import Any

import structlog

from coachforce.agents.program_designer.prompts import (
    PROGRAM_DESIGNER_SYSTEM_PROMPT,
    RETRY_INSTRUCTION,
    USER_INSTRUCTION,
)
from coachforce.agents.program_designer.tools import (
    NORMALIZATION_KEY,
    PHASE_STRUCTURE_KEY,
    PRUNING_KEY,
    REQUIREMENTS_KEY,
    SAVE_KEY,
    SUMMARY_KEY,
    VALIDATION_KEY,
    ProgramDesignerDeps,
    create_program_designer_tools,
    stored_phase_results,
)
from coachforce.core.domain.errors import ConfigurationError
from coachforce.core.domain.models import LoopResult, ValidationVerdict
from coachforce.core.domain.react_loop import ReActLoop
from coachforce.core.domain.validation_gate import enforce_all_blocking
from coachforce.core.tools.job_context import JobContext
from coachforce.core.tools.registry import ToolRegistry
from coachforce.program.normalization import NormalizationResult

MIN_REQUIRED_TOOLS = 3

INCOMPLETE_MARKERS = ("?", "need to", "should i", "would you like", "can you confirm")


def program_validation_gate(tool_id: str, context: JobContext) -> dict[str, Any] | None:
    """Gate callable for the loop: reads the latest verdicts from the memo."""
    verdict = ValidationVerdict.from_payload(context.get_tool_result(VALIDATION_KEY))
    normalization = context.get_tool_result(NORMALIZATION_KEY)
    if isinstance(normalization, NormalizationResult):
        normalization = normalization.summary()
    return enforce_all_blocking(tool_id, verdict, normalization)


class ProgramDesignerAgent:
    """Designs, validates and saves one training program per job."""

    def __init__(
        self,
        deps: ProgramDesignerDeps,
        max_iterations: int = ReActLoop.DEFAULT_MAX_ITERATIONS,
        system_prompt: str = PROGRAM_DESIGNER_SYSTEM_PROMPT,
    ):
        self.deps = deps
        self.registry = ToolRegistry(create_program_designer_tools(deps))
        self.loop = ReActLoop(
            model_client=deps.client,
            registry=self.registry,
            system_prompt=system_prompt,
            max_iterations=max_iterations,
            gate=program_validation_gate,
        )
        self.logger = structlog.get_logger().bind(component="program_designer")

    async def design_program(self, context: JobContext) -> dict[str, Any]:
        """
        Run the workflow and build the result from the memo.

        An incomplete first attempt (few tools and a reply that reads like a
        question) is retried once with a stronger instruction after clearing
        the memo. If the retry is also skipped, the first result is returned.

        Raises:
            ConfigurationError: If user_id, program_id or requirements_input is missing
        """
        if not context.user_id or not context.get("program_id") or context.get("requirements_input") is None:
            raise ConfigurationError("user_id, program_id and requirements_input are required")

        self.logger.info(
            "program_design_started",
            job_id=context.job_id,
            user_id=context.user_id,
            program_id=context.get("program_id"),
        )

        loop_result = await self.loop.converse(USER_INSTRUCTION, context)
        result = self.build_result(context, loop_result)

        if self.should_retry(result, loop_result):
            self.logger.warning(
                "program_design_retry",
                tools_used=loop_result.tools_used,
                response_preview=loop_result.text[:200],
            )
            context.clear_tool_results()
            retry_loop = await self.loop.converse(
                RETRY_INSTRUCTION.format(previous=loop_result.text[:200]), context
            )
            retry_result = self.build_result(context, retry_loop)
            if not retry_result["success"] and retry_result.get("skipped"):
                self.logger.warning("program_design_retry_skipped", reason=retry_result.get("reason"))
            else:
                result = retry_result

        self.logger.info(
            "program_design_complete",
            success=result["success"],
            program_id=result.get("programId"),
            reason=result.get("reason"),
        )
        return result

    def should_retry(self, result: dict[str, Any], loop_result: LoopResult) -> bool:
        if result["success"]:
            return False
        if "validation failed" in (result.get("reason") or "").lower():
            return False
        few_tools = len(set(loop_result.tools_used)) < MIN_REQUIRED_TOOLS
        text = loop_result.text.lower()
        looks_incomplete = any(marker in text for marker in INCOMPLETE_MARKERS)
        return few_tools and looks_incomplete

    def build_result(self, context: JobContext, loop_result: LoopResult) -> dict[str, Any]:
        requirements = context.get_tool_result(REQUIREMENTS_KEY)
        phases = context.get_tool_result(PHASE_STRUCTURE_KEY) or []
        validation = context.get_tool_result(VALIDATION_KEY)
        normalization = context.get_tool_result(NORMALIZATION_KEY)
        save = context.get_tool_result(SAVE_KEY)

        if save and save.get("success"):
            program = save.get("program", {})
            return {
                "success": True,
                "programId": save["programId"],
                "programName": program.get("name"),
                "totalDays": requirements.program_duration if requirements else program.get("totalDays"),
                "phases": len(phases),
                "totalWorkouts": save.get("totalWorkouts", 0),
                "trainingFrequency": requirements.training_frequency if requirements else None,
                "summary": context.get_tool_result(SUMMARY_KEY),
                "pineconeStored": bool(save.get("pineconeRecordId")),
                "pineconeRecordId": save.get("pineconeRecordId"),
                "normalizationApplied": isinstance(normalization, NormalizationResult),
                "pruningApplied": context.has_tool_result(PRUNING_KEY),
                "s3DetailKey": save.get("s3Key"),
                "iterations": loop_result.iteration_count,
                "stopReason": loop_result.stop_reason,
            }

        verdict = ValidationVerdict.from_payload(validation)
        if verdict is not None and verdict.is_negative:
            issues = verdict.blocking_reasons
            return {
                "success": False,
                "skipped": True,
                "reason": f"Program validation failed: {', '.join(issues) if issues else 'Unknown issues'}",
                "blockingFlags": issues,
            }

        if requirements is None and not phases and validation is None:
            reason = "Agent did not call any tools"
        elif loop_result.reached_iteration_cap:
            reason = "Program design stopped at the iteration limit before saving"
        elif loop_result.error:
            reason = f"Program design stopped: {loop_result.error}"
        else:
            workouts = sum(len(r.workout_templates) for r in stored_phase_results(context))
            reason = f"Program was not saved ({len(phases)} phases, {workouts} workouts generated)"
        return {
            "success": False,
            "skipped": True,
            "reason": reason,
            "agentResponse": loop_result.text[:500],
        }
