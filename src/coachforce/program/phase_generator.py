"""
Program Phase Generator

Breaks large program generation into smaller model calls:

1. Structure step: one call partitions the program duration into phases
2. Fan-out step: one call per phase, all running concurrently
3. Assembly: phases and workouts are recombined in a deterministic order

Each generation call asks for a structured tool result first and retries
once as plain text parsed leniently. The fan-out has no per-phase retry:
one failed phase fails the whole step.
"""

import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any

import structlog
from pydantic import ValidationError

from coachforce.core.domain.errors import PhaseGenerationError
from coachforce.core.interfaces.llm import ModelClientProtocol
from coachforce.program.models import (
    AssembledProgram,
    Phase,
    PhaseResult,
    ProgramRequirements,
    WorkoutTemplate,
)
from coachforce.program.parsing import parse_json_lenient
from coachforce.program.validation import expected_training_days, find_phase_issues

logger = structlog.get_logger()

DEFAULT_MAX_PHASES = 5

GENERATOR_SYSTEM_PROMPT = (
    "You are an expert strength and conditioning coach who designs periodized "
    "training programs. Respond only through the provided tool or with JSON."
)

PHASE_STRUCTURE_TOOL: dict[str, Any] = {
    "name": "generate_phase_structure",
    "description": "Return the phase breakdown of the training program.",
    "input_schema": {
        "type": "object",
        "properties": {
            "phases": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "phaseId": {"type": "string"},
                        "name": {"type": "string"},
                        "description": {"type": "string"},
                        "startDay": {"type": "integer"},
                        "endDay": {"type": "integer"},
                        "durationDays": {"type": "integer"},
                        "focusAreas": {"type": "array", "items": {"type": "string"}},
                    },
                    "required": ["phaseId", "name", "startDay", "endDay"],
                },
            }
        },
        "required": ["phases"],
    },
}

PHASE_WORKOUTS_TOOL: dict[str, Any] = {
    "name": "generate_phase_workouts",
    "description": "Return the workout templates for a single program phase.",
    "input_schema": {
        "type": "object",
        "properties": {
            "workouts": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "templateId": {"type": "string"},
                        "dayNumber": {"type": "integer"},
                        "name": {"type": "string"},
                        "description": {"type": "string"},
                        "estimatedDuration": {"type": "integer"},
                        "isOptional": {"type": "boolean"},
                    },
                    "required": ["templateId", "dayNumber", "name"],
                },
            }
        },
        "required": ["workouts"],
    },
}


@dataclass
class PhaseGenerationContext:
    requirements: ProgramRequirements
    max_phases: int = DEFAULT_MAX_PHASES
    model: str | None = None

    @property
    def total_days(self) -> int:
        return self.requirements.program_duration

    @property
    def training_frequency(self) -> int:
        return self.requirements.training_frequency


def build_structure_prompt(ctx: PhaseGenerationContext) -> str:
    req = ctx.requirements
    return (
        f"Design the phase structure for a {ctx.total_days}-day training program.\n"
        f"- Training frequency: {ctx.training_frequency} days per week\n"
        f"- Total workouts: ~{expected_training_days(ctx.total_days, ctx.training_frequency)}\n"
        f"- Goals: {', '.join(req.training_goals) or 'general fitness'}\n"
        f"- Equipment: {', '.join(req.equipment_constraints) or 'unspecified'}\n"
        f"- Experience level: {req.experience_level}\n"
        f"{('- Coach persona: ' + req.coach_persona + chr(10)) if req.coach_persona else ''}"
        f"Rules: use between 1 and {ctx.max_phases} phases. The first phase starts on "
        f"day 1, the last ends on day {ctx.total_days}, and each phase starts the day "
        "after the previous one ends. Each phase should last at least two weeks when "
        "the program is long enough."
    )


def build_phase_prompt(phase: Phase, ctx: PhaseGenerationContext, all_phases: list[Phase]) -> str:
    req = ctx.requirements
    expected = expected_training_days(phase.duration_days or 0, ctx.training_frequency)
    outline = "\n".join(
        f"  - {p.phase_id}: {p.name} (days {p.start_day}-{p.end_day})" for p in all_phases
    )
    return (
        f"Generate workouts for phase '{phase.name}' ({phase.phase_id}), "
        f"days {phase.start_day}-{phase.end_day} of a {ctx.total_days}-day program.\n"
        f"Phase description: {phase.description}\n"
        f"Focus areas: {', '.join(phase.focus_areas) or 'as appropriate'}\n"
        f"Program outline:\n{outline}\n"
        f"Target about {expected} training days at {ctx.training_frequency} days per week. "
        f"Every dayNumber must be between {phase.start_day} and {phase.end_day}. "
        f"Goals: {', '.join(req.training_goals) or 'general fitness'}. "
        f"Equipment: {', '.join(req.equipment_constraints) or 'unspecified'}."
    )


async def _structured_call(
    client: ModelClientProtocol,
    prompt: str,
    tool: dict[str, Any],
    field_name: str,
    label: str,
    model: str | None,
) -> tuple[list[dict[str, Any]], str]:
    """Ask for ``field_name`` via a forced tool call, falling back to text JSON once."""
    try:
        response = await client.call_tool(GENERATOR_SYSTEM_PROMPT, prompt, tool, model=model)
        items = (response.get("input") or {}).get(field_name)
        if isinstance(items, list) and items:
            return items, "tool"
        logger.warning("structured_call_empty", label=label, stop_reason=response.get("stop_reason"))
    except Exception as e:
        logger.warning("structured_call_failed", label=label, error=str(e), error_type=type(e).__name__)

    fallback_prompt = (
        f"{prompt}\n\nReturn ONLY a JSON object of the form "
        f'{{"{field_name}": [...]}} matching this schema:\n'
        f"{json.dumps(tool['input_schema'])}"
    )
    try:
        text = await client.complete_text(GENERATOR_SYSTEM_PROMPT, fallback_prompt, model=model)
    except Exception as e:
        raise PhaseGenerationError(f"{label}: fallback generation failed: {e}") from e

    parsed = parse_json_lenient(text)
    items = parsed.get(field_name) if isinstance(parsed, dict) else None
    if not isinstance(items, list) or not items:
        raise PhaseGenerationError(f"{label}: fallback response contained no {field_name}")
    logger.info("structured_call_fallback_succeeded", label=label, count=len(items))
    return items, "fallback"


async def generate_phase_structure(
    client: ModelClientProtocol, ctx: PhaseGenerationContext
) -> list[Phase]:
    """
    Partition the program duration into phases.

    Continuity problems (gaps, overlaps, wrong ends) are logged, not raised.

    Raises:
        PhaseGenerationError: If no usable phases were produced
    """
    raw_phases, source = await _structured_call(
        client,
        build_structure_prompt(ctx),
        PHASE_STRUCTURE_TOOL,
        "phases",
        "phase_structure",
        ctx.model,
    )

    phases: list[Phase] = []
    for raw in raw_phases:
        try:
            phases.append(Phase.model_validate(raw))
        except ValidationError as e:
            logger.warning("phase_invalid", phase=str(raw)[:200], error=str(e)[:200])
    if not phases:
        raise PhaseGenerationError("Phase structure contained no valid phases")

    if len(phases) > ctx.max_phases:
        logger.warning("phase_count_exceeds_max", count=len(phases), max_phases=ctx.max_phases)

    phases.sort(key=lambda p: p.start_day)
    issues = find_phase_issues(phases, ctx.total_days)
    if issues:
        logger.warning("phase_structure_issues", issues=issues)

    logger.info(
        "phase_structure_generated",
        source=source,
        phase_count=len(phases),
        ranges=[f"{p.start_day}-{p.end_day}" for p in phases],
    )
    return phases


def _parse_workouts(
    raw_workouts: list[dict[str, Any]], phase: Phase
) -> tuple[list[WorkoutTemplate], list[str]]:
    templates: list[WorkoutTemplate] = []
    dropped: list[str] = []
    for index, raw in enumerate(raw_workouts):
        if not isinstance(raw, dict):
            dropped.append(f"#{index}: not an object")
            continue
        data = dict(raw)
        if not data.get("templateId") and not data.get("template_id"):
            day = data.get("dayNumber", data.get("day_number", "x"))
            data["templateId"] = f"{phase.phase_id}_day{day}_{index + 1}"
        data["phaseId"] = phase.phase_id
        data.pop("phase_id", None)
        try:
            templates.append(WorkoutTemplate.model_validate(data))
        except ValidationError as e:
            dropped.append(f"#{index}: {e.errors()[0].get('msg', 'invalid')}")
    return templates, dropped


async def generate_single_phase(
    client: ModelClientProtocol,
    phase: Phase,
    ctx: PhaseGenerationContext,
    all_phases: list[Phase],
) -> PhaseResult:
    """Generate the workouts of one phase. Raises PhaseGenerationError on failure."""
    started = time.monotonic()
    raw_workouts, source = await _structured_call(
        client,
        build_phase_prompt(phase, ctx, all_phases),
        PHASE_WORKOUTS_TOOL,
        "workouts",
        f"phase_{phase.phase_id}",
        ctx.model,
    )
    templates, dropped = _parse_workouts(raw_workouts, phase)
    if dropped:
        logger.warning("phase_workouts_dropped", phase_id=phase.phase_id, dropped=dropped)
    if not templates:
        raise PhaseGenerationError(f"Phase {phase.phase_id} produced no valid workouts")

    elapsed = round(time.monotonic() - started, 2)
    logger.info(
        "phase_workouts_generated",
        phase_id=phase.phase_id,
        workout_count=len(templates),
        elapsed_seconds=elapsed,
    )
    return PhaseResult(
        phase=phase,
        workout_templates=templates,
        debug_trace={
            "source": source,
            "rawCount": len(raw_workouts),
            "dropped": dropped,
            "elapsedSeconds": elapsed,
        },
    )


async def generate_all_phases(
    client: ModelClientProtocol, phases: list[Phase], ctx: PhaseGenerationContext
) -> list[PhaseResult]:
    """
    Generate every phase concurrently and wait for all of them.

    Raises:
        PhaseGenerationError: If any single phase fails
    """
    logger.info(
        "parallel_generation_started",
        phase_count=len(phases),
        estimated_workouts=expected_training_days(ctx.total_days, ctx.training_frequency),
    )
    started = time.monotonic()
    try:
        results = await asyncio.gather(
            *(generate_single_phase(client, phase, ctx, phases) for phase in phases)
        )
    except Exception as e:
        logger.error("parallel_generation_failed", error=str(e))
        raise PhaseGenerationError(f"Failed to generate phases: {e}") from e

    logger.info(
        "parallel_generation_complete",
        phase_count=len(results),
        total_workouts=sum(len(r.workout_templates) for r in results),
        elapsed_seconds=round(time.monotonic() - started, 2),
    )
    return list(results)


def assemble_program(results: list[PhaseResult], total_days: int) -> AssembledProgram:
    """
    Combine sub-task results into one program.

    Phases are ordered by start day, every workout is tagged with its
    phase, and workouts are sorted by (dayNumber, templateId). Gaps and
    misaligned boundaries are logged as warnings and kept on the result.
    """
    if not results:
        raise PhaseGenerationError("No phase results to assemble")

    ordered = sorted(results, key=lambda r: r.phase.start_day)
    phases = [r.phase for r in ordered]
    warnings = find_phase_issues(phases, total_days)
    for warning in warnings:
        logger.warning("phase_gap_detected", issue=warning)

    seen: set[tuple[int, str]] = set()
    templates: list[WorkoutTemplate] = []
    for result in ordered:
        for template in result.workout_templates:
            key = (template.day_number, template.template_id)
            if key in seen:
                logger.warning(
                    "duplicate_workout_dropped",
                    day_number=template.day_number,
                    template_id=template.template_id,
                )
                continue
            seen.add(key)
            templates.append(template.model_copy(update={"phase_id": result.phase.phase_id}))

    templates.sort(key=lambda t: (t.day_number, t.template_id))
    days_covered = len({t.day_number for t in templates})

    logger.info(
        "program_assembled",
        phase_count=len(phases),
        total_workouts=len(templates),
        days_covered=days_covered,
        program_duration=total_days,
    )
    return AssembledProgram(
        phases=phases,
        workout_templates=templates,
        total_workouts=len(templates),
        days_covered=days_covered,
        warnings=warnings,
    )
