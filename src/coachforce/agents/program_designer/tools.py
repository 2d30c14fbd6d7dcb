"""
Program designer tools.

Eight tools the program designer model drives through the ReAct loop.
Every large intermediate payload lives in the job memo under a fixed key,
so the model only ever passes ids and small values between tools:

    requirements            ProgramRequirements
    phase_structure         list[Phase]
    phase_workouts:<id>     PhaseResult (overwritten by pruning and normalization)
    validation              validation payload
    pruning                 pruning payload
    normalization           NormalizationResult
    summary                 str
    save                    save payload
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import structlog

from coachforce.agents.program_designer.prompts import SUMMARY_SYSTEM_PROMPT
from coachforce.core.domain.errors import ConfigurationError
from coachforce.core.interfaces.llm import ModelClientProtocol
from coachforce.core.interfaces.storage import (
    BlobStoreProtocol,
    KeyValueStoreProtocol,
    VectorStoreProtocol,
)
from coachforce.core.tools.base import Tool
from coachforce.core.tools.job_context import JobContext
from coachforce.infrastructure.compression import ResilientTransformer, store_with_auto_compression
from coachforce.program.duration import parse_duration_days, parse_training_frequency
from coachforce.program.models import Phase, PhaseResult, ProgramRequirements, WorkoutTemplate
from coachforce.program.normalization import NormalizationResult, normalize_program
from coachforce.program.phase_generator import (
    DEFAULT_MAX_PHASES,
    PhaseGenerationContext,
    assemble_program,
    generate_all_phases,
    generate_phase_structure,
)
from coachforce.program.pruning import phase_memo_key, prune_excess_workouts
from coachforce.program.validation import (
    COVERAGE_TOLERANCE,
    build_program_verdict,
    calculate_program_metrics,
    expected_training_days,
)

logger = structlog.get_logger()

REQUIREMENTS_KEY = "requirements"
PHASE_STRUCTURE_KEY = "phase_structure"
VALIDATION_KEY = "validation"
PRUNING_KEY = "pruning"
NORMALIZATION_KEY = "normalization"
SUMMARY_KEY = "summary"
SAVE_KEY = "save"

VECTOR_NAMESPACE = "user_{user_id}"


@dataclass
class ProgramDesignerDeps:
    """Collaborators shared by all program designer tools."""

    client: ModelClientProtocol
    kv_store: KeyValueStoreProtocol
    blob_store: BlobStoreProtocol
    vector_store: VectorStoreProtocol
    transformer: ResilientTransformer
    max_phases: int = DEFAULT_MAX_PHASES
    coverage_tolerance: float = COVERAGE_TOLERANCE
    default_duration_days: int = 56
    default_frequency: int = 4
    model: str | None = None


def require_requirements(context: JobContext) -> ProgramRequirements:
    requirements = context.get_tool_result(REQUIREMENTS_KEY)
    if requirements is None:
        raise ConfigurationError("Requirements not loaded - call load_program_requirements first")
    return requirements


def require_phase_structure(context: JobContext) -> list[Phase]:
    phases = context.get_tool_result(PHASE_STRUCTURE_KEY)
    if not phases:
        raise ConfigurationError("Phase structure missing - call generate_phase_structure first")
    return phases


def stored_phase_results(context: JobContext, phase_ids: list[str] | None = None) -> list[PhaseResult]:
    """Phase results in structure order; missing entries are skipped."""
    if phase_ids is None:
        structure = context.get_tool_result(PHASE_STRUCTURE_KEY) or []
        phase_ids = [p.phase_id for p in structure]
    results = []
    for phase_id in phase_ids:
        stored = context.get_tool_result(phase_memo_key(phase_id))
        if stored is not None:
            results.append(stored)
    return results


def write_back_phase_templates(context: JobContext, templates: list[WorkoutTemplate]) -> None:
    """Overwrite each stored phase result with its surviving templates."""
    by_phase: dict[str, list[WorkoutTemplate]] = defaultdict(list)
    for template in templates:
        by_phase[template.phase_id or ""].append(template)
    for stored in stored_phase_results(context):
        kept = by_phase.get(stored.phase_id, [])
        if len(kept) != len(stored.workout_templates):
            context.replace_tool_result(
                phase_memo_key(stored.phase_id),
                stored.model_copy(update={"workout_templates": kept}),
            )


def build_program_header(
    requirements: ProgramRequirements, overrides: dict[str, Any] | None = None
) -> dict[str, Any]:
    """Lightweight program fields, auto-populated from requirements."""
    program: dict[str, Any] = dict(overrides or {})
    program.setdefault("programId", requirements.program_id)
    program["userId"] = requirements.user_id
    if not program.get("name"):
        goal = requirements.training_goals[0] if requirements.training_goals else "Training"
        program["name"] = f"{goal.title()} Program"
    program.setdefault("totalDays", requirements.program_duration)
    program.setdefault("trainingFrequency", requirements.training_frequency)
    if requirements.start_date:
        program.setdefault("startDate", requirements.start_date)
    if not program.get("trainingGoals"):
        program["trainingGoals"] = list(requirements.training_goals)
    if not program.get("equipmentConstraints"):
        program["equipmentConstraints"] = list(requirements.equipment_constraints)
    return program


class LoadProgramRequirementsTool(Tool):
    contextual_message = "Reviewing your goals and schedule..."

    def __init__(self, deps: ProgramDesignerDeps):
        self.deps = deps

    @property
    def id(self) -> str:
        return "load_program_requirements"

    @property
    def description(self) -> str:
        return (
            "Load the user's program requirements: duration, training frequency, goals, "
            "equipment and coach persona. CALL THIS FIRST. Requirements are stored for "
            "the other tools; you do not need to pass them along."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "additionalConsiderations": {
                    "type": "string",
                    "description": "Extra notes to take into account",
                }
            },
            "required": [],
        }

    async def execute(self, input: dict[str, Any], context: JobContext) -> dict[str, Any]:
        raw = context.get("requirements_input")
        program_id = context.get("program_id")
        if not context.user_id or not program_id or raw is None:
            raise ConfigurationError("user_id, program_id and requirements_input are required")

        coach_persona = raw.get("coachPersona", "")
        coach_id = raw.get("coachId")
        if coach_id and not coach_persona:
            coach = await self.deps.kv_store.load(f"user#{context.user_id}", f"coach#{coach_id}")
            if coach:
                coach_persona = coach.get("persona") or coach.get("coachDescription", "")

        requirements = ProgramRequirements(
            user_id=context.user_id,
            program_id=program_id,
            program_duration=parse_duration_days(
                raw.get("programDuration"), self.deps.default_duration_days
            ),
            training_frequency=parse_training_frequency(
                raw.get("trainingFrequency"), self.deps.default_frequency
            ),
            training_goals=list(raw.get("trainingGoals") or []),
            equipment_constraints=list(raw.get("equipmentConstraints") or []),
            experience_level=raw.get("experienceLevel") or "intermediate",
            coach_id=coach_id,
            coach_persona=coach_persona,
            start_date=raw.get("startDate"),
            user_message=raw.get("userMessage", ""),
            additional_considerations=input.get("additionalConsiderations", ""),
        )
        context.set_tool_result(REQUIREMENTS_KEY, requirements)

        return {
            "programId": requirements.program_id,
            "programDuration": requirements.program_duration,
            "trainingFrequency": requirements.training_frequency,
            "expectedTrainingDays": expected_training_days(
                requirements.program_duration, requirements.training_frequency
            ),
            "trainingGoals": requirements.training_goals,
            "equipmentConstraints": requirements.equipment_constraints,
            "experienceLevel": requirements.experience_level,
        }


class GeneratePhaseStructureTool(Tool):
    contextual_message = ["Mapping out your training phases...", "Planning the program structure..."]

    def __init__(self, deps: ProgramDesignerDeps):
        self.deps = deps

    @property
    def id(self) -> str:
        return "generate_phase_structure"

    @property
    def description(self) -> str:
        return (
            "Split the program duration into contiguous phases (first starts on day 1, "
            "last ends on the final day). Requires load_program_requirements. "
            "Returns phaseIds to use with generate_phase_workouts."
        )

    async def execute(self, input: dict[str, Any], context: JobContext) -> dict[str, Any]:
        requirements = require_requirements(context)
        ctx = PhaseGenerationContext(
            requirements=requirements, max_phases=self.deps.max_phases, model=self.deps.model
        )
        phases = await generate_phase_structure(self.deps.client, ctx)
        context.set_tool_result(PHASE_STRUCTURE_KEY, phases)
        return {
            "phaseIds": [p.phase_id for p in phases],
            "phases": [
                {
                    "phaseId": p.phase_id,
                    "name": p.name,
                    "startDay": p.start_day,
                    "endDay": p.end_day,
                }
                for p in phases
            ],
            "totalPhases": len(phases),
        }


class GeneratePhaseWorkoutsTool(Tool):
    contextual_message = ["Building your workouts...", "Designing the sessions for each phase..."]

    def __init__(self, deps: ProgramDesignerDeps):
        self.deps = deps

    @property
    def id(self) -> str:
        return "generate_phase_workouts"

    @property
    def description(self) -> str:
        return (
            "Generate workout templates for program phases, all phases in parallel. "
            "Omit phaseIds to generate every phase; pass phaseIds to regenerate specific "
            "phases. Workouts are stored for validation and saving."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "phaseIds": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Phases to generate (default: all)",
                }
            },
            "required": [],
        }

    async def execute(self, input: dict[str, Any], context: JobContext) -> dict[str, Any]:
        requirements = require_requirements(context)
        structure = require_phase_structure(context)
        requested = input.get("phaseIds")
        if requested:
            phases = [p for p in structure if p.phase_id in set(requested)]
            unknown = sorted(set(requested) - {p.phase_id for p in phases})
            if unknown:
                logger.warning("unknown_phase_ids_requested", phase_ids=unknown)
            if not phases:
                return {"error": f"No matching phases for {requested}"}
        else:
            phases = structure

        ctx = PhaseGenerationContext(
            requirements=requirements, max_phases=self.deps.max_phases, model=self.deps.model
        )
        results = await generate_all_phases(self.deps.client, phases, ctx)
        for result in results:
            key = phase_memo_key(result.phase_id)
            if context.has_tool_result(key):
                context.replace_tool_result(key, result)
            else:
                context.set_tool_result(key, result)

        assembled = assemble_program(stored_phase_results(context), requirements.program_duration)
        return {
            "phases": [
                {
                    "phaseId": r.phase_id,
                    "workoutCount": len(r.workout_templates),
                    "dayRange": f"{r.phase.start_day}-{r.phase.end_day}",
                }
                for r in results
            ],
            "phaseIds": [p.phase_id for p in structure],
            "totalWorkouts": assembled.total_workouts,
            "daysCovered": assembled.days_covered,
            "warnings": assembled.warnings,
        }


class ValidateProgramStructureTool(Tool):
    contextual_message = "Checking the program for completeness..."

    def __init__(self, deps: ProgramDesignerDeps):
        self.deps = deps

    @property
    def id(self) -> str:
        return "validate_program_structure"

    @property
    def description(self) -> str:
        return (
            "Validate the generated program: required fields, phase continuity, workout "
            "distribution and training frequency. CALL THIS after generating workouts. "
            "Pass only a lightweight program object (name, description) and phaseIds; "
            "workouts are read from storage. Returns isValid, confidence, "
            "validationIssues, shouldNormalize and shouldPrune."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "program": {
                    "type": "object",
                    "description": "Lightweight program fields: name, description, startDate",
                },
                "phaseIds": {"type": "array", "items": {"type": "string"}},
            },
            "required": [],
        }

    async def execute(self, input: dict[str, Any], context: JobContext) -> dict[str, Any]:
        try:
            requirements = require_requirements(context)
            structure = context.get_tool_result(PHASE_STRUCTURE_KEY) or []
            phase_ids = input.get("phaseIds") or [p.phase_id for p in structure]
            results = stored_phase_results(context, phase_ids)
            templates = [t for r in results for t in r.workout_templates]
            program = build_program_header(requirements, input.get("program"))
            verdict = build_program_verdict(
                program,
                list(structure),
                templates,
                requirements.program_duration,
                requirements.training_frequency,
                self.deps.coverage_tolerance,
            )
        except Exception as e:
            context.replace_tool_result(VALIDATION_KEY, {"error": str(e)})
            raise

        verdict["phaseIds"] = phase_ids
        context.replace_tool_result(VALIDATION_KEY, verdict)
        return verdict


class PruneExcessWorkoutsTool(Tool):
    contextual_message = "Fine-tuning your weekly schedule..."

    def __init__(self, deps: ProgramDesignerDeps):
        self.deps = deps

    @property
    def id(self) -> str:
        return "prune_excess_workouts"

    @property
    def description(self) -> str:
        return (
            "Remove excess training days so the program matches the requested training "
            "frequency. ONLY CALL THIS IF validate_program_structure returned "
            "shouldPrune: true. Whole days are removed; stored workouts are updated so "
            "later tools use the pruned program. Returns removedCount, keptCount and "
            "removalReasoning."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "phaseIds": {"type": "array", "items": {"type": "string"}},
                "currentTrainingDays": {"type": "integer"},
                "targetTrainingDays": {"type": "integer"},
            },
            "required": [],
        }

    async def execute(self, input: dict[str, Any], context: JobContext) -> dict[str, Any]:
        validation = context.get_tool_result(VALIDATION_KEY) or {}
        metadata = validation.get("pruningMetadata") or {}
        if not validation.get("shouldPrune") and not input.get("targetTrainingDays"):
            return {"skipped": True, "reason": "Validation did not recommend pruning"}

        structure = context.get_tool_result(PHASE_STRUCTURE_KEY) or []
        phase_ids = input.get("phaseIds") or [p.phase_id for p in structure]
        current = input.get("currentTrainingDays") or metadata.get("currentTrainingDays")
        target = input.get("targetTrainingDays") or metadata.get("targetTrainingDays")
        if current is None:
            templates = [t for r in stored_phase_results(context, phase_ids) for t in r.workout_templates]
            current = calculate_program_metrics(templates).unique_training_days
        if target is None:
            requirements = require_requirements(context)
            target = expected_training_days(
                requirements.program_duration, requirements.training_frequency
            )

        result = await prune_excess_workouts(
            self.deps.client,
            context,
            phase_ids,
            int(current),
            int(target),
            model=self.deps.model,
        )
        context.replace_tool_result(PRUNING_KEY, result)
        return result


class NormalizeProgramDataTool(Tool):
    contextual_message = "Tidying up the program details..."

    def __init__(self, deps: ProgramDesignerDeps):
        self.deps = deps

    @property
    def id(self) -> str:
        return "normalize_program_data"

    @property
    def description(self) -> str:
        return (
            "Normalize the program: fill missing dates and tracking fields, make phase "
            "boundaries contiguous and drop invalid workouts. Call when validation "
            "returned shouldNormalize: true. Blocked if validation failed."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {"program": {"type": "object"}},
            "required": [],
        }

    async def execute(self, input: dict[str, Any], context: JobContext) -> dict[str, Any]:
        try:
            requirements = require_requirements(context)
            structure = require_phase_structure(context)
            templates = [t for r in stored_phase_results(context) for t in r.workout_templates]
            result = normalize_program(
                build_program_header(requirements, input.get("program")), structure, templates
            )
        except Exception as e:
            context.replace_tool_result(NORMALIZATION_KEY, {"error": str(e)})
            raise

        context.replace_tool_result(NORMALIZATION_KEY, result)
        write_back_phase_templates(context, result.templates)
        summary = result.summary()
        summary.pop("normalizedProgram")
        summary["totalWorkouts"] = len(result.templates)
        return summary


class GenerateProgramSummaryTool(Tool):
    contextual_message = "Writing up your program overview..."

    def __init__(self, deps: ProgramDesignerDeps):
        self.deps = deps

    @property
    def id(self) -> str:
        return "generate_program_summary"

    @property
    def description(self) -> str:
        return "Write a short summary of the program for the athlete. Call before saving."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {"programName": {"type": "string"}},
            "required": [],
        }

    def _fallback_summary(self, requirements: ProgramRequirements, phases: list[Phase], workouts: int) -> str:
        goals = ", ".join(requirements.training_goals) or "overall fitness"
        return (
            f"A {requirements.program_duration}-day program with {len(phases)} phase(s) and "
            f"{workouts} workouts, training {requirements.training_frequency} days per week "
            f"to build {goals}."
        )

    async def execute(self, input: dict[str, Any], context: JobContext) -> dict[str, Any]:
        requirements = require_requirements(context)
        phases = require_phase_structure(context)
        workouts = sum(len(r.workout_templates) for r in stored_phase_results(context))
        outline = "; ".join(f"{p.name} (days {p.start_day}-{p.end_day})" for p in phases)
        prompt = (
            f"Summarize this training program in 2-3 sentences.\n"
            f"Name: {input.get('programName', '')}\n"
            f"Duration: {requirements.program_duration} days, "
            f"{requirements.training_frequency} days per week, {workouts} workouts\n"
            f"Goals: {', '.join(requirements.training_goals)}\n"
            f"Phases: {outline}"
        )
        source = "model"
        try:
            summary = (await self.deps.client.complete_text(SUMMARY_SYSTEM_PROMPT, prompt, model=self.deps.model)).strip()
        except Exception as e:
            logger.warning("program_summary_failed", error=str(e)[:200])
            summary = ""
        if not summary:
            summary = self._fallback_summary(requirements, phases, workouts)
            source = "fallback"
        context.replace_tool_result(SUMMARY_KEY, summary)
        return {"summary": summary, "source": source}


class SaveProgramToDatabaseTool(Tool):
    contextual_message = "Saving your new program..."

    def __init__(self, deps: ProgramDesignerDeps):
        self.deps = deps

    @property
    def id(self) -> str:
        return "save_program_to_database"

    @property
    def description(self) -> str:
        return (
            "Save the final program. Workouts are read from storage (pruned or "
            "normalized versions when those steps ran); do not pass workout data. "
            "Blocked if validation or normalization failed."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "program": {
                    "type": "object",
                    "description": "Lightweight program fields: name, description",
                }
            },
            "required": [],
        }

    def _resolve_program(
        self, input: dict[str, Any], context: JobContext, requirements: ProgramRequirements
    ) -> tuple[dict[str, Any], list[WorkoutTemplate]]:
        phases = require_phase_structure(context)
        overrides = dict(input.get("program") or {})
        normalization = context.get_tool_result(NORMALIZATION_KEY)
        if isinstance(normalization, NormalizationResult):
            phases = normalization.phases
            overrides = {**normalization.program, **overrides}

        # Workouts always come from the per-phase memo entries, which pruning
        # and normalization overwrite in place.
        results = stored_phase_results(context)
        if not results:
            raise ConfigurationError("No stored phase workouts - call generate_phase_workouts first")
        assembled = assemble_program(results, requirements.program_duration)
        result = normalize_program(
            build_program_header(requirements, overrides), phases, assembled.workout_templates
        )
        return result.program, result.templates

    async def execute(self, input: dict[str, Any], context: JobContext) -> dict[str, Any]:
        requirements = require_requirements(context)
        program, templates = self._resolve_program(input, context, requirements)

        user_id = requirements.user_id
        program_id = program["programId"]
        now = datetime.now(timezone.utc).isoformat()
        program.setdefault("createdAt", now)
        program["updatedAt"] = now
        program.setdefault("status", "active")
        if requirements.coach_id:
            program.setdefault("coachIds", [requirements.coach_id])
        summary = context.get_tool_result(SUMMARY_KEY)
        if summary:
            program.setdefault("summary", summary)
        metrics = calculate_program_metrics(templates)
        program["totalWorkouts"] = metrics.total_workouts
        program["uniqueTrainingDays"] = metrics.unique_training_days

        detail_key = f"programs/{user_id}/{program_id}/details.json"
        await self.deps.blob_store.put(
            detail_key,
            {
                "programId": program_id,
                "userId": user_id,
                "workoutTemplates": [t.to_json_dict() for t in templates],
                "generatedAt": now,
            },
        )
        program["s3DetailKey"] = detail_key
        await self.deps.kv_store.save(f"user#{user_id}", f"program#{program_id}", program)

        context.spawn_detached(
            self._index_program(user_id, program, templates),
            name=f"index_program:{program_id}",
        )

        result = {
            "success": True,
            "programId": program_id,
            "s3Key": detail_key,
            "pineconeRecordId": "async-pending",
            "totalWorkouts": metrics.total_workouts,
        }
        context.replace_tool_result(SAVE_KEY, {**result, "program": program})
        return result

    async def _index_program(
        self, user_id: str, program: dict[str, Any], templates: list[WorkoutTemplate]
    ) -> str:
        """Best-effort semantic index write for the saved program."""
        phases = "; ".join(
            f"{p.get('name')} days {p.get('startDay')}-{p.get('endDay')}"
            for p in program.get("phases", [])
        )
        workouts = "; ".join(f"Day {t.day_number}: {t.name}" for t in templates)
        content = (
            f"Training program {program.get('name')}. {program.get('summary', '')} "
            f"Goals: {', '.join(program.get('trainingGoals', []))}. Phases: {phases}. "
            f"Workouts: {workouts}"
        )
        metadata = {
            "recordId": f"program_{program['programId']}",
            "recordType": "program_summary",
            "programId": program["programId"],
            "userId": user_id,
            "totalDays": program.get("totalDays"),
        }
        namespace = VECTOR_NAMESPACE.format(user_id=user_id)
        return await store_with_auto_compression(
            lambda text: self.deps.vector_store.store(namespace, text, metadata),
            content,
            metadata,
            "program_summary",
            self.deps.transformer,
        )


def create_program_designer_tools(deps: ProgramDesignerDeps) -> list[Tool]:
    return [
        LoadProgramRequirementsTool(deps),
        GeneratePhaseStructureTool(deps),
        GeneratePhaseWorkoutsTool(deps),
        ValidateProgramStructureTool(deps),
        PruneExcessWorkoutsTool(deps),
        NormalizeProgramDataTool(deps),
        GenerateProgramSummaryTool(deps),
        SaveProgramToDatabaseTool(deps),
    ]
