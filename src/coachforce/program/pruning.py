"""
Workout pruning.

When a program has noticeably more training days than the requested
frequency allows, the model picks whole day numbers to drop and the code
removes every template on those days. Counts are computed here, never taken
from the model, and the pruned templates are written back over the
per-phase memo entries so later steps read the pruned version.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

import structlog

from coachforce.core.domain.errors import PruningInvariantError
from coachforce.core.interfaces.llm import ModelClientProtocol
from coachforce.core.tools.job_context import JobContext
from coachforce.program.models import PhaseResult, WorkoutTemplate

logger = structlog.get_logger()

PHASE_WORKOUTS_KEY = "phase_workouts:{phase_id}"

SELECT_DAYS_TOOL: dict[str, Any] = {
    "name": "select_days_to_remove",
    "description": "Select the training day numbers to remove from the program.",
    "input_schema": {
        "type": "object",
        "properties": {
            "daysToRemove": {
                "type": "array",
                "items": {"type": "integer"},
                "description": "Day numbers to remove; every workout on these days is removed",
            },
            "reasoning": {"type": "string"},
        },
        "required": ["daysToRemove", "reasoning"],
    },
}

PRUNING_SYSTEM_PROMPT = "You are a training program optimizer."

PRIORITY_RULES = (
    "1. Remove optional or accessory-only days first.\n"
    "2. Remove days from later phases before earlier phases.\n"
    "3. Remove longer sessions before shorter ones.\n"
    "4. Keep key sessions for the main training goals."
)


def phase_memo_key(phase_id: str) -> str:
    return PHASE_WORKOUTS_KEY.format(phase_id=phase_id)


@dataclass
class PruneOutcome:
    """
    Result of removing whole days.

    Only templates carrying a phaseId are counted; templates without one
    cannot be saved and are reported separately.
    """

    kept: list[WorkoutTemplate]
    removed: list[WorkoutTemplate]
    days_removed: list[int]
    original_valid_count: int
    invalid_count: int = 0
    reasoning: str = ""
    warnings: list[str] = field(default_factory=list)

    @property
    def kept_count(self) -> int:
        return len(self.kept)

    @property
    def removed_count(self) -> int:
        return len(self.removed)


def prune_days(
    templates: list[WorkoutTemplate], days_to_remove: list[int], reasoning: str = ""
) -> PruneOutcome:
    """
    Remove every template whose day number is in ``days_to_remove``.

    Templates without a phaseId are counted in ``invalid_count`` and are
    neither kept nor removed.
    """
    valid = [t for t in templates if t.phase_id]
    invalid_count = len(templates) - len(valid)
    selected = set(days_to_remove)
    kept = [t for t in valid if t.day_number not in selected]
    removed = [t for t in valid if t.day_number in selected]

    existing_days = {t.day_number for t in valid}
    unknown = sorted(selected - existing_days)
    warnings: list[str] = []
    if unknown:
        warnings.append(f"Selected days with no workouts: {unknown}")
    if invalid_count:
        warnings.append(f"{invalid_count} template(s) without phaseId were dropped")

    return PruneOutcome(
        kept=kept,
        removed=removed,
        days_removed=sorted(selected & existing_days),
        original_valid_count=len(valid),
        invalid_count=invalid_count,
        reasoning=reasoning,
        warnings=warnings,
    )


def build_pruning_prompt(
    templates: list[WorkoutTemplate], excess_days: int, target_days: int, phases: dict[str, str]
) -> str:
    by_day: dict[int, list[WorkoutTemplate]] = defaultdict(list)
    for template in templates:
        by_day[template.day_number].append(template)
    lines = []
    for day in sorted(by_day):
        entries = ", ".join(
            f"{t.name} [{phases.get(t.phase_id or '', t.phase_id)}"
            f"{', optional' if t.is_optional else ''}"
            f"{f', {t.estimated_duration}min' if t.estimated_duration else ''}]"
            for t in by_day[day]
        )
        lines.append(f"Day {day}: {entries}")
    return (
        f"Remove {excess_days} training days from this program so it has about "
        f"{target_days} training days, matching the requested frequency.\n"
        "Remove whole days only. Priority order:\n"
        f"{PRIORITY_RULES}\n\n"
        "Program days:\n" + "\n".join(lines)
    )


async def select_days_to_remove(
    client: ModelClientProtocol,
    templates: list[WorkoutTemplate],
    excess_days: int,
    target_days: int,
    phase_names: dict[str, str],
    model: str | None = None,
) -> tuple[list[int], str]:
    response = await client.call_tool(
        PRUNING_SYSTEM_PROMPT,
        build_pruning_prompt(templates, excess_days, target_days, phase_names),
        SELECT_DAYS_TOOL,
        model=model,
    )
    payload = response.get("input") or {}
    days: list[int] = []
    for value in payload.get("daysToRemove") or []:
        try:
            days.append(int(value))
        except (TypeError, ValueError):
            logger.warning("pruning_day_invalid", value=str(value)[:50])
    return days, str(payload.get("reasoning", ""))


async def prune_excess_workouts(
    client: ModelClientProtocol,
    context: JobContext,
    phase_ids: list[str],
    current_training_days: int,
    target_training_days: int,
    model: str | None = None,
) -> dict[str, Any]:
    """
    Prune whole days and write the pruned templates back to the memo.

    Missing phase results are skipped with a warning. Selecting zero days is
    a soft failure: the program keeps its excess workouts.

    Raises:
        PruningInvariantError: If the written-back, removed and invalid
            templates do not add up to the count stored before pruning
    """
    phase_results: list[PhaseResult] = []
    missing: list[str] = []
    for phase_id in phase_ids:
        stored = context.get_tool_result(phase_memo_key(phase_id))
        if stored is None:
            missing.append(phase_id)
        else:
            phase_results.append(stored)
    if missing:
        logger.warning("pruning_phase_results_missing", missing=missing, available=len(phase_results))
    if not phase_results:
        return {
            "error": "No stored phase workouts to prune",
            "prunedWorkoutTemplates": [],
            "removedCount": 0,
            "keptCount": 0,
        }

    templates = [t for r in phase_results for t in r.workout_templates]
    excess = max(0, current_training_days - target_training_days)
    phase_names = {r.phase_id: r.phase.name for r in phase_results}

    days, reasoning = await select_days_to_remove(
        client, templates, excess, target_training_days, phase_names, model=model
    )
    outcome = prune_days(templates, days, reasoning)
    for warning in outcome.warnings:
        logger.warning("pruning_warning", warning=warning)

    if not days:
        logger.warning(
            "pruning_selected_zero_days",
            excess_days=excess,
            hint="Program keeps its excess workouts",
        )

    remaining_days = len({t.day_number for t in outcome.kept})
    if remaining_days > target_training_days:
        logger.warning(
            "pruning_deficit",
            remaining_days=remaining_days,
            target_days=target_training_days,
            short_by=remaining_days - target_training_days,
        )
    elif remaining_days < target_training_days:
        logger.warning(
            "pruning_over_achieved",
            remaining_days=remaining_days,
            target_days=target_training_days,
            removed_extra=target_training_days - remaining_days,
        )

    kept_by_phase: dict[str, list[WorkoutTemplate]] = defaultdict(list)
    for template in outcome.kept:
        kept_by_phase[template.phase_id or ""].append(template)

    stored_count = sum(len(r.workout_templates) for r in phase_results)
    written_count = sum(len(kept_by_phase.get(r.phase_id, [])) for r in phase_results)
    if written_count + outcome.removed_count + outcome.invalid_count != stored_count:
        raise PruningInvariantError(
            f"{outcome.removed_count} removed + {written_count} written back + "
            f"{outcome.invalid_count} invalid != {stored_count} stored before pruning"
        )

    phase_updates: list[dict[str, Any]] = []
    for result in phase_results:
        pruned = kept_by_phase.get(result.phase_id, [])
        updated = result.model_copy(
            update={
                "workout_templates": pruned,
                "debug_trace": {**result.debug_trace, "pruned": True},
            }
        )
        context.replace_tool_result(phase_memo_key(result.phase_id), updated)
        phase_updates.append(
            {
                "phaseId": result.phase_id,
                "before": len(result.workout_templates),
                "after": len(pruned),
            }
        )

    logger.info(
        "pruning_complete",
        removed=outcome.removed_count,
        kept=outcome.kept_count,
        original=outcome.original_valid_count,
        days_removed=outcome.days_removed,
    )
    return {
        "prunedWorkoutTemplates": [t.to_json_dict() for t in outcome.kept],
        "removedCount": outcome.removed_count,
        "keptCount": outcome.kept_count,
        "originalCount": outcome.original_valid_count,
        "daysRemoved": outcome.days_removed,
        "removalReasoning": outcome.reasoning,
        "phaseUpdates": phase_updates,
        "warnings": outcome.warnings,
    }
