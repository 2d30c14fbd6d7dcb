"""Deterministic normalization of an assembled program before saving."""

from dataclasses import dataclass, field
from typing import Any

import structlog

from coachforce.program.models import Phase, WorkoutTemplate
from coachforce.program.validation import ensure_program_dates, find_phase_issues

logger = structlog.get_logger()

REQUIRED_PROGRAM_FIELDS = ("programId", "name", "startDate", "endDate", "totalDays")


@dataclass
class NormalizationResult:
    program: dict[str, Any]
    phases: list[Phase]
    templates: list[WorkoutTemplate]
    issues_found: int = 0
    corrections_made: int = 0
    notes: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return all(self.program.get(f) for f in REQUIRED_PROGRAM_FIELDS) and bool(self.templates)

    def summary(self) -> dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "issuesFound": self.issues_found,
            "correctionsMade": self.corrections_made,
            "notes": self.notes,
            "normalizedProgram": self.program,
        }


def normalize_program(
    program: dict[str, Any],
    phases: list[Phase],
    templates: list[WorkoutTemplate],
) -> NormalizationResult:
    """
    Fill derivable program fields, snap phase boundaries and drop bad templates.

    Phase boundaries are made contiguous by moving each start to the day
    after the previous end; the last phase is stretched or cut to totalDays.
    Templates outside 1..totalDays or without a phase are dropped.
    """
    result = NormalizationResult(program=dict(program), phases=[], templates=[])
    notes = result.notes

    before_dates = (result.program.get("startDate"), result.program.get("endDate"))
    result.program = ensure_program_dates(result.program)
    for name, previous in zip(("startDate", "endDate"), before_dates):
        if not previous and result.program.get(name):
            result.issues_found += 1
            result.corrections_made += 1
            notes.append(f"Filled {name}")

    total_days = int(result.program.get("totalDays") or 0)
    if not total_days and phases:
        total_days = max(p.end_day for p in phases)
        result.program["totalDays"] = total_days
        result.program = ensure_program_dates(result.program)
        result.issues_found += 1
        result.corrections_made += 1
        notes.append("Derived totalDays from phases")

    ordered = sorted(phases, key=lambda p: p.start_day)
    if find_phase_issues(ordered, total_days):
        result.issues_found += 1
        next_start = 1
        fixed: list[Phase] = []
        for index, phase in enumerate(ordered):
            end = total_days if index == len(ordered) - 1 else max(phase.end_day, next_start)
            fixed.append(
                phase.model_copy(
                    update={
                        "start_day": next_start,
                        "end_day": end,
                        "duration_days": end - next_start + 1,
                    }
                )
            )
            next_start = end + 1
        if not find_phase_issues(fixed, total_days):
            result.corrections_made += 1
            notes.append("Snapped phase boundaries to be contiguous")
            ordered = fixed
    result.phases = ordered

    phase_ids = {p.phase_id for p in ordered}
    for template in templates:
        if not template.phase_id or template.phase_id not in phase_ids:
            result.issues_found += 1
            result.corrections_made += 1
            notes.append(f"Dropped {template.template_id}: unknown phase")
            continue
        if total_days and not 1 <= template.day_number <= total_days:
            result.issues_found += 1
            result.corrections_made += 1
            notes.append(f"Dropped {template.template_id}: day {template.day_number} out of range")
            continue
        result.templates.append(template)

    result.program["phases"] = [p.to_json_dict() for p in result.phases]
    result.program["totalWorkouts"] = len(result.templates)
    result.program.setdefault("status", "active")
    result.program.setdefault("currentDay", 1)
    result.program.setdefault("completedWorkouts", 0)
    result.program.setdefault("skippedWorkouts", 0)

    logger.info(
        "program_normalized",
        issues_found=result.issues_found,
        corrections_made=result.corrections_made,
        is_valid=result.is_valid,
    )
    return result
