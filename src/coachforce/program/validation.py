"""
Program validation helpers.

Metrics, training-frequency compliance, phase continuity and the
authoritative program verdict produced by ``validate_program_structure``.
Soft problems are returned or logged; nothing here raises on bad data.
"""

import math
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any

import structlog

from coachforce.program.models import Phase, WorkoutTemplate

logger = structlog.get_logger()

COVERAGE_TOLERANCE = 0.2
NORMALIZE_CONFIDENCE_THRESHOLD = 0.7


@dataclass
class ProgramMetrics:
    total_workouts: int
    unique_training_days: int
    average_sessions_per_training_day: float
    workouts_by_phase: dict[str, int] = field(default_factory=dict)


@dataclass
class FrequencyCheck:
    """
    Result of comparing unique training days with the requested frequency.

    Attributes:
        should_prune: True only when there are more days than expected and
            the difference exceeds the tolerance
        current_training_days: Unique day numbers carrying a workout
        expected_training_days: floor(duration / 7 * frequency)
        variance: |current - expected|
        tolerance_days: expected * tolerance
    """

    should_prune: bool
    current_training_days: int = 0
    expected_training_days: int = 0
    variance: int = 0
    tolerance_days: float = 0.0

    @property
    def excess_days(self) -> int:
        return max(0, self.current_training_days - self.expected_training_days)

    def pruning_metadata(self) -> dict[str, Any]:
        return {
            "currentTrainingDays": self.current_training_days,
            "expectedTrainingDays": self.expected_training_days,
            "variance": self.variance,
            "targetTrainingDays": self.expected_training_days,
        }


def calculate_program_metrics(templates: list[WorkoutTemplate]) -> ProgramMetrics:
    days = {t.day_number for t in templates}
    by_phase: dict[str, int] = {}
    for template in templates:
        key = template.phase_id or "unassigned"
        by_phase[key] = by_phase.get(key, 0) + 1
    return ProgramMetrics(
        total_workouts=len(templates),
        unique_training_days=len(days),
        average_sessions_per_training_day=round(len(templates) / len(days), 2) if days else 0.0,
        workouts_by_phase=by_phase,
    )


def expected_training_days(duration_days: int, frequency: int) -> int:
    return math.floor(duration_days / 7 * frequency)


def check_training_frequency_compliance(
    templates: list[WorkoutTemplate],
    duration_days: int,
    frequency: int,
    tolerance: float = COVERAGE_TOLERANCE,
) -> FrequencyCheck:
    if not templates:
        return FrequencyCheck(should_prune=False)

    metrics = calculate_program_metrics(templates)
    expected = expected_training_days(duration_days, frequency)
    tolerance_days = expected * tolerance
    variance = abs(metrics.unique_training_days - expected)
    should_prune = metrics.unique_training_days > expected and variance > tolerance_days

    logger.info(
        "training_frequency_checked",
        current_training_days=metrics.unique_training_days,
        expected_training_days=expected,
        variance=variance,
        tolerance_days=tolerance_days,
        should_prune=should_prune,
    )
    return FrequencyCheck(
        should_prune=should_prune,
        current_training_days=metrics.unique_training_days,
        expected_training_days=expected,
        variance=variance,
        tolerance_days=tolerance_days,
    )


def find_phase_issues(phases: list[Phase], total_days: int) -> list[str]:
    """
    Describe continuity problems of phases sorted by start day.

    An empty list means the phases start at day 1, end at ``total_days``,
    and each phase begins the day after the previous one ends.
    """
    issues: list[str] = []
    if not phases:
        return ["No phases"]
    ordered = sorted(phases, key=lambda p: p.start_day)
    if ordered[0].start_day != 1:
        issues.append(f"First phase {ordered[0].phase_id} starts on day {ordered[0].start_day}, not 1")
    for previous, current in zip(ordered, ordered[1:]):
        gap = current.start_day - previous.end_day - 1
        if gap > 0:
            issues.append(
                f"Gap of {gap} day(s) between {previous.phase_id} "
                f"(ends {previous.end_day}) and {current.phase_id} (starts {current.start_day})"
            )
        elif gap < 0:
            issues.append(
                f"Overlap of {-gap} day(s) between {previous.phase_id} and {current.phase_id}"
            )
    if ordered[-1].end_day != total_days:
        issues.append(
            f"Last phase {ordered[-1].phase_id} ends on day {ordered[-1].end_day}, not {total_days}"
        )
    for phase in ordered:
        if phase.end_day < phase.start_day:
            issues.append(f"Phase {phase.phase_id} ends before it starts")
    return issues


def find_template_issues(templates: list[WorkoutTemplate], total_days: int) -> list[str]:
    issues: list[str] = []
    for template in templates:
        if not template.template_id or not template.name:
            issues.append(f"Template on day {template.day_number} is missing templateId or name")
        if template.day_number < 1 or template.day_number > total_days:
            issues.append(
                f"Template {template.template_id} day {template.day_number} outside 1..{total_days}"
            )
        if not template.phase_id:
            issues.append(f"Template {template.template_id} has no phaseId")
    return issues


def coverage_issue(
    templates: list[WorkoutTemplate],
    total_days: int,
    frequency: int,
    tolerance: float = COVERAGE_TOLERANCE,
) -> str | None:
    """Report unique-day coverage outside the tolerance band, in either direction."""
    if not templates:
        return "No workout templates"
    expected = expected_training_days(total_days, frequency)
    actual = len({t.day_number for t in templates})
    if expected and abs(actual - expected) > expected * tolerance:
        direction = "above" if actual > expected else "below"
        return (
            f"Training day coverage {actual} is {direction} the expected {expected} "
            f"by more than {int(tolerance * 100)}%"
        )
    return None


def ensure_program_dates(program: dict[str, Any]) -> dict[str, Any]:
    """Fill startDate (today) and endDate (start + totalDays - 1) when missing."""
    updated = dict(program)
    if not updated.get("startDate"):
        updated["startDate"] = date.today().isoformat()
    if not updated.get("endDate") and updated.get("totalDays"):
        try:
            start = date.fromisoformat(str(updated["startDate"])[:10])
        except ValueError:
            logger.warning("program_start_date_invalid", start_date=updated["startDate"])
            start = date.today()
            updated["startDate"] = start.isoformat()
        updated["endDate"] = (start + timedelta(days=int(updated["totalDays"]) - 1)).isoformat()
    return updated


def should_normalize(program: dict[str, Any], confidence: float, phase_issues: list[str]) -> bool:
    if confidence < NORMALIZE_CONFIDENCE_THRESHOLD:
        return True
    if phase_issues:
        return True
    return not program.get("phases")


def build_program_verdict(
    program: dict[str, Any],
    phases: list[Phase],
    templates: list[WorkoutTemplate],
    duration_days: int | None,
    frequency: int | None,
    tolerance: float = COVERAGE_TOLERANCE,
) -> dict[str, Any]:
    """
    Compute the validation payload for a program.

    Returns a dict with ``isValid``, ``confidence``, ``validationIssues``,
    ``shouldNormalize``, ``shouldPrune`` and, when pruning is recommended,
    ``pruningMetadata``. Phase continuity and coverage problems lower
    confidence but do not invalidate the program.
    """
    program = ensure_program_dates(program)
    issues: list[str] = []
    if not program.get("programId"):
        issues.append("Missing programId")
    if not program.get("name"):
        issues.append("Missing name")
    if not program.get("startDate"):
        issues.append("Missing startDate")
    if not program.get("endDate"):
        issues.append("Missing endDate")
    if not program.get("totalDays"):
        issues.append("Missing totalDays")
    if not phases:
        issues.append("Missing phases")
    if not templates:
        issues.append("No workout templates")

    is_valid = not issues
    confidence = max(0.0, min(1.0, 1.0 - 0.1 * len(issues)))

    total_days = int(program.get("totalDays") or duration_days or 0)
    phase_issues = find_phase_issues(phases, total_days) if phases and total_days else []
    warnings = list(phase_issues)
    if templates and total_days:
        warnings.extend(find_template_issues(templates, total_days))

    program["phases"] = [p.to_json_dict() for p in phases]
    verdict: dict[str, Any] = {
        "isValid": is_valid,
        "confidence": round(confidence, 2),
        "validationIssues": issues,
        "warnings": warnings,
        "shouldNormalize": should_normalize(program, confidence, phase_issues),
        "shouldPrune": False,
    }

    if templates and duration_days and frequency:
        check = check_training_frequency_compliance(templates, duration_days, frequency, tolerance)
        if check.should_prune:
            verdict["shouldPrune"] = True
            verdict["pruningMetadata"] = check.pruning_metadata()
        else:
            low = coverage_issue(templates, duration_days, frequency, tolerance)
            if low:
                warnings.append(low)

    return verdict
