"""
Validation Gate

Code-level enforcement of negative validation verdicts. Once an upstream
validation step has said no, the gated tools are short-circuited with a
``blocked`` result, whatever the model decides to call. Both functions are
pure: no I/O, no logging, no mutation.
"""

from typing import Any

from coachforce.core.domain.models import ValidationVerdict

DEFAULT_GATED_TOOLS: frozenset[str] = frozenset(
    {"normalize_program_data", "save_program_to_database"}
)

SAVE_TOOL_ID = "save_program_to_database"


def enforce(
    tool_id: str,
    verdict: ValidationVerdict | None,
    gated_tools: frozenset[str] | set[str] = DEFAULT_GATED_TOOLS,
) -> dict[str, Any] | None:
    """
    Decide whether ``tool_id`` may run given the latest validation verdict.

    Args:
        tool_id: Tool the model wants to call
        verdict: Latest validation verdict, or None if validation has not run
        gated_tools: Tool ids subject to blocking

    Returns:
        None when the tool may proceed, otherwise a blocked result payload.
    """
    if verdict is None or tool_id not in gated_tools:
        return None
    if not verdict.is_negative:
        return None

    if verdict.error is not None:
        return {
            "error": True,
            "blocked": True,
            "reason": f"Cannot run {tool_id} - validation failed with error: {verdict.error}",
        }

    issues = verdict.blocking_reasons
    return {
        "error": True,
        "blocked": True,
        "reason": (
            f"Cannot run {tool_id} - validation reported {verdict.flag_name}=false: "
            f"{', '.join(issues) if issues else 'Unknown issues'}"
        ),
        "validationIssues": list(issues),
    }


def enforce_all_blocking(
    tool_id: str,
    validation: ValidationVerdict | None,
    normalization: dict[str, Any] | None,
) -> dict[str, Any] | None:
    """
    Combined gate for the save step.

    Save is blocked when validation raised or was negative, or when
    normalization raised or left the program invalid. Other tools fall back
    to :func:`enforce`.
    """
    blocked = enforce(tool_id, validation)
    if blocked is not None or tool_id != SAVE_TOOL_ID or not normalization:
        return blocked

    if normalization.get("error") and normalization.get("isValid") is None:
        return {
            "error": True,
            "blocked": True,
            "reason": (
                "Cannot save program - normalization failed with error: "
                f"{normalization['error']}"
            ),
        }

    if normalization.get("isValid") is False:
        issues_found = int(normalization.get("issuesFound", 0))
        corrections = int(normalization.get("correctionsMade", 0))
        return {
            "error": True,
            "blocked": True,
            "reason": "Program normalization failed validation. Cannot save invalid program.",
            "normalizationIssues": {
                "issuesFound": issues_found,
                "correctionsMade": corrections,
                "remainingIssues": issues_found - corrections,
            },
        }

    return None
