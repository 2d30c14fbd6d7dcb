"""
Error taxonomy for the orchestration core.

Most runtime problems never surface as exceptions: malformed tool input,
unknown tools and failing tools become error ToolResults, blocked tools
become structured "blocked" payloads, and throttling is absorbed by the
resilient transform helper. The classes below cover what remains.
"""

THROTTLING_MARKERS: tuple[str, ...] = (
    "ThrottlingException",
    "RateLimitError",
    "TooManyRequests",
    "Too many requests",
    "429",
    "throttl",
    "rate limit",
)


class CoachforceError(Exception):
    """Base class for all coachforce errors."""


class ConfigurationError(CoachforceError):
    """
    Raised for caller bugs: missing upstream context, invalid profile values,
    or a job started without required identifiers.

    This is the only error class the ReAct loop lets propagate.
    """


class ModelCallError(CoachforceError):
    """A language-model call failed for a reason other than throttling."""


class ThrottlingError(ModelCallError):
    """A language-model call was rejected by the provider's rate limiter."""


class PhaseGenerationError(CoachforceError):
    """The structure or fan-out step of program generation failed outright."""


class PruningInvariantError(CoachforceError):
    """Removed and kept template counts do not add up to the original count."""


def is_throttling_error(
    error: BaseException, markers: tuple[str, ...] = THROTTLING_MARKERS
) -> bool:
    """
    Classify an exception as throttling-class.

    Matches on the exception type name as well as the message, the same way
    the LLM retry policy matches ``retry_on_errors`` entries.
    """
    if isinstance(error, ThrottlingError):
        return True
    error_type = type(error).__name__
    message = str(error)
    lowered = message.lower()
    return any(
        marker in error_type or marker in message or marker.lower() in lowered
        for marker in markers
    )
