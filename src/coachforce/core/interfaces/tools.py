"""Protocol every tool in a registry satisfies."""

from typing import Any, Protocol

from coachforce.core.tools.job_context import JobContext


class ToolProtocol(Protocol):
    """
    A named capability the model can invoke.

    ``description`` is what the model uses to decide when the tool applies,
    so it is part of the tool's contract. ``contextual_message`` is an
    optional progress message (or list of candidates) shown to the client
    before the tool runs.
    """

    id: str
    description: str
    input_schema: dict[str, Any]
    contextual_message: str | list[str] | None

    async def execute(self, input: dict[str, Any], context: JobContext) -> Any:
        ...
