# ============================================
# BASE TOOL INTERFACE
# ============================================

from abc import ABC, abstractmethod
from typing import Any, Optional

from coachforce.core.tools.job_context import JobContext


class Tool(ABC):
    """Base class for class-based tools."""

    contextual_message: str | list[str] | None = None

    @property
    @abstractmethod
    def id(self) -> str:
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        pass

    @property
    def input_schema(self) -> dict[str, Any]:
        """Override to describe the tool input as JSON Schema."""
        return {"type": "object", "properties": {}, "required": []}

    @abstractmethod
    async def execute(self, input: dict[str, Any], context: JobContext) -> dict[str, Any]:
        pass


def validate_required_fields(
    schema: dict[str, Any], input: dict[str, Any]
) -> tuple[bool, Optional[str]]:
    missing = [name for name in schema.get("required", []) if name not in input]
    if missing:
        return False, f"Missing required parameter(s): {', '.join(missing)}"
    return True, None
