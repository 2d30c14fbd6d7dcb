"""
Tool Registry

A closed map from tool id to a tool record ({description, input schema,
handler}). Lookup of an unknown id is a data error, reported to the model
as an error result by the loop, not a programming error.
"""

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

import structlog

from coachforce.core.interfaces.tools import ToolProtocol
from coachforce.core.tools.job_context import JobContext

ToolHandler = Callable[[dict[str, Any], JobContext], Awaitable[Any]]


@dataclass
class FunctionTool:
    """Tool record wrapping a plain async handler."""

    id: str
    description: str
    handler: ToolHandler
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )
    contextual_message: str | list[str] | None = None

    async def execute(self, input: dict[str, Any], context: JobContext) -> Any:
        return await self.handler(input, context)


class ToolRegistry:
    """Closed registry of tools available to one loop."""

    def __init__(self, tools: Iterable[ToolProtocol] = ()):
        self._tools: dict[str, ToolProtocol] = {}
        self.logger = structlog.get_logger().bind(component="tool_registry")
        for tool in tools:
            self.register(tool)

    def register(self, tool: ToolProtocol) -> None:
        if tool.id in self._tools:
            raise ValueError(f"Duplicate tool id: {tool.id}")
        self._tools[tool.id] = tool
        self.logger.debug("tool_registered", tool=tool.id)

    def get(self, tool_id: str) -> ToolProtocol | None:
        return self._tools.get(tool_id)

    @property
    def ids(self) -> list[str]:
        return list(self._tools)

    def schemas(self) -> list[dict[str, Any]]:
        """Provider-neutral tool schemas in registration order."""
        return [
            {
                "name": tool.id,
                "description": tool.description,
                "input_schema": tool.input_schema,
            }
            for tool in self._tools.values()
        ]
