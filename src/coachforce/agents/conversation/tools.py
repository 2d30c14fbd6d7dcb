"""
Conversation tools.

Plain async handlers wrapped in FunctionTool records. Data access failures
are returned to the model as ``{"error": ...}`` payloads by the loop.
"""

import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

import structlog

from coachforce.core.interfaces.storage import KeyValueStoreProtocol, VectorStoreProtocol
from coachforce.core.tools.job_context import JobContext
from coachforce.core.tools.registry import FunctionTool

logger = structlog.get_logger()

MAX_RECENT_WORKOUTS = 20
DEFAULT_RECENT_WORKOUTS = 10
MEMORY_TYPES = ["preference", "goal", "constraint", "injury", "instruction", "other"]

ProgramDesigner = Callable[[dict[str, Any], JobContext], Awaitable[dict[str, Any]]]


def _namespace(context: JobContext) -> str:
    return f"user_{context.user_id}"


def create_search_knowledge_tool(vector_store: VectorStoreProtocol) -> FunctionTool:
    async def search_knowledge_base(input: dict[str, Any], context: JobContext) -> dict[str, Any]:
        top_k = max(1, min(int(input.get("topK") or 5), 10))
        matches = await vector_store.query(_namespace(context), input["query"], top_k)
        return {
            "matches": [
                {
                    "content": m.get("content", "")[:1000],
                    "recordType": (m.get("metadata") or {}).get("recordType"),
                    "score": m.get("score"),
                }
                for m in matches
            ],
            "count": len(matches),
        }

    return FunctionTool(
        id="search_knowledge_base",
        description=(
            "Search the athlete's knowledge base: past conversations, training programs "
            "and saved memories. Use for questions about their history or preferences."
        ),
        handler=search_knowledge_base,
        input_schema={
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "What to look for"},
                "topK": {"type": "integer", "description": "Results to return (max 10)"},
            },
            "required": ["query"],
        },
        contextual_message=["Searching your training history...", "Looking through your notes..."],
    )


def create_recent_workouts_tool(kv_store: KeyValueStoreProtocol) -> FunctionTool:
    async def get_recent_workouts(input: dict[str, Any], context: JobContext) -> dict[str, Any]:
        limit = min(int(input.get("limit") or DEFAULT_RECENT_WORKOUTS), MAX_RECENT_WORKOUTS)
        discipline = input.get("discipline")
        workouts = await kv_store.query(f"user#{context.user_id}", "workout#")
        if discipline:
            workouts = [w for w in workouts if w.get("discipline") == discipline]
        workouts.sort(key=lambda w: w.get("completedAt") or "", reverse=True)
        formatted = [
            {
                "completedAt": w.get("completedAt"),
                "workoutName": w.get("workoutName"),
                "discipline": w.get("discipline"),
                "summary": w.get("summary"),
            }
            for w in workouts[:limit]
        ]
        return {"workouts": formatted, "count": len(formatted)}

    return FunctionTool(
        id="get_recent_workouts",
        description=(
            "Get the athlete's recent completed workouts, newest first. Use for progress "
            "discussions, not on every message. Limit defaults to 10, max 20."
        ),
        handler=get_recent_workouts,
        input_schema={
            "type": "object",
            "properties": {
                "limit": {"type": "integer"},
                "discipline": {"type": "string"},
            },
            "required": [],
        },
        contextual_message=["Pulling up your recent workouts...", "Checking your training history..."],
    )


def create_save_memory_tool(
    kv_store: KeyValueStoreProtocol, vector_store: VectorStoreProtocol
) -> FunctionTool:
    async def save_memory(input: dict[str, Any], context: JobContext) -> dict[str, Any]:
        memory_id = f"memory_{context.user_id}_{uuid.uuid4().hex[:8]}"
        memory_type = input.get("memoryType") or "other"
        record = {
            "memoryId": memory_id,
            "userId": context.user_id,
            "content": input["content"],
            "memoryType": memory_type,
            "importance": input.get("importance") or "medium",
            "createdAt": datetime.now(timezone.utc).isoformat(),
            "source": "conversation",
        }
        await kv_store.save(f"user#{context.user_id}", f"memory#{memory_id}", record)
        context.spawn_detached(
            vector_store.store(
                _namespace(context),
                input["content"],
                {"recordId": memory_id, "recordType": "user_memory", "memoryType": memory_type},
            ),
            name=f"index_memory:{memory_id}",
        )
        logger.info("memory_saved", memory_id=memory_id, memory_type=memory_type)
        return {"saved": True, "memoryId": memory_id}

    return FunctionTool(
        id="save_memory",
        description=(
            "Save something lasting the athlete shared: a preference, goal, constraint, "
            "injury or instruction. Not for transient, single-session details."
        ),
        handler=save_memory,
        input_schema={
            "type": "object",
            "properties": {
                "content": {"type": "string"},
                "memoryType": {"type": "string", "enum": MEMORY_TYPES},
                "importance": {"type": "string", "enum": ["low", "medium", "high"]},
            },
            "required": ["content"],
        },
        contextual_message="Saving that for later...",
    )


def create_design_program_tool(designer: ProgramDesigner) -> FunctionTool:
    async def design_training_program(input: dict[str, Any], context: JobContext) -> dict[str, Any]:
        return await designer(input, context)

    return FunctionTool(
        id="design_training_program",
        description=(
            "Design and save a new multi-week training program. Call once the athlete "
            "has told you their goals, program duration and training days per week."
        ),
        handler=design_training_program,
        input_schema={
            "type": "object",
            "properties": {
                "trainingGoals": {"type": "array", "items": {"type": "string"}},
                "programDuration": {"type": "string", "description": "e.g. '8 weeks'"},
                "trainingFrequency": {"type": "integer", "description": "Days per week"},
                "equipmentConstraints": {"type": "array", "items": {"type": "string"}},
                "experienceLevel": {"type": "string"},
                "startDate": {"type": "string", "description": "YYYY-MM-DD"},
            },
            "required": ["trainingGoals"],
        },
        contextual_message=["Designing your program...", "Putting your training plan together..."],
    )
