import json
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from coachforce.application.executor import CoachExecutor

router = APIRouter()


def get_executor(request: Request) -> CoachExecutor:
    return request.app.state.executor


class ConversationRequest(BaseModel):
    """Request for one streamed coaching reply."""
    message: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    job_id: Optional[str] = None
    coach_name: Optional[str] = None
    coach_persona: str = ""
    conversation_history: Optional[List[Dict[str, Any]]] = None
    """Prior turns as [{"role": "user" | "assistant", "content": "..."}]."""


@router.post("/conversations/stream")
async def stream_conversation(
    request: ConversationRequest, executor: CoachExecutor = Depends(get_executor)
):
    """Stream a coaching reply as SSE ``data: {json}`` events."""
    if not request.message.strip():
        raise HTTPException(status_code=400, detail="message must not be blank")

    async def event_generator():
        async for event in executor.stream_conversation(
            message=request.message,
            user_id=request.user_id,
            history=request.conversation_history,
            job_id=request.job_id,
            coach_name=request.coach_name,
            coach_persona=request.coach_persona,
        ):
            yield f"data: {json.dumps(event, ensure_ascii=False, default=str)}\n\n"

    return StreamingResponse(event_generator(), media_type="text/event-stream")
