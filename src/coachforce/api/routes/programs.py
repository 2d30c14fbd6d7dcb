from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from coachforce.api.routes.conversation import get_executor
from coachforce.application.executor import CoachExecutor
from coachforce.core.domain.errors import ConfigurationError

router = APIRouter()


class DesignProgramRequest(BaseModel):
    """Request to design and save a training program."""
    user_id: str = Field(min_length=1)
    program_id: Optional[str] = None
    training_goals: List[str] = Field(default_factory=list)
    program_duration: Optional[str] = None
    """Free text or number of days, e.g. "8 weeks", "3 months", "42"."""
    training_frequency: Optional[int] = None
    equipment_constraints: List[str] = Field(default_factory=list)
    experience_level: Optional[str] = None
    start_date: Optional[str] = None
    coach_id: Optional[str] = None
    user_message: str = ""

    def requirements(self) -> Dict[str, Any]:
        return {
            "trainingGoals": self.training_goals,
            "programDuration": self.program_duration,
            "trainingFrequency": self.training_frequency,
            "equipmentConstraints": self.equipment_constraints,
            "experienceLevel": self.experience_level,
            "startDate": self.start_date,
            "coachId": self.coach_id,
            "userMessage": self.user_message,
        }


@router.post("/programs")
async def design_program(
    request: DesignProgramRequest, executor: CoachExecutor = Depends(get_executor)
) -> Dict[str, Any]:
    """Design a program synchronously and return the design result."""
    try:
        return await executor.design_program(
            user_id=request.user_id,
            requirements=request.requirements(),
            program_id=request.program_id,
        )
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
