"""
Training program models.

Pydantic models with camelCase aliases, so model output and persisted JSON
use ``phaseId`` / ``dayNumber`` while Python code uses snake_case.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class Phase(CamelModel):
    """Contiguous day range of a program."""

    phase_id: str
    name: str
    description: str = ""
    start_day: int = Field(ge=1)
    end_day: int = Field(ge=1)
    duration_days: int | None = None
    focus_areas: list[str] = Field(default_factory=list)

    def model_post_init(self, __context: Any) -> None:
        if self.duration_days is None:
            self.duration_days = self.end_day - self.start_day + 1


class WorkoutTemplate(CamelModel):
    """
    One generated workout unit.

    Model output may carry extra fields (exercises, notes, equipment...);
    they are kept as-is.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    template_id: str
    day_number: int
    name: str
    phase_id: str | None = None
    description: str = ""
    estimated_duration: int | None = None
    is_optional: bool = False


class PhaseResult(CamelModel):
    """Output of one fan-out sub-task."""

    phase: Phase
    workout_templates: list[WorkoutTemplate] = Field(default_factory=list)
    debug_trace: dict[str, Any] = Field(default_factory=dict)

    @property
    def phase_id(self) -> str:
        return self.phase.phase_id


class AssembledProgram(CamelModel):
    phases: list[Phase]
    workout_templates: list[WorkoutTemplate]
    total_workouts: int
    days_covered: int
    warnings: list[str] = Field(default_factory=list)


class ProgramRequirements(CamelModel):
    """Normalized requirements loaded once per job and kept in the memo."""

    user_id: str
    program_id: str
    program_duration: int
    training_frequency: int
    training_goals: list[str] = Field(default_factory=list)
    equipment_constraints: list[str] = Field(default_factory=list)
    experience_level: str = "intermediate"
    coach_id: str | None = None
    coach_persona: str = ""
    start_date: str | None = None
    user_message: str = ""
    additional_considerations: str = ""
