"""Shared fakes for unit tests: a scripted streaming model client and event builders."""

import json
import re
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from coachforce.agents.program_designer.tools import ProgramDesignerDeps
from coachforce.core.domain.events import (
    TextDelta,
    ToolCallDelta,
    ToolCallStarted,
    ToolCallStopped,
    TurnComplete,
    Usage,
)
from coachforce.core.tools.job_context import JobContext
from coachforce.infrastructure.compression import ResilientTransformer
from coachforce.infrastructure.persistence.file_store import (
    FileBlobStore,
    FileKeyValueStore,
    FileVectorStore,
)


class ScriptedModelClient:
    """
    Model client that replays pre-built event turns.

    Each ``stream`` call consumes the next turn. With ``repeat_last`` the
    final turn is replayed forever. An Exception instance inside a turn is
    raised at that point of the stream.
    """

    def __init__(self, turns, repeat_last=False):
        self.turns = list(turns)
        self.repeat_last = repeat_last
        self.calls = []
        self.call_tool = AsyncMock()
        self.complete_text = AsyncMock(return_value="")

    async def stream(self, system_prompt, state, tools):
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "turns": state.turns,
                "tools": [t["name"] for t in tools],
            }
        )
        if not self.turns:
            raise AssertionError("No scripted turns left")
        if self.repeat_last and len(self.turns) == 1:
            turn = self.turns[0]
        else:
            turn = self.turns.pop(0)
        for event in turn:
            if isinstance(event, Exception):
                raise event
            yield event


def text_turn(text, stop_reason="end_turn", usage=None):
    return [TextDelta(text), TurnComplete(stop_reason, usage=usage or Usage(10, 5))]


def tool_turn(*calls, text=None, usage=None):
    """
    Build a tool_use turn.

    Each call is ``(call_id, name, arguments)`` where arguments is a dict
    (JSON-encoded and split in two fragments) or a list of raw fragments.
    """
    events = []
    if text:
        events.append(TextDelta(text))
    for call_id, name, arguments in calls:
        events.append(ToolCallStarted(call_id, name))
        if isinstance(arguments, dict):
            raw = json.dumps(arguments)
            middle = len(raw) // 2
            fragments = [raw[:middle], raw[middle:]]
        else:
            fragments = list(arguments)
        events.extend(ToolCallDelta(call_id, fragment) for fragment in fragments)
        events.append(ToolCallStopped(call_id))
    events.append(TurnComplete("tool_use", usage=usage or Usage(20, 8)))
    return events


@pytest.fixture
def script():
    """Builders for scripted model turns."""
    return SimpleNamespace(
        client=ScriptedModelClient,
        text_turn=text_turn,
        tool_turn=tool_turn,
    )


def phase_dicts(*ranges):
    """Phase payloads p1, p2, ... for the given (start, end) day ranges."""
    return [
        {"phaseId": f"p{i + 1}", "name": f"Phase {i + 1}", "startDay": start, "endDay": end}
        for i, (start, end) in enumerate(ranges)
    ]


def workout_dicts(phase_id, days):
    return [
        {"templateId": f"{phase_id}_d{day}", "dayNumber": day, "name": f"Session day {day}"}
        for day in days
    ]


class FakeGenerationModel:
    """
    Non-streaming model answering the forced tool calls of program generation.

    ``workouts`` maps phase id to workout payloads; the phase is recognised
    from the ``(phaseId)`` marker of the phase prompt.
    """

    def __init__(self, phases=None, workouts=None, days_to_remove=None, summary="A solid plan."):
        self.phases = phases or []
        self.workouts = workouts or {}
        self.days_to_remove = days_to_remove or []
        self.summary = summary
        self.prompts = []
        self.call_tool = AsyncMock(side_effect=self._call_tool)
        self.complete_text = AsyncMock(side_effect=self._complete_text)

    async def _call_tool(self, system_prompt, prompt, tool, model=None):
        self.prompts.append((tool["name"], prompt))
        name = tool["name"]
        if name == "generate_phase_structure":
            payload = {"phases": self.phases}
        elif name == "generate_phase_workouts":
            match = re.search(r"\((p\d+)\)", prompt)
            payload = {"workouts": self.workouts.get(match.group(1), []) if match else []}
        elif name == "select_days_to_remove":
            payload = {"daysToRemove": self.days_to_remove, "reasoning": "Dropped later optional days"}
        else:
            raise AssertionError(f"Unexpected tool {name}")
        return {"tool_name": name, "input": payload, "stop_reason": "tool_use"}

    async def _complete_text(self, system_prompt, prompt, model=None, max_tokens=None):
        return self.summary


@pytest.fixture
def generation():
    """Builders for program-generation fakes."""
    return SimpleNamespace(
        model=FakeGenerationModel,
        phases=phase_dicts,
        workouts=workout_dicts,
    )


REQUIREMENTS_INPUT = {
    "programDuration": "3 weeks",
    "trainingFrequency": 3,
    "trainingGoals": ["strength"],
    "equipmentConstraints": ["barbell"],
    "experienceLevel": "intermediate",
}


@pytest.fixture
def designer_deps(tmp_path):
    """Build ProgramDesignerDeps around a fake model with file stores under tmp_path."""

    def build(client, **overrides):
        return ProgramDesignerDeps(
            client=client,
            kv_store=FileKeyValueStore(tmp_path),
            blob_store=FileBlobStore(tmp_path),
            vector_store=FileVectorStore(tmp_path),
            transformer=ResilientTransformer(client, sleep=AsyncMock()),
            **overrides,
        )

    return build


@pytest.fixture
def program_job():
    """JobContext factory for a program design job."""

    def build(requirements=None, user_id="u1", program_id="prog1"):
        return JobContext(
            job_id="job1",
            user_id=user_id,
            program_id=program_id,
            requirements_input=dict(REQUIREMENTS_INPUT if requirements is None else requirements),
        )

    return build
