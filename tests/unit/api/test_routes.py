"""Tests for the FastAPI routes using an injected fake executor."""

import json

import pytest
from fastapi.testclient import TestClient

from coachforce import __version__
from coachforce.api.server import create_app
from coachforce.core.domain.errors import ConfigurationError


class FakeExecutor:
    def __init__(self, events=None, design_result=None, design_error=None):
        self.events = events or []
        self.design_result = design_result
        self.design_error = design_error
        self.stream_calls = []
        self.design_calls = []

    async def stream_conversation(self, **kwargs):
        self.stream_calls.append(kwargs)
        for event in self.events:
            yield event

    async def design_program(self, **kwargs):
        self.design_calls.append(kwargs)
        if self.design_error is not None:
            raise self.design_error
        return self.design_result


def sse_events(body: str):
    return [json.loads(line[len("data: "):]) for line in body.split("\n\n") if line.startswith("data: ")]


@pytest.fixture
def make_client():
    def build(executor):
        return TestClient(create_app(executor=executor))

    return build


class TestHealth:
    def test_health(self, make_client):
        response = make_client(FakeExecutor()).get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "version": __version__}


class TestConversationStream:
    def test_streams_sse_events(self, make_client):
        executor = FakeExecutor(
            events=[
                {"type": "contextual", "content": "Pulling up your recent workouts..."},
                {"type": "chunk", "content": "Grüße!"},
                {"type": "complete", "stopReason": "end_turn"},
            ]
        )

        response = make_client(executor).post(
            "/api/v1/conversations/stream",
            json={
                "message": "Hi coach",
                "user_id": "u1",
                "conversation_history": [{"role": "user", "content": "earlier"}],
            },
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = sse_events(response.text)
        assert [e["type"] for e in events] == ["contextual", "chunk", "complete"]
        assert events[1]["content"] == "Grüße!"
        call = executor.stream_calls[0]
        assert call["message"] == "Hi coach"
        assert call["user_id"] == "u1"
        assert call["history"] == [{"role": "user", "content": "earlier"}]

    def test_blank_message_rejected(self, make_client):
        executor = FakeExecutor()

        response = make_client(executor).post(
            "/api/v1/conversations/stream", json={"message": "   ", "user_id": "u1"}
        )

        assert response.status_code == 400
        assert executor.stream_calls == []

    def test_missing_user_id_is_validation_error(self, make_client):
        response = make_client(FakeExecutor()).post(
            "/api/v1/conversations/stream", json={"message": "Hi"}
        )

        assert response.status_code == 422


class TestPrograms:
    def test_design_program(self, make_client):
        executor = FakeExecutor(design_result={"success": True, "programId": "prog-1"})

        response = make_client(executor).post(
            "/api/v1/programs",
            json={
                "user_id": "u1",
                "training_goals": ["5k"],
                "program_duration": "6 weeks",
                "training_frequency": 4,
            },
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "programId": "prog-1"}
        call = executor.design_calls[0]
        assert call["user_id"] == "u1"
        assert call["program_id"] is None
        assert call["requirements"]["trainingGoals"] == ["5k"]
        assert call["requirements"]["programDuration"] == "6 weeks"
        assert call["requirements"]["trainingFrequency"] == 4

    def test_skipped_design_is_still_ok(self, make_client):
        executor = FakeExecutor(design_result={"success": False, "skipped": True, "reason": "x"})

        response = make_client(executor).post("/api/v1/programs", json={"user_id": "u1"})

        assert response.status_code == 200
        assert response.json()["skipped"] is True

    def test_configuration_error_is_400(self, make_client):
        executor = FakeExecutor(design_error=ConfigurationError("user_id required"))

        response = make_client(executor).post("/api/v1/programs", json={"user_id": "u1"})

        assert response.status_code == 400
        assert response.json()["detail"] == "user_id required"

    def test_unexpected_error_is_500(self, make_client):
        executor = FakeExecutor(design_error=RuntimeError("disk full"))

        response = make_client(executor).post("/api/v1/programs", json={"user_id": "u1"})

        assert response.status_code == 500
