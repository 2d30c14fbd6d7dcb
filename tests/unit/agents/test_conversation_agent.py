"""Tests for ConversationAgent and its tools."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from coachforce.agents.conversation.agent import ConversationAgent
from coachforce.core.domain.models import OutboundEventType
from coachforce.core.tools.job_context import JobContext
from coachforce.infrastructure.persistence.file_store import FileKeyValueStore, FileVectorStore


@pytest.fixture
def kv_store(tmp_path):
    return FileKeyValueStore(tmp_path)


@pytest.fixture
def vector_store(tmp_path):
    return FileVectorStore(tmp_path)


@pytest.fixture
def context():
    return JobContext(job_id="job1", user_id="u1")


def tool_result(client, index=0):
    """Payload of a tool result sent back to the model on the latest call."""
    return client.calls[-1]["turns"][-1].content[index]["content"]


class TestConversationReplies:
    @pytest.mark.asyncio
    async def test_streams_chunks_with_history(self, script, kv_store, vector_store, context):
        client = script.client([script.text_turn("Rest today, then easy miles.")])
        agent = ConversationAgent(client, kv_store, vector_store, coach_name="Ava")
        history = [
            {"role": "user", "content": "I ran 20k yesterday"},
            {"role": "assistant", "content": "Great effort!"},
        ]

        loop_run = agent.stream("What should I do today?", context, history)
        events = [event async for event in loop_run]

        assert [e.type for e in events] == [OutboundEventType.CHUNK]
        assert events[0].content == "Rest today, then easy miles."
        assert loop_run.result.stop_reason == "end_turn"
        turns = client.calls[0]["turns"]
        assert [t.text for t in turns] == ["I ran 20k yesterday", "Great effort!", "What should I do today?"]
        assert "Ava" in client.calls[0]["system_prompt"]

    @pytest.mark.asyncio
    async def test_tools_without_designer(self, script, kv_store, vector_store, context):
        client = script.client([script.text_turn("Hi!")])
        agent = ConversationAgent(client, kv_store, vector_store)

        await agent.reply("Hello", context)

        assert client.calls[0]["tools"] == ["search_knowledge_base", "get_recent_workouts", "save_memory"]

    @pytest.mark.asyncio
    async def test_recent_workouts_newest_first(self, script, kv_store, vector_store, context):
        for index, day in enumerate(["2025-03-01", "2025-03-05", "2025-03-03"]):
            await kv_store.save(
                "user#u1",
                f"workout#{index}",
                {"completedAt": day, "workoutName": f"Run {index}", "discipline": "running"},
            )
        await kv_store.save("user#u1", "workout#9", {"completedAt": "2025-03-04", "discipline": "strength"})
        client = script.client(
            [
                script.tool_turn(("c1", "get_recent_workouts", {"limit": 2, "discipline": "running"})),
                script.text_turn("Nice consistency."),
            ]
        )
        agent = ConversationAgent(client, kv_store, vector_store)

        result = await agent.reply("How am I doing?", context)

        payload = tool_result(client)
        assert payload["count"] == 2
        assert [w["completedAt"] for w in payload["workouts"]] == ["2025-03-05", "2025-03-03"]
        assert result.tools_used == ["get_recent_workouts"]

    @pytest.mark.asyncio
    async def test_save_memory_writes_kv_and_index(self, script, kv_store, vector_store, context):
        client = script.client(
            [
                script.tool_turn(
                    ("c1", "save_memory", {"content": "Left knee hurts on downhills", "memoryType": "injury"})
                ),
                script.text_turn("Noted."),
            ]
        )
        agent = ConversationAgent(client, kv_store, vector_store)

        await agent.reply("My left knee hurts on downhills", context)
        await context.drain()

        payload = tool_result(client)
        assert payload["saved"] is True
        stored = await kv_store.query("user#u1", "memory#")
        assert stored[0]["memoryType"] == "injury"
        assert stored[0]["memoryId"] == payload["memoryId"]
        matches = await vector_store.query("user_u1", "knee downhills")
        assert matches[0]["metadata"]["recordType"] == "user_memory"

    @pytest.mark.asyncio
    async def test_search_requires_query(self, script, kv_store, vector_store, context):
        client = script.client(
            [script.tool_turn(("c1", "search_knowledge_base", {"topK": 3})), script.text_turn("Sorry.")]
        )
        agent = ConversationAgent(client, kv_store, vector_store)

        await agent.reply("What did we discuss?", context)

        assert "query" in tool_result(client)["error"]

    @pytest.mark.asyncio
    async def test_search_returns_matches(self, script, kv_store, vector_store, context):
        await vector_store.store("user_u1", "Prefers morning runs", {"recordType": "user_memory"})
        client = script.client(
            [
                script.tool_turn(("c1", "search_knowledge_base", {"query": "morning runs", "topK": 50})),
                script.text_turn("You like mornings."),
            ]
        )
        agent = ConversationAgent(client, kv_store, vector_store)

        await agent.reply("When do I like to run?", context)

        payload = tool_result(client)
        assert payload["count"] == 1
        assert payload["matches"][0]["recordType"] == "user_memory"


class TestProgramDesignDelegation:
    @pytest.mark.asyncio
    async def test_design_runs_as_separate_job(self, script, kv_store, vector_store, context):
        designer = MagicMock()
        designer.design_program = AsyncMock(return_value={"success": True, "programId": "p-new"})
        request = {"trainingGoals": ["marathon"], "programDuration": "16 weeks", "trainingFrequency": 5}
        client = script.client(
            [
                script.tool_turn(("c1", "design_training_program", request)),
                script.text_turn("Your marathon plan is saved."),
            ]
        )
        agent = ConversationAgent(client, kv_store, vector_store, program_designer=designer)
        context.set_tool_result("conversation_note", "kept separate")

        loop_run = agent.stream("Build me a marathon plan", context)
        events = [event async for event in loop_run]

        job = designer.design_program.await_args.args[0]
        assert job is not context
        assert job.job_id == "job1:program"
        assert job.detached is context.detached
        assert job.user_id == "u1"
        assert job.get("requirements_input") == request
        assert job.get("program_id").startswith("program_u1_")
        assert not job.has_tool_result("conversation_note")
        assert tool_result(client) == {"success": True, "programId": "p-new"}
        contextual = [e.content for e in events if e.type == OutboundEventType.CONTEXTUAL]
        assert contextual[0] in ("Designing your program...", "Putting your training plan together...")
        assert "design_training_program" in client.calls[0]["tools"]

    @pytest.mark.asyncio
    async def test_design_requires_goals(self, script, kv_store, vector_store, context):
        designer = MagicMock()
        designer.design_program = AsyncMock()
        client = script.client(
            [
                script.tool_turn(("c1", "design_training_program", {"programDuration": "8 weeks"})),
                script.text_turn("What are your goals?"),
            ]
        )
        agent = ConversationAgent(client, kv_store, vector_store, program_designer=designer)

        await agent.reply("Make me a plan", context)

        designer.design_program.assert_not_awaited()
        assert "trainingGoals" in tool_result(client)["error"]
