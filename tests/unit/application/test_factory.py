"""
Unit tests for CoachFactory.

Tests verify:
- Profile loading and missing-profile errors
- Store, compression and client wiring from the profile
- Agent creation with injected model clients
- Configuration validation
"""

from pathlib import Path

import pytest
import yaml

from coachforce.agents.conversation.agent import ConversationAgent
from coachforce.agents.program_designer.agent import ProgramDesignerAgent
from coachforce.application.factory import CoachFactory
from coachforce.core.domain.errors import ConfigurationError
from coachforce.infrastructure.llm.litellm_client import LiteLLMClient
from coachforce.infrastructure.persistence.file_store import FileKeyValueStore


@pytest.fixture
def config_dir(tmp_path):
    """Config directory with a ``test`` profile persisting under tmp_path."""
    directory = tmp_path / "configs"
    directory.mkdir()
    profile = {
        "llm": {"default_model": "main", "models": {"main": "gpt-4.1", "fast": "gpt-4.1-mini"}},
        "loop": {"max_iterations": 8},
        "compression": {"metadata_limit_bytes": 2048, "backoff_schedule": [1, 2]},
        "program": {"max_phases": 4, "coverage_tolerance": 0.25, "default_frequency": 3},
        "coach": {"name": "Ava", "persona": "Calm"},
        "persistence": {"type": "file", "work_dir": str(tmp_path / "work")},
    }
    (directory / "test.yaml").write_text(yaml.safe_dump(profile), encoding="utf-8")
    return directory


def write_profile(config_dir: Path, name: str, profile: dict) -> None:
    (config_dir / f"{name}.yaml").write_text(yaml.safe_dump(profile), encoding="utf-8")


class TestCoachFactory:
    """Test suite for CoachFactory."""

    def test_factory_initialization(self):
        factory = CoachFactory(config_dir="configs")
        assert factory.config_dir == Path("configs")

    def test_load_shipped_dev_profile(self):
        config = CoachFactory(config_dir="configs")._load_profile("dev")

        assert config["loop"]["max_iterations"] == 15
        assert config["compression"]["backoff_schedule"] == [30, 90, 180, 300]
        assert config["persistence"]["work_dir"] == ".coachforce"

    def test_load_profile_not_found(self, config_dir):
        factory = CoachFactory(config_dir=str(config_dir))

        with pytest.raises(FileNotFoundError, match="Profile not found"):
            factory._load_profile("nonexistent")

    def test_create_deps_from_profile(self, config_dir, script, tmp_path):
        client = script.client([])
        deps = CoachFactory(config_dir=str(config_dir), client=client).create_deps("test")

        assert deps.client is client
        assert deps.transformer.client is client
        assert deps.transformer.settings.backoff_schedule == (1, 2)
        assert deps.vector_store.metadata_limit_bytes == 2048
        assert deps.max_phases == 4
        assert deps.coverage_tolerance == 0.25
        assert deps.default_frequency == 3
        assert isinstance(deps.kv_store, FileKeyValueStore)
        assert (tmp_path / "work" / "kv").is_dir()

    def test_work_dir_override(self, config_dir, script, tmp_path):
        factory = CoachFactory(config_dir=str(config_dir), client=script.client([]))

        factory.create_deps("test", work_dir=str(tmp_path / "other"))

        assert (tmp_path / "other" / "blobs").is_dir()

    def test_litellm_client_built_without_injection(self, config_dir):
        deps = CoachFactory(config_dir=str(config_dir)).create_deps("test")

        assert isinstance(deps.client, LiteLLMClient)
        assert deps.client.resolve_model("fast") == "gpt-4.1-mini"

    def test_create_program_designer(self, config_dir, script):
        agent = CoachFactory(config_dir=str(config_dir), client=script.client([])).create_program_designer("test")

        assert isinstance(agent, ProgramDesignerAgent)
        assert agent.loop.max_iterations == 8
        assert "save_program_to_database" in agent.registry.ids

    def test_create_conversation_agent_uses_coach_section(self, config_dir, script):
        factory = CoachFactory(config_dir=str(config_dir), client=script.client([]))

        agent = factory.create_conversation_agent("test")

        assert isinstance(agent, ConversationAgent)
        assert "Ava" in agent.loop.system_prompt
        assert "design_training_program" in agent.registry.ids

    def test_coach_name_argument_wins(self, config_dir, script):
        factory = CoachFactory(config_dir=str(config_dir), client=script.client([]))

        agent = factory.create_conversation_agent("test", coach_name="Max")

        assert "Max" in agent.loop.system_prompt

    def test_invalid_max_iterations(self, config_dir, tmp_path):
        write_profile(config_dir, "broken", {"loop": {"max_iterations": 0}, "persistence": {"work_dir": str(tmp_path)}})
        factory = CoachFactory(config_dir=str(config_dir))

        with pytest.raises(ConfigurationError, match="max_iterations"):
            factory.describe_profile("broken")

    def test_invalid_program_values(self, config_dir, script, tmp_path):
        write_profile(
            config_dir,
            "badprogram",
            {"program": {"max_phases": "many"}, "persistence": {"work_dir": str(tmp_path)}},
        )
        factory = CoachFactory(config_dir=str(config_dir), client=script.client([]))

        with pytest.raises(ConfigurationError, match="Invalid program configuration"):
            factory.create_deps("badprogram")

    def test_describe_profile(self, config_dir, tmp_path):
        summary = CoachFactory(config_dir=str(config_dir)).describe_profile("test")

        assert summary == {
            "profile": "test",
            "default_model": "main",
            "max_iterations": 8,
            "work_dir": str(tmp_path / "work"),
        }
