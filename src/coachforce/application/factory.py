"""
Application Layer - Coach Factory

Builds agents from YAML configuration profiles, wiring the model client,
file-backed stores, and compression helper into the program designer and
conversation agents.
"""

from pathlib import Path
from typing import Any, Optional

import structlog
import yaml

from coachforce.agents.conversation.agent import ConversationAgent
from coachforce.agents.program_designer.agent import ProgramDesignerAgent
from coachforce.agents.program_designer.tools import ProgramDesignerDeps
from coachforce.core.domain.errors import ConfigurationError
from coachforce.core.domain.react_loop import ReActLoop
from coachforce.core.interfaces.llm import ModelClientProtocol
from coachforce.infrastructure.compression import CompressionSettings, ResilientTransformer
from coachforce.infrastructure.llm.litellm_client import LiteLLMClient
from coachforce.infrastructure.persistence.file_store import (
    FileBlobStore,
    FileKeyValueStore,
    FileVectorStore,
)


class CoachFactory:
    """
    Factory for creating agents with dependency injection.

    A model client can be injected (tests pass a scripted fake); otherwise
    one is built from the profile's ``llm`` section.
    """

    def __init__(self, config_dir: str = "configs", client: Optional[ModelClientProtocol] = None):
        self.config_dir = Path(config_dir)
        self._client = client
        self.logger = structlog.get_logger().bind(component="coach_factory")

    def _load_profile(self, profile: str) -> dict:
        """
        Load configuration profile from YAML file.

        Raises:
            FileNotFoundError: If profile YAML not found
        """
        profile_path = self.config_dir / f"{profile}.yaml"

        if not profile_path.exists():
            self.logger.error(
                "profile_not_found",
                profile=profile,
                path=str(profile_path),
                hint="Ensure profile YAML exists in configs directory",
            )
            raise FileNotFoundError(f"Profile not found: {profile_path}")

        with open(profile_path) as f:
            config = yaml.safe_load(f) or {}

        self.logger.debug("profile_loaded", profile=profile, config_keys=list(config.keys()))
        return config

    def _create_client(self, config: dict) -> ModelClientProtocol:
        if self._client is not None:
            return self._client
        return LiteLLMClient.from_config(config.get("llm", {}))

    def _max_iterations(self, config: dict) -> int:
        value = config.get("loop", {}).get("max_iterations", ReActLoop.DEFAULT_MAX_ITERATIONS)
        try:
            max_iterations = int(value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"loop.max_iterations must be an integer, got {value!r}") from e
        if max_iterations < 1:
            raise ConfigurationError(f"loop.max_iterations must be >= 1, got {max_iterations}")
        return max_iterations

    def create_deps(self, profile: str = "dev", work_dir: Optional[str] = None) -> ProgramDesignerDeps:
        config = self._load_profile(profile)
        if work_dir:
            config.setdefault("persistence", {})["work_dir"] = work_dir
        return self._build_deps(config)

    def _build_deps(self, config: dict) -> ProgramDesignerDeps:
        work_dir = config.get("persistence", {}).get("work_dir", ".coachforce")
        program = config.get("program", {})
        client = self._create_client(config)
        settings = CompressionSettings.from_config(config.get("compression"))

        try:
            deps = ProgramDesignerDeps(
                client=client,
                kv_store=FileKeyValueStore(work_dir),
                blob_store=FileBlobStore(work_dir),
                vector_store=FileVectorStore(work_dir, settings.metadata_limit_bytes),
                transformer=ResilientTransformer(client, settings),
                max_phases=int(program.get("max_phases", 5)),
                coverage_tolerance=float(program.get("coverage_tolerance", 0.2)),
                default_duration_days=int(program.get("default_duration_days", 56)),
                default_frequency=int(program.get("default_frequency", 4)),
                model=program.get("model"),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid program configuration: {e}") from e

        self.logger.info(
            "deps_created",
            work_dir=work_dir,
            max_phases=deps.max_phases,
            coverage_tolerance=deps.coverage_tolerance,
        )
        return deps

    def create_program_designer(
        self, profile: str = "dev", work_dir: Optional[str] = None
    ) -> ProgramDesignerAgent:
        config = self._load_profile(profile)
        if work_dir:
            config.setdefault("persistence", {})["work_dir"] = work_dir
        self.logger.info("creating_program_designer", profile=profile)
        return ProgramDesignerAgent(self._build_deps(config), max_iterations=self._max_iterations(config))

    def create_conversation_agent(
        self,
        profile: str = "dev",
        work_dir: Optional[str] = None,
        coach_name: Optional[str] = None,
        coach_persona: str = "",
    ) -> ConversationAgent:
        config = self._load_profile(profile)
        if work_dir:
            config.setdefault("persistence", {})["work_dir"] = work_dir
        deps = self._build_deps(config)
        max_iterations = self._max_iterations(config)
        coach = config.get("coach", {})

        self.logger.info("creating_conversation_agent", profile=profile)
        return ConversationAgent(
            client=deps.client,
            kv_store=deps.kv_store,
            vector_store=deps.vector_store,
            program_designer=ProgramDesignerAgent(deps, max_iterations=max_iterations),
            coach_name=coach_name or coach.get("name"),
            coach_persona=coach_persona or coach.get("persona", ""),
            max_iterations=max_iterations,
        )

    def describe_profile(self, profile: str = "dev") -> dict[str, Any]:
        """Effective configuration summary (``coachforce profile``)."""
        config = self._load_profile(profile)
        llm = config.get("llm", {})
        return {
            "profile": profile,
            "default_model": llm.get("default_model", "main"),
            "max_iterations": self._max_iterations(config),
            "work_dir": config.get("persistence", {}).get("work_dir", ".coachforce"),
        }
