"""Factory for the session orchestrator.

Design principles:
- OtronConfig: All scalar configuration (models, limits, URLs)
- OrchestratorDependencies: Protocol implementations (DI for testability)
- create_orchestrator(): Builds the store, model phase, evaluator,
  lifecycle manager and dispatcher from those two inputs

Usage:
    # Production wiring from the environment
    orchestrator = create_orchestrator(OtronConfig.from_env())

    # With fakes for testing
    deps = OrchestratorDependencies(kv=fake_kv, agent_model=fake_model)
    orchestrator = create_orchestrator(config, deps=deps)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from otron.infra.clients.anthropic_client import AnthropicModelClient
from otron.infra.memory import KeyValueMemoryStore
from otron.infra.repository import KeyValueRepositorySource, YamlRepositorySource
from otron.infra.store.kv import RedisKeyValueClient
from otron.infra.store.session_store import SessionStore
from otron.infra.tools.env import get_repositories_file
from otron.orchestration.dispatch import SessionDispatcher
from otron.orchestration.session_lifecycle import SessionLifecycleManager
from otron.pipeline.goal_evaluator import GoalEvaluator
from otron.pipeline.model_call import ModelCallPhase
from otron.pipeline.tool_registry import ToolRegistry

if TYPE_CHECKING:
    from otron.core.protocols import (
        KeyValueClient,
        MemoryStore,
        ModelClient,
        RepositorySource,
    )
    from otron.infra.io.config import OtronConfig

__all__ = ["Orchestrator", "OrchestratorDependencies", "create_orchestrator"]

logger = logging.getLogger(__name__)


@dataclass
class OrchestratorDependencies:
    """Protocol implementations for the orchestrator.

    Every field is optional; missing ones are built from OtronConfig.

    Attributes:
        kv: Key-value backend shared by the store, memory and repositories.
        agent_model: Model client for the tool-using agent.
        evaluator_model: Model client for goal evaluation.
        registry: Tool catalog exposed to the agent.
        memory: Long-term memory collaborator.
        repositories: Source of repository definitions.
    """

    kv: KeyValueClient | None = None
    agent_model: ModelClient | None = None
    evaluator_model: ModelClient | None = None
    registry: ToolRegistry | None = None
    memory: MemoryStore | None = None
    repositories: RepositorySource | None = None


@dataclass
class Orchestrator:
    """Wired components, ready to handle events."""

    config: OtronConfig
    kv: KeyValueClient
    store: SessionStore
    manager: SessionLifecycleManager
    dispatcher: SessionDispatcher
    owns_kv: bool = False

    async def aclose(self) -> None:
        """Close the key-value connection if the factory opened it."""
        if self.owns_kv and isinstance(self.kv, RedisKeyValueClient):
            await self.kv.close()


def _repository_source(config: OtronConfig, kv: KeyValueClient) -> RepositorySource:
    if config.repositories_file:
        return YamlRepositorySource(config.repositories_file)
    default_file = get_repositories_file()
    if default_file.exists():
        return YamlRepositorySource(default_file)
    return KeyValueRepositorySource(kv)


def create_orchestrator(
    config: OtronConfig,
    deps: OrchestratorDependencies | None = None,
) -> Orchestrator:
    """Build an Orchestrator from configuration and optional dependencies.

    Args:
        config: Validated configuration.
        deps: Protocol implementations overriding the defaults.

    Returns:
        Orchestrator whose dispatcher and manager are ready to use.
    """
    deps = deps or OrchestratorDependencies()

    owns_kv = deps.kv is None
    kv = deps.kv if deps.kv is not None else RedisKeyValueClient.from_url(config.redis_url)
    store = SessionStore(kv, active_ttl=config.active_session_ttl)

    agent_model = deps.agent_model or AnthropicModelClient.from_config(
        config, model=config.agent_model
    )
    evaluator_model = deps.evaluator_model or AnthropicModelClient.from_config(
        config, model=config.evaluator_model, temperature=0.1
    )

    model_phase = ModelCallPhase(
        model=agent_model,
        store=store,
        registry=deps.registry if deps.registry is not None else ToolRegistry(),
        memory=deps.memory if deps.memory is not None else KeyValueMemoryStore(kv),
        repositories=(
            deps.repositories
            if deps.repositories is not None
            else _repository_source(config, kv)
        ),
        max_steps=config.max_steps,
    )
    manager = SessionLifecycleManager(
        store=store,
        model_phase=model_phase,
        evaluator=GoalEvaluator(evaluator_model),
        max_retry_attempts=config.max_retry_attempts,
        goal_confidence_threshold=config.goal_confidence_threshold,
    )
    logger.debug(
        "Orchestrator created: agent_model=%s evaluator_model=%s retries=%d",
        config.agent_model,
        config.evaluator_model,
        config.max_retry_attempts,
    )
    return Orchestrator(
        config=config,
        kv=kv,
        store=store,
        manager=manager,
        dispatcher=SessionDispatcher(manager, store),
        owns_kv=owns_kv,
    )
