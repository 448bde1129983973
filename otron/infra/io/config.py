"""Configuration dataclass for otron.

Provides OtronConfig for centralized configuration management. This allows
programmatic users to construct configuration without relying on environment
variables, while CLI users can continue using env vars via from_env().

Environment Variables:
    OTRON_REDIS_URL: Redis URL for the session store (fallback REDIS_URL, KV_URL)
    LLM_API_KEY: API key for LLM calls (fallback to ANTHROPIC_API_KEY)
    LLM_BASE_URL: Base URL for LLM API
    OTRON_AGENT_MODEL: Model used for the tool-calling agent
    OTRON_EVALUATOR_MODEL: Model used for goal evaluation
    OTRON_MAX_RETRY_ATTEMPTS: Model-call phases per request (default: 2)
    OTRON_MAX_STEPS: Model steps per phase (default: 30)
    OTRON_ACTIVE_SESSION_TTL: Active session expiry in seconds (default: 3600)
    OTRON_GOAL_CONFIDENCE_THRESHOLD: Confidence needed to stop retrying (default: 0.7)
    OTRON_REPOSITORIES_FILE: YAML file with repository definitions
    BRAINTRUST_API_KEY: Braintrust API key (enables tracing of LLM calls)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_MODEL = "claude-sonnet-4-20250514"


def _safe_int(value: str | None, default: int) -> int:
    """Safely parse an integer with fallback to default."""
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        message = "Configuration validation failed:\n" + "\n".join(
            f"  - {e}" for e in errors
        )
        super().__init__(message)


@dataclass(frozen=True)
class OtronConfig:
    """Centralized configuration for the otron session core.

    Attributes:
        redis_url: Redis URL backing the session store and memory.
            Env: OTRON_REDIS_URL, REDIS_URL or KV_URL
        llm_api_key: API key for LLM calls.
            Env: LLM_API_KEY (falls back to ANTHROPIC_API_KEY if not set)
        llm_base_url: Base URL for LLM API requests.
        agent_model: Model used for the tool-calling agent.
        evaluator_model: Model used by the goal evaluator.
        max_retry_attempts: Maximum model-call phases per request.
        max_steps: Maximum model steps within one phase.
        active_session_ttl: Expiry of active session records in seconds.
        goal_confidence_threshold: Minimum evaluator confidence for the
            retry loop to stop early.
        repositories_file: Optional YAML file with repository definitions.
            When unset, definitions are read from the key-value store.
        braintrust_api_key: Braintrust API key for tracing.
        braintrust_enabled: Derived from braintrust_api_key presence.

    Example:
        config = OtronConfig(redis_url="redis://cache:6379/1", max_steps=10)

        # Load from environment:
        config = OtronConfig.from_env()
    """

    redis_url: str = "redis://localhost:6379/0"

    # LLM configuration
    llm_api_key: str | None = None
    llm_base_url: str | None = None
    agent_model: str = DEFAULT_MODEL
    evaluator_model: str = DEFAULT_MODEL

    # Session loop
    max_retry_attempts: int = field(default=2)
    max_steps: int = field(default=30)
    active_session_ttl: int = field(default=3600)
    goal_confidence_threshold: float = field(default=0.7)

    repositories_file: Path | None = None

    braintrust_api_key: str | None = None
    braintrust_enabled: bool = field(default=False)

    def __post_init__(self) -> None:
        """Derive feature flags from API key presence.

        Since the dataclass is frozen, we use object.__setattr__ to set
        derived fields after initialization.
        """
        if not self.braintrust_enabled and self.braintrust_api_key:
            object.__setattr__(self, "braintrust_enabled", True)

    @classmethod
    def from_env(cls, *, validate: bool = True) -> OtronConfig:
        """Create OtronConfig by loading from environment variables.

        Args:
            validate: If True (default), run validation and raise ConfigurationError
                on any errors. Set to False to skip validation.

        Returns:
            OtronConfig instance with values from environment or defaults.

        Raises:
            ConfigurationError: If validate=True and configuration is invalid,
                or if OTRON_GOAL_CONFIDENCE_THRESHOLD is not a number.
                Unparseable integer variables fall back to their defaults.
        """
        parse_errors: list[str] = []

        redis_url = (
            os.environ.get("OTRON_REDIS_URL")
            or os.environ.get("REDIS_URL")
            or os.environ.get("KV_URL")
            or "redis://localhost:6379/0"
        )

        llm_api_key = (
            os.environ.get("LLM_API_KEY") or os.environ.get("ANTHROPIC_API_KEY") or None
        )
        llm_base_url = os.environ.get("LLM_BASE_URL") or None

        threshold = 0.7
        threshold_raw = os.environ.get("OTRON_GOAL_CONFIDENCE_THRESHOLD")
        if threshold_raw:
            try:
                threshold = float(threshold_raw)
            except ValueError:
                parse_errors.append(
                    f"OTRON_GOAL_CONFIDENCE_THRESHOLD: invalid number '{threshold_raw}'"
                )

        repositories_raw = os.environ.get("OTRON_REPOSITORIES_FILE")

        config = cls(
            redis_url=redis_url,
            llm_api_key=llm_api_key,
            llm_base_url=llm_base_url,
            agent_model=os.environ.get("OTRON_AGENT_MODEL") or DEFAULT_MODEL,
            evaluator_model=os.environ.get("OTRON_EVALUATOR_MODEL") or DEFAULT_MODEL,
            max_retry_attempts=_safe_int(
                os.environ.get("OTRON_MAX_RETRY_ATTEMPTS"), 2
            ),
            max_steps=_safe_int(os.environ.get("OTRON_MAX_STEPS"), 30),
            active_session_ttl=_safe_int(
                os.environ.get("OTRON_ACTIVE_SESSION_TTL"), 3600
            ),
            goal_confidence_threshold=threshold,
            repositories_file=Path(repositories_raw) if repositories_raw else None,
            braintrust_api_key=os.environ.get("BRAINTRUST_API_KEY") or None,
        )

        if validate:
            errors = config.validate()
            errors.extend(parse_errors)
            if errors:
                raise ConfigurationError(errors)
        elif parse_errors:
            raise ConfigurationError(parse_errors)

        return config

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors.

        Returns:
            List of error messages. Empty list if configuration is valid.
        """
        errors: list[str] = []

        if self.braintrust_enabled and not self.braintrust_api_key:
            errors.append(
                "braintrust_enabled=True requires BRAINTRUST_API_KEY to be set"
            )
        if self.max_retry_attempts < 1:
            errors.append(
                f"max_retry_attempts must be >= 1, got: {self.max_retry_attempts}"
            )
        if self.max_steps < 1:
            errors.append(f"max_steps must be >= 1, got: {self.max_steps}")
        if self.active_session_ttl <= 0:
            errors.append(
                f"active_session_ttl must be > 0, got: {self.active_session_ttl}"
            )
        if not 0.0 <= self.goal_confidence_threshold <= 1.0:
            errors.append(
                "goal_confidence_threshold must be between 0 and 1, "
                f"got: {self.goal_confidence_threshold}"
            )
        if not self.redis_url.startswith(("redis://", "rediss://", "unix://")):
            errors.append(f"redis_url must be a redis:// URL, got: {self.redis_url}")

        return errors
