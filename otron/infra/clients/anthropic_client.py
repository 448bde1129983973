"""Anthropic client factory and ModelClient adapter.

This module provides:
- create_anthropic_client(): AsyncAnthropic with consistent configuration
  and automatic Braintrust wrapping when available
- AnthropicModelClient: ModelClient implementation over the Messages API

Usage:
    from otron.infra.clients.anthropic_client import AnthropicModelClient
    from otron.infra.io.config import OtronConfig

    config = OtronConfig.from_env()
    model = AnthropicModelClient.from_config(config, model=config.agent_model)
    turn = await model.generate(system="...", messages=[...], tools=[...])
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from otron.core.protocols import ModelTurn, ToolCall

if TYPE_CHECKING:
    from collections.abc import Sequence

    from otron.core.models import Message
    from otron.infra.io.config import OtronConfig

logger = logging.getLogger(__name__)


def create_anthropic_client(
    *,
    api_key: str | None = None,
    base_url: str | None = None,
    timeout: float | None = None,
) -> Any:  # noqa: ANN401 - Return type is dynamic (AsyncAnthropic or wrapped client)
    """Create an async Anthropic client with consistent configuration and tracing.

    Args:
        api_key: Anthropic API key. If not provided, the client will use
            the ANTHROPIC_API_KEY environment variable.
        base_url: Optional base URL for API requests. Use this to route
            requests through proxies.
        timeout: Optional timeout in seconds for API requests.

    Returns:
        An AsyncAnthropic client instance, optionally wrapped with Braintrust
        tracing if available.

    Raises:
        RuntimeError: If the anthropic package is not installed.
    """
    try:
        from anthropic import AsyncAnthropic
    except ImportError as e:
        raise RuntimeError(
            "anthropic package is required. Install with: pip install anthropic"
        ) from e

    # Build client kwargs, only including non-None values
    client_kwargs: dict[str, object] = {}
    if api_key is not None:
        client_kwargs["api_key"] = api_key
    if base_url is not None:
        client_kwargs["base_url"] = base_url
    if timeout is not None:
        client_kwargs["timeout"] = timeout

    client = AsyncAnthropic(**client_kwargs)

    # Wrap with Braintrust for observability (no-op if Braintrust not configured)
    try:
        from braintrust import wrap_anthropic

        client = wrap_anthropic(client)
    except ImportError:
        pass  # Braintrust not installed, proceed without tracing

    return client


class AnthropicModelClient:
    """ModelClient over the Anthropic Messages API.

    Args:
        client: AsyncAnthropic (or Braintrust-wrapped) client.
        model: Model name used for every call.
        temperature: Sampling temperature.
    """

    def __init__(self, client: Any, model: str, temperature: float | None = None) -> None:  # noqa: ANN401
        self._client = client
        self.model = model
        self.temperature = temperature

    @classmethod
    def from_config(
        cls,
        config: OtronConfig,
        *,
        model: str,
        temperature: float | None = None,
        timeout: float | None = 120.0,
    ) -> AnthropicModelClient:
        client = create_anthropic_client(
            api_key=config.llm_api_key,
            base_url=config.llm_base_url,
            timeout=timeout,
        )
        return cls(client, model=model, temperature=temperature)

    async def generate(
        self,
        *,
        system: str,
        messages: Sequence[Message],
        tools: Sequence[dict[str, Any]] = (),
        max_tokens: int = 4096,
    ) -> ModelTurn:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "system": system,
            "messages": list(messages),
            "max_tokens": max_tokens,
        }
        if tools:
            kwargs["tools"] = list(tools)
        if self.temperature is not None:
            kwargs["temperature"] = self.temperature

        response = await self._client.messages.create(**kwargs)

        texts: list[str] = []
        calls: list[ToolCall] = []
        for block in response.content:
            if block.type == "text":
                texts.append(block.text)
            elif block.type == "tool_use":
                calls.append(
                    ToolCall(id=block.id, name=block.name, input=dict(block.input or {}))
                )
        logger.debug(
            "Model %s returned %d tool call(s), stop_reason=%s",
            self.model,
            len(calls),
            response.stop_reason,
        )
        return ModelTurn(
            text="\n".join(texts), tool_calls=calls, stop_reason=response.stop_reason
        )
