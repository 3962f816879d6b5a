"""OpenRouter provider: the OpenAI adapter pointed at OpenRouter."""

from __future__ import annotations

from dataclasses import replace
from typing import TYPE_CHECKING

from parley.capabilities import DEFAULT_CAPABILITIES, CapabilityMatrix, always
from parley.providers.openai import OpenAIProvider

if TYPE_CHECKING:
    from collections.abc import Sequence

    from parley.options import CompletionOptions
    from parley.tools import ToolDeclaration

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


class OpenRouterProvider(OpenAIProvider):
    """OpenRouter through its OpenAI-compatible Chat Completions endpoint.

    Model ids are routed names such as ``openai/gpt-4o``, so none of the
    OpenAI prefix rules apply. Which models can see images is configuration.
    """

    provider_name = "openrouter"
    default_base_url = OPENROUTER_BASE_URL

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str | None = None,
        vision_model: str | None = None,
        vision_models: Sequence[str] = (),
    ) -> None:
        super().__init__(api_key, base_url=base_url, vision_model=vision_model)
        self._capabilities = replace(
            DEFAULT_CAPABILITIES,
            supports_tools=always,
            vision_models=tuple(vision_models),
        )

    @property
    def capabilities(self) -> CapabilityMatrix:
        return self._capabilities

    def tools_enabled(
        self,
        model: str,
        options: CompletionOptions,
        tools: Sequence[ToolDeclaration],
    ) -> bool:
        """Send tools whenever any are registered, unless explicitly disabled."""
        _ = model
        return options.tools is not False and bool(tools)
