"""Configuration: frozen Config with explicit provider/model requirements."""

from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Literal

import dotenv

from parley.errors import ConfigurationError
from parley.loop import DEFAULT_MAX_TOOL_HOPS

ProviderName = Literal["openai", "openrouter", "gemini", "anthropic"]

# Provider-specific API key environment variable names
API_KEY_ENV_VARS: dict[ProviderName, str] = {
    "openai": "OPENAI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}


@dataclass(frozen=True)
class Config:
    """Immutable configuration for one backend.

    Provider and model are required. API keys are auto-resolved from the
    standard environment variables (a ``.env`` file is honored).

    Example:
        config = Config(provider="openai", model="gpt-4o-mini")
        # API key is automatically resolved from OPENAI_API_KEY
    """

    provider: ProviderName
    model: str
    #: Auto-resolved from the provider's ``*_API_KEY`` variable when *None*.
    api_key: str | None = None
    #: OpenAI-compatible endpoint override (openai and openrouter only).
    base_url: str | None = None
    #: Model substituted when a thread carries an image the model cannot see.
    vision_model: str | None = None
    #: Glob patterns of vision-capable OpenRouter models.
    vision_models: tuple[str, ...] = ()
    max_tool_hops: int = DEFAULT_MAX_TOOL_HOPS
    use_mock: bool = False

    def __post_init__(self) -> None:
        """Auto-resolve API key and validate configuration."""
        if self.provider not in API_KEY_ENV_VARS:
            supported = ", ".join(repr(p) for p in API_KEY_ENV_VARS)
            raise ConfigurationError(
                f"Unknown provider: {self.provider!r}",
                hint=f"Supported providers: {supported}",
            )

        if not self.model:
            raise ConfigurationError(
                "model is required",
                hint="Pass Config(model=...) with a model id of the provider.",
            )

        if self.max_tool_hops < 1:
            raise ConfigurationError(
                f"max_tool_hops must be ≥ 1, got {self.max_tool_hops}",
                hint="This bounds how many tool rounds one turn may take.",
            )

        if self.base_url is not None and self.provider not in ("openai", "openrouter"):
            raise ConfigurationError(
                f"base_url is not supported for {self.provider}",
                hint="base_url only applies to OpenAI-compatible endpoints.",
            )

        if isinstance(self.vision_models, (list, str)):
            patterns = (
                (self.vision_models,)
                if isinstance(self.vision_models, str)
                else tuple(self.vision_models)
            )
            object.__setattr__(self, "vision_models", patterns)

        # Auto-resolve API key from environment if not provided
        if self.api_key is None and not self.use_mock:
            dotenv.load_dotenv()
            env_var = API_KEY_ENV_VARS[self.provider]
            object.__setattr__(self, "api_key", os.environ.get(env_var))

        # Validate: real API calls need a key
        if not self.use_mock and not self.api_key:
            env_var = API_KEY_ENV_VARS[self.provider]
            raise ConfigurationError(
                f"API key required for {self.provider}",
                hint=f"Set {env_var} environment variable or pass api_key=...",
            )

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"Config(provider={self.provider!r}, model={self.model!r}, "
            f"api_key={'[REDACTED]' if self.api_key else None}, "
            f"max_tool_hops={self.max_tool_hops}, use_mock={self.use_mock})"
        )

    __repr__ = __str__
