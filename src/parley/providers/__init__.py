"""Provider implementations."""

from .anthropic import AnthropicProvider
from .base import Provider
from .gemini import GeminiProvider
from .mock import MockProvider
from .openai import OpenAIProvider
from .openrouter import OpenRouterProvider

__all__ = [
    "AnthropicProvider",
    "GeminiProvider",
    "MockProvider",
    "OpenAIProvider",
    "OpenRouterProvider",
    "Provider",
]
