"""Parley: one completion API over several LLM backends.

Public API:
    - complete(): Run a turn to its final answer, tools included
    - stream(): Run a turn as a stream of ChunkEvents
    - Config: Configuration dataclass
    - CompletionOptions: Per-call generation options
    - FunctionToolRegistry: Python callables exposed as tools
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from parley.config import Config
from parley.errors import (
    APIError,
    ConfigurationError,
    InternalError,
    ParleyError,
    RateLimitError,
    ToolArgumentsError,
    ToolInvocationError,
    ToolLoopExceededError,
    ToolNotFoundError,
    ToolRegistryError,
)
from parley.events import (
    ChunkEvent,
    ContentEvent,
    ReasoningEvent,
    StreamSwitchEvent,
    ToolResultEvent,
    ToolStatusEvent,
    UsageEvent,
)
from parley.loop import run_tool_loop
from parley.models import (
    Attachment,
    CompletionResult,
    Message,
    ToolCallRecord,
    UsageStats,
)
from parley.options import CompletionOptions
from parley.stream import StreamingResponse
from parley.tools import FunctionToolRegistry, ToolDeclaration, ToolRegistry

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from parley.providers.base import Provider

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("parley-llm")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("parley").addHandler(logging.NullHandler())

logger = logging.getLogger(__name__)


async def complete(
    thread: Sequence[Message] | str,
    *,
    config: Config,
    options: CompletionOptions | None = None,
    tools: ToolRegistry | None = None,
    model: str | None = None,
    on_event: Callable[[ChunkEvent], Any] | None = None,
) -> CompletionResult:
    """Run one turn to its final answer, executing any requested tools.

    Args:
        thread: The conversation so far, or a single user prompt.
        config: Configuration specifying provider and model.
        options: Generation options; unsupported ones are dropped per model.
        tools: Registry whose tools the backend may call.
        model: Overrides ``config.model`` for this call.
        on_event: Receives tool status and result events as tools run; may be
            a plain function or a coroutine function.

    Returns:
        CompletionResult with the final text, executed tool calls and usage.

    Example:
        config = Config(provider="openai", model="gpt-4o-mini")
        result = await complete("What is 2+2?", config=config)
        print(result.text)
    """
    provider = _get_provider(config)
    try:
        return await run_tool_loop(
            provider,
            thread,
            model=model or config.model,
            options=options or CompletionOptions(),
            registry=tools if tools is not None else FunctionToolRegistry(),
            max_hops=config.max_tool_hops,
            on_event=on_event,
        )
    finally:
        await _close_provider(provider)


async def stream(
    thread: Sequence[Message] | str,
    *,
    config: Config,
    options: CompletionOptions | None = None,
    tools: ToolRegistry | None = None,
    model: str | None = None,
) -> StreamingResponse:
    """Open a streaming turn.

    The returned response yields ChunkEvents; tool calls run transparently
    between backend streams. The provider is closed when the stream ends or
    is stopped.

    Example:
        response = await stream("Tell me a story", config=config)
        async with response:
            async for event in response:
                if event.type == "content":
                    print(event.text, end="")
    """
    provider = _get_provider(config)
    return await StreamingResponse.open(
        provider,
        thread,
        model=model or config.model,
        options=options or CompletionOptions(),
        registry=tools if tools is not None else FunctionToolRegistry(),
        max_hops=config.max_tool_hops,
    )


async def _close_provider(provider: Provider) -> None:
    aclose = getattr(provider, "aclose", None)
    if not callable(aclose):
        return
    try:
        await aclose()
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        # Cleanup should never mask the primary failure.
        logger.warning("Provider cleanup failed: %s", exc)


def _get_provider(config: Config) -> Provider:
    """Get the appropriate provider based on configuration."""
    if config.use_mock:
        from parley.providers.mock import MockProvider

        return MockProvider()

    if not config.api_key:
        raise ConfigurationError(
            "api_key required for real API",
            hint=f"Pass Config(api_key=...) for {config.provider}.",
        )

    if config.provider == "openai":
        from parley.providers.openai import OpenAIProvider

        return OpenAIProvider(
            config.api_key, base_url=config.base_url, vision_model=config.vision_model
        )

    if config.provider == "openrouter":
        from parley.providers.openrouter import OpenRouterProvider

        return OpenRouterProvider(
            config.api_key,
            base_url=config.base_url,
            vision_model=config.vision_model,
            vision_models=config.vision_models,
        )

    if config.provider == "anthropic":
        from parley.providers.anthropic import AnthropicProvider

        return AnthropicProvider(config.api_key, vision_model=config.vision_model)

    from parley.providers.gemini import GeminiProvider

    return GeminiProvider(config.api_key, vision_model=config.vision_model)


# Re-export for convenience
__all__ = [
    "APIError",
    "Attachment",
    "ChunkEvent",
    "CompletionOptions",
    "CompletionResult",
    "Config",
    "ConfigurationError",
    "ContentEvent",
    "FunctionToolRegistry",
    "InternalError",
    "Message",
    "ParleyError",
    "RateLimitError",
    "ReasoningEvent",
    "StreamSwitchEvent",
    "StreamingResponse",
    "ToolArgumentsError",
    "ToolCallRecord",
    "ToolDeclaration",
    "ToolInvocationError",
    "ToolLoopExceededError",
    "ToolNotFoundError",
    "ToolRegistry",
    "ToolRegistryError",
    "ToolResultEvent",
    "ToolStatusEvent",
    "UsageEvent",
    "UsageStats",
    "complete",
    "stream",
]
