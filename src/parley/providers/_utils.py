"""Shared utilities for provider implementations."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Sequence

    from parley.capabilities import CapabilityMatrix
    from parley.options import CompletionOptions
    from parley.tools import ToolDeclaration

logger = logging.getLogger(__name__)


def default_tools_enabled(
    capabilities: CapabilityMatrix,
    model: str,
    options: CompletionOptions,
    tools: Sequence[ToolDeclaration],
) -> bool:
    """Tools go out when requested, supported by the model, and registered."""
    return options.wants_tools() and capabilities.supports_tools(model) and bool(tools)


def supported_options(
    provider: str,
    capabilities: CapabilityMatrix,
    model: str,
    options: CompletionOptions,
) -> dict[str, Any]:
    """Return the generation options *model* accepts, keyed by option name.

    Unsupported options are dropped, never rejected.
    """
    checks = {
        "max_tokens": capabilities.supports_max_tokens,
        "temperature": capabilities.supports_temperature,
        "top_p": capabilities.supports_top_p,
        "top_k": capabilities.supports_top_k,
        "reasoning_effort": capabilities.supports_reasoning_effort,
    }
    accepted: dict[str, Any] = {}
    for option, supported in checks.items():
        value = getattr(options, option)
        if value is None:
            continue
        if supported(model):
            accepted[option] = value
        else:
            logger.debug("[%s] %s not supported by %s; omitted", provider, option, model)
    return accepted


def result_as_object(content: str) -> dict[str, Any]:
    """Decode a serialized tool result into the object some backends require."""
    if not content:
        return {}
    try:
        parsed = json.loads(content)
    except ValueError:
        return {"result": content}
    return parsed if isinstance(parsed, dict) else {"result": parsed}


def arguments_as_object(arguments: str) -> dict[str, Any]:
    """Decode tool-call arguments for replay, tolerating malformed text."""
    try:
        parsed = json.loads(arguments) if arguments else {}
    except ValueError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


async def close_native_stream(stream: Any, *, provider: str) -> None:
    """Best-effort close of a native stream; failures are logged, not raised."""
    close = getattr(stream, "close", None) or getattr(stream, "aclose", None)
    if close is None:
        return
    try:
        result = close()
        if inspect.isawaitable(result):
            await result
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.warning("[%s] failed to close stream: %s", provider, e)
