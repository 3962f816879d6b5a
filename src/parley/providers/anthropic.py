"""Anthropic Messages API provider."""

from __future__ import annotations

import asyncio
from dataclasses import replace
import json
import logging
from typing import TYPE_CHECKING, Any

from parley.capabilities import (
    DEFAULT_CAPABILITIES,
    CapabilityMatrix,
    matches_any,
    select_model,
)
from parley.errors import APIError
from parley.models import PromptTokenDetails, ToolCallRecord, UsageStats
from parley.payload import ImagePart, build_payload, system_instruction
from parley.providers._errors import wrap_provider_error
from parley.providers._utils import (
    arguments_as_object,
    close_native_stream,
    default_tools_enabled,
    supported_options,
)
from parley.providers.models import ChunkDelta, ProviderResponse, ToolCallDelta

if TYPE_CHECKING:
    from collections.abc import Sequence

    from parley.models import Message
    from parley.options import CompletionOptions
    from parley.payload import PayloadMessage
    from parley.stream import StreamingContext
    from parley.tools import ToolDeclaration

logger = logging.getLogger(__name__)

_ANTHROPIC_MAX_TOKENS = 8192
_ALLOWED_REASONING_EFFORTS = {"low", "medium", "high", "max"}
_MANUAL_THINKING_BUDGETS = {
    "low": 2048,
    "medium": 4096,
    "high": 6144,
    "max": 7168,
}
_INPUT_TOKENS_KEY = "anthropic_input_tokens"
_CACHED_TOKENS_KEY = "anthropic_cached_tokens"


def _supports_thinking(model: str) -> bool:
    return matches_any(model, ("claude-3-7*", "claude-*-4*"))


ANTHROPIC_CAPABILITIES = replace(
    DEFAULT_CAPABILITIES,
    supports_reasoning_effort=_supports_thinking,
    vision_models=("claude-3*", "claude-*-4*"),
)


class AnthropicProvider:
    """Anthropic Messages API provider."""

    provider_name = "anthropic"

    def __init__(self, api_key: str, *, vision_model: str | None = None) -> None:
        """Initialize with an API key."""
        self.api_key = api_key
        self.vision_model = vision_model
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazily initialize and return the async Anthropic client."""
        if self._client is None:
            try:
                from anthropic import AsyncAnthropic
            except ImportError as e:
                raise APIError(
                    "anthropic package not installed",
                    hint="pip install anthropic",
                ) from e
            self._client = AsyncAnthropic(api_key=self.api_key)
        return self._client

    @property
    def name(self) -> str:
        return self.provider_name

    @property
    def capabilities(self) -> CapabilityMatrix:
        return ANTHROPIC_CAPABILITIES

    def select_model(self, requested: str, thread: Sequence[Message] | str) -> str:
        return select_model(
            self.capabilities, requested, thread, fallback=self.vision_model
        )

    def build_payload(
        self, model: str, thread: Sequence[Message] | str
    ) -> list[PayloadMessage]:
        return build_payload(thread, model, self.capabilities)

    def tools_enabled(
        self,
        model: str,
        options: CompletionOptions,
        tools: Sequence[ToolDeclaration],
    ) -> bool:
        return default_tools_enabled(self.capabilities, model, options, tools)

    def build_request(
        self,
        model: str,
        payload: Sequence[PayloadMessage],
        options: CompletionOptions,
        tools: Sequence[ToolDeclaration],
        *,
        stream: bool = False,
    ) -> dict[str, Any]:
        """Build ``messages.create`` kwargs.

        ``max_tokens`` is mandatory on this API and defaults to 8192.
        """
        accepted = supported_options(self.name, self.capabilities, model, options)
        create_kwargs: dict[str, Any] = {
            "model": model,
            "messages": _build_messages(payload),
            "max_tokens": accepted.get("max_tokens", _ANTHROPIC_MAX_TOKENS),
        }
        instruction = system_instruction(payload)
        if instruction:
            create_kwargs["system"] = instruction

        thinking = "reasoning_effort" in accepted and not _replays_tool_use(payload)
        if thinking:
            budget = _MANUAL_THINKING_BUDGETS[
                _normalize_reasoning_effort(accepted["reasoning_effort"])
            ]
            create_kwargs["thinking"] = {"type": "enabled", "budget_tokens": budget}
            create_kwargs["max_tokens"] = max(create_kwargs["max_tokens"], budget + 1024)
        elif "reasoning_effort" in accepted:
            # Replayed tool_use turns carry no signed thinking blocks.
            logger.debug("[anthropic] thinking omitted while replaying tool calls")

        for key in ("temperature", "top_p", "top_k"):
            if key not in accepted:
                continue
            if thinking:
                logger.debug("[anthropic] %s not allowed with thinking; omitted", key)
                continue
            create_kwargs[key] = accepted[key]

        if options.custom_overrides:
            create_kwargs.update(options.custom_overrides)

        if self.tools_enabled(model, options, tools):
            create_kwargs["tools"] = [_to_anthropic_tool(t) for t in tools]
            create_kwargs["tool_choice"] = {"type": "auto"}

        if stream:
            create_kwargs["stream"] = True
        return create_kwargs

    async def complete(self, request: dict[str, Any]) -> ProviderResponse:
        """Generate a response using Anthropic's Messages API."""
        client = self._get_client()
        try:
            response = await client.messages.create(**request)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e,
                provider=self.name,
                phase="generate",
                message="Anthropic generate failed",
            ) from e
        return _parse_response(response)

    async def open_stream(self, request: dict[str, Any]) -> Any:
        client = self._get_client()
        try:
            return await client.messages.create(**request)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e,
                provider=self.name,
                phase="stream",
                message="Anthropic stream failed",
            ) from e

    def translate_chunk(self, chunk: Any, context: StreamingContext) -> ChunkDelta:
        """Normalize one raw Messages stream event.

        Input token counts arrive on ``message_start`` and output counts on
        ``message_delta``; the former is held in the context until the latter
        completes the usage figure.
        """
        state = context.provider_state
        event_type = getattr(chunk, "type", None)

        if event_type == "message_start":
            usage = getattr(getattr(chunk, "message", None), "usage", None)
            state[_INPUT_TOKENS_KEY] = _count(usage, "input_tokens") or 0
            state[_CACHED_TOKENS_KEY] = _count(usage, "cache_read_input_tokens")
            return ChunkDelta()

        if event_type == "content_block_start":
            block = chunk.content_block
            block_type = getattr(block, "type", None)
            if block_type == "tool_use":
                return ChunkDelta(
                    tool_calls=(ToolCallDelta(id=block.id, name=block.name),)
                )
            if block_type == "text":
                return ChunkDelta(text=getattr(block, "text", "") or "")
            return ChunkDelta()

        if event_type == "content_block_delta":
            delta = chunk.delta
            delta_type = getattr(delta, "type", None)
            if delta_type == "text_delta":
                return ChunkDelta(text=delta.text)
            if delta_type == "thinking_delta":
                return ChunkDelta(reasoning=delta.thinking)
            if delta_type == "input_json_delta":
                return ChunkDelta(
                    tool_calls=(ToolCallDelta(arguments=delta.partial_json),)
                )
            return ChunkDelta()

        if event_type == "message_delta":
            stop_reason = getattr(getattr(chunk, "delta", None), "stop_reason", None)
            usage_raw = getattr(chunk, "usage", None)
            usage = None
            if usage_raw is not None:
                cached = state.get(_CACHED_TOKENS_KEY)
                usage = UsageStats(
                    prompt_tokens=state.get(_INPUT_TOKENS_KEY, 0),
                    completion_tokens=_count(usage_raw, "output_tokens") or 0,
                    prompt_details=PromptTokenDetails(cached_tokens=cached)
                    if cached is not None
                    else None,
                )
            return ChunkDelta(
                finish_reason=_normalize_stop_reason(stop_reason), usage=usage
            )

        return ChunkDelta()

    async def stop(self, stream: Any) -> None:
        await close_native_stream(stream, provider=self.name)

    async def aclose(self) -> None:
        """Close underlying async client resources."""
        client = self._client
        if client is None:
            return
        self._client = None
        await client.close()


def _replays_tool_use(payload: Sequence[PayloadMessage]) -> bool:
    return any(m.role == "assistant" and m.tool_calls for m in payload)


def _to_anthropic_tool(tool: ToolDeclaration) -> dict[str, Any]:
    tool_def: dict[str, Any] = {"name": tool.name, "input_schema": tool.parameters}
    if tool.description:
        tool_def["description"] = tool.description
    return tool_def


def _build_messages(payload: Sequence[PayloadMessage]) -> list[dict[str, Any]]:
    """Convert neutral payload units into Anthropic messages.

    System units travel in ``system``. Consecutive same-role messages are
    merged, which also batches the tool results of one hop into one user turn.
    """
    messages: list[dict[str, Any]] = []
    for message in payload:
        if message.role == "system":
            continue

        if message.role == "tool":
            _append_message(
                messages,
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "tool_result",
                            "tool_use_id": message.tool_call_id,
                            "content": message.text,
                        }
                    ],
                },
            )
            continue

        blocks: list[dict[str, Any]] = []
        for part in message.parts:
            if isinstance(part, ImagePart):
                blocks.append(
                    {
                        "type": "image",
                        "source": {
                            "type": "base64",
                            "media_type": part.mime_type,
                            "data": part.data,
                        },
                    }
                )
            elif part.text:
                blocks.append({"type": "text", "text": part.text})
        for call in message.tool_calls:
            blocks.append(
                {
                    "type": "tool_use",
                    "id": call.id,
                    "name": call.name,
                    "input": arguments_as_object(call.arguments),
                }
            )
        if blocks:
            _append_message(messages, {"role": message.role, "content": blocks})
    return messages


def _append_message(messages: list[dict[str, Any]], msg: dict[str, Any]) -> None:
    """Append *msg*, merging into the previous message when roles match.

    Anthropic requires strict user/assistant alternation.
    """
    if messages and messages[-1]["role"] == msg["role"]:
        messages[-1]["content"] = messages[-1]["content"] + msg["content"]
    else:
        messages.append(msg)


def _parse_response(response: Any) -> ProviderResponse:
    """Parse an Anthropic Message response into ProviderResponse."""
    text_parts: list[str] = []
    reasoning_parts: list[str] = []
    tool_calls: list[ToolCallRecord] = []

    for block in getattr(response, "content", []):
        block_type = getattr(block, "type", None)
        if block_type == "text":
            text_parts.append(getattr(block, "text", ""))
        elif block_type == "thinking":
            thinking = getattr(block, "thinking", "")
            if isinstance(thinking, str) and thinking:
                reasoning_parts.append(thinking)
        elif block_type == "tool_use":
            tool_calls.append(
                ToolCallRecord(
                    id=getattr(block, "id", ""),
                    name=getattr(block, "name", ""),
                    arguments=json.dumps(getattr(block, "input", {})),
                )
            )

    usage = None
    usage_raw = getattr(response, "usage", None)
    if usage_raw is not None:
        cached = _count(usage_raw, "cache_read_input_tokens")
        usage = UsageStats(
            prompt_tokens=_count(usage_raw, "input_tokens") or 0,
            completion_tokens=_count(usage_raw, "output_tokens") or 0,
            prompt_details=PromptTokenDetails(cached_tokens=cached)
            if cached is not None
            else None,
        )

    return ProviderResponse(
        text="\n\n".join(text_parts) if text_parts else "",
        reasoning="\n\n".join(reasoning_parts).strip() if reasoning_parts else None,
        tool_calls=tool_calls,
        usage=usage,
        finish_reason=_normalize_stop_reason(getattr(response, "stop_reason", None)),
    )


def _count(raw: Any, attr: str) -> int | None:
    value = getattr(raw, attr, None) if raw is not None else None
    return int(value) if isinstance(value, int) else None


def _normalize_stop_reason(stop_reason: Any) -> str | None:
    """Map Anthropic stop_reason to a normalized finish reason."""
    if stop_reason is None:
        return None
    reason = str(stop_reason).lower()
    mapping: dict[str, str] = {
        "end_turn": "stop",
        "stop_sequence": "stop",
        "max_tokens": "length",
        "tool_use": "tool_calls",
        "refusal": "content_filter",
    }
    return mapping.get(reason, reason)


def _normalize_reasoning_effort(reasoning_effort: str) -> str:
    """Normalize and validate Anthropic effort values."""
    effort = reasoning_effort.strip().lower()
    if effort not in _ALLOWED_REASONING_EFFORTS:
        allowed = ", ".join(sorted(_ALLOWED_REASONING_EFFORTS))
        raise APIError(
            f"Unsupported reasoning_effort for Anthropic: {reasoning_effort!r}",
            hint=f"Use one of: {allowed}.",
            provider="anthropic",
        )
    return effort
