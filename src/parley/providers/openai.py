"""OpenAI provider implementation (Chat Completions API)."""

from __future__ import annotations

import asyncio
from dataclasses import replace
import logging
from typing import TYPE_CHECKING, Any

from parley.capabilities import (
    DEFAULT_CAPABILITIES,
    CapabilityMatrix,
    not_prefixed,
    select_model,
)
from parley.errors import APIError
from parley.models import (
    CompletionTokenDetails,
    PromptTokenDetails,
    ToolCallRecord,
    UsageStats,
)
from parley.payload import TextPart, build_payload
from parley.providers._errors import wrap_provider_error
from parley.providers._utils import (
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


def _is_reasoning_model(model: str) -> bool:
    return model.startswith("o")


def _not_reasoning_model(model: str) -> bool:
    return not _is_reasoning_model(model)


OPENAI_CAPABILITIES = replace(
    DEFAULT_CAPABILITIES,
    accepts_system_role=not_prefixed("o1"),
    supports_tools=not_prefixed("o1-", "chatgpt-"),
    supports_temperature=_not_reasoning_model,
    supports_top_p=_not_reasoning_model,
    supports_top_k=_not_reasoning_model,
    supports_reasoning_effort=_is_reasoning_model,
    vision_models=("o1", "*gpt-4o*", "*vision*", "gpt-4.1*", "gpt-4.5*"),
)

# Some Chat Completions backends report this instead of "tool_calls".
_FINISH_REASON_ALIASES = {"function_call": "tool_calls"}


class OpenAIProvider:
    """OpenAI Chat Completions provider.

    Also serves any OpenAI-compatible endpoint through ``base_url``.
    """

    provider_name = "openai"
    default_base_url: str | None = None

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str | None = None,
        vision_model: str | None = None,
    ) -> None:
        """Initialize with an API key and optional endpoint override."""
        self.api_key = api_key
        self.base_url = base_url or self.default_base_url
        self.vision_model = vision_model
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazily initialize and return the OpenAI client."""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError as e:
                raise APIError(
                    "openai package not installed",
                    hint="pip install openai",
                ) from e
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
        return self._client

    @property
    def name(self) -> str:
        return self.provider_name

    @property
    def capabilities(self) -> CapabilityMatrix:
        """Return per-model feature flags."""
        return OPENAI_CAPABILITIES

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
        """Translate the neutral payload into ``chat.completions.create`` kwargs."""
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": [_to_openai_message(m) for m in payload],
        }

        accepted = supported_options(self.name, self.capabilities, model, options)
        if "max_tokens" in accepted:
            kwargs["max_completion_tokens"] = accepted["max_tokens"]
        if "temperature" in accepted:
            kwargs["temperature"] = accepted["temperature"]
        if "top_p" in accepted:
            kwargs["top_p"] = accepted["top_p"]
        if "top_k" in accepted:
            # Chat Completions has no top_k; the closest knob is top_logprobs.
            kwargs["logprobs"] = True
            kwargs["top_logprobs"] = accepted["top_k"]
        if "reasoning_effort" in accepted:
            kwargs["reasoning_effort"] = accepted["reasoning_effort"]
        if options.custom_overrides:
            kwargs.update(options.custom_overrides)

        if self.tools_enabled(model, options, tools):
            kwargs["tools"] = [_to_openai_tool(t) for t in tools]
            kwargs["tool_choice"] = "auto"

        if stream:
            kwargs["stream"] = True
            kwargs["stream_options"] = {"include_usage": options.usage}
        return kwargs

    async def complete(self, request: dict[str, Any]) -> ProviderResponse:
        """Issue a single-shot chat completion."""
        client = self._get_client()
        try:
            response = await client.chat.completions.create(**request)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(e, provider=self.name, phase="generate") from e

        choices = getattr(response, "choices", None) or []
        if not choices:
            return ProviderResponse(usage=_parse_usage(getattr(response, "usage", None)))
        choice = choices[0]
        message = choice.message

        tool_calls = [
            ToolCallRecord(
                id=tc.id,
                name=tc.function.name,
                arguments=tc.function.arguments or "",
            )
            for tc in (getattr(message, "tool_calls", None) or [])
        ]
        return ProviderResponse(
            text=getattr(message, "content", None) or "",
            reasoning=_reasoning_text(message) or None,
            tool_calls=tool_calls,
            usage=_parse_usage(getattr(response, "usage", None)),
            finish_reason=_normalize_finish_reason(choice.finish_reason),
        )

    async def open_stream(self, request: dict[str, Any]) -> Any:
        """Issue a streaming chat completion and return the chunk iterator."""
        client = self._get_client()
        try:
            return await client.chat.completions.create(**request)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(e, provider=self.name, phase="stream") from e

    def translate_chunk(self, chunk: Any, context: StreamingContext) -> ChunkDelta:
        """Normalize one ``ChatCompletionChunk``.

        The usage chunk requested through ``stream_options`` arrives last with
        an empty ``choices`` list.
        """
        _ = context
        usage = _parse_usage(getattr(chunk, "usage", None))
        choices = getattr(chunk, "choices", None) or []
        if not choices:
            return ChunkDelta(usage=usage)

        choice = choices[0]
        delta = choice.delta
        fragments = []
        for tc in getattr(delta, "tool_calls", None) or []:
            fn = getattr(tc, "function", None)
            fragments.append(
                ToolCallDelta(
                    id=getattr(tc, "id", None) or "",
                    name=(getattr(fn, "name", None) or "") if fn is not None else "",
                    arguments=(getattr(fn, "arguments", None) or "")
                    if fn is not None
                    else "",
                )
            )
        return ChunkDelta(
            text=getattr(delta, "content", None) or "",
            reasoning=_reasoning_text(delta),
            tool_calls=tuple(fragments),
            finish_reason=_normalize_finish_reason(choice.finish_reason),
            usage=usage,
        )

    async def stop(self, stream: Any) -> None:
        """Close the underlying HTTP response of a chunk stream."""
        await close_native_stream(stream, provider=self.name)

    async def aclose(self) -> None:
        """Close underlying async client resources."""
        client = self._client
        if client is None:
            return
        self._client = None
        await client.close()


def _to_openai_message(message: PayloadMessage) -> dict[str, Any]:
    """Convert one neutral payload unit into a Chat Completions message."""
    if message.role == "tool":
        return {
            "role": "tool",
            "tool_call_id": message.tool_call_id,
            "content": message.text,
        }

    if message.role == "assistant" and message.tool_calls:
        return {
            "role": "assistant",
            "content": message.text or None,
            "tool_calls": [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": call.arguments},
                }
                for call in message.tool_calls
            ],
        }

    images = message.images
    if not images and len(message.parts) <= 1:
        return {"role": message.role, "content": message.text}

    content: list[dict[str, Any]] = []
    for part in message.parts:
        if isinstance(part, TextPart):
            content.append({"type": "text", "text": part.text})
        else:
            content.append(
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{part.mime_type};base64,{part.data}"},
                }
            )
    return {"role": message.role, "content": content}


def _to_openai_tool(tool: ToolDeclaration) -> dict[str, Any]:
    function: dict[str, Any] = {"name": tool.name, "parameters": tool.parameters}
    if tool.description:
        function["description"] = tool.description
    return {"type": "function", "function": function}


def _reasoning_text(message: Any) -> str:
    """Reasoning text from OpenAI-compatible backends that expose it."""
    for attr in ("reasoning_content", "reasoning"):
        value = getattr(message, attr, None)
        if isinstance(value, str) and value:
            return value
    return ""


def _normalize_finish_reason(reason: Any) -> str | None:
    if not isinstance(reason, str) or not reason:
        return None
    reason = reason.lower()
    return _FINISH_REASON_ALIASES.get(reason, reason)


def _optional_int(raw: Any, attr: str) -> int | None:
    value = getattr(raw, attr, None) if raw is not None else None
    return int(value) if isinstance(value, int) else None


def _parse_usage(raw: Any) -> UsageStats | None:
    """Map an OpenAI ``CompletionUsage`` into UsageStats."""
    if raw is None:
        return None
    prompt_raw = getattr(raw, "prompt_tokens_details", None)
    completion_raw = getattr(raw, "completion_tokens_details", None)

    prompt_details = None
    if prompt_raw is not None:
        prompt_details = PromptTokenDetails(
            cached_tokens=_optional_int(prompt_raw, "cached_tokens"),
            audio_tokens=_optional_int(prompt_raw, "audio_tokens"),
        )
    completion_details = None
    if completion_raw is not None:
        completion_details = CompletionTokenDetails(
            reasoning_tokens=_optional_int(completion_raw, "reasoning_tokens"),
            audio_tokens=_optional_int(completion_raw, "audio_tokens"),
        )
    return UsageStats(
        prompt_tokens=_optional_int(raw, "prompt_tokens") or 0,
        completion_tokens=_optional_int(raw, "completion_tokens") or 0,
        prompt_details=prompt_details,
        completion_details=completion_details,
    )

