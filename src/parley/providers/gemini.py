"""Gemini provider implementation."""

from __future__ import annotations

import asyncio
import base64
from dataclasses import replace
import json
from typing import TYPE_CHECKING, Any
import uuid

from parley.capabilities import (
    DEFAULT_CAPABILITIES,
    CapabilityMatrix,
    matches_any,
    select_model,
)
from parley.errors import APIError
from parley.models import (
    CompletionTokenDetails,
    PromptTokenDetails,
    ToolCallRecord,
    UsageStats,
)
from parley.payload import ImagePart, build_payload, system_instruction
from parley.providers._errors import wrap_provider_error
from parley.providers._utils import (
    arguments_as_object,
    close_native_stream,
    default_tools_enabled,
    result_as_object,
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


def _without_system_instruction(model: str) -> bool:
    return model in {"gemini-pro", "models/gemini-pro"}


def _accepts_system_instruction(model: str) -> bool:
    return not _without_system_instruction(model)


def _supports_tools(model: str) -> bool:
    return "thinking" not in model


def _supports_thinking(model: str) -> bool:
    return matches_any(model, ("gemini-2.5*", "gemini-3*", "*thinking*"))


GEMINI_CAPABILITIES = replace(
    DEFAULT_CAPABILITIES,
    accepts_system_role=_accepts_system_instruction,
    supports_tools=_supports_tools,
    supports_reasoning_effort=_supports_thinking,
    vision_models=("gemini-1.5-*", "gemini-2.*", "gemini-3*", "gemini-exp-*"),
    system_fallback="user",
)

_FINISH_REASONS = {
    "stop": "stop",
    "max_tokens": "length",
    "safety": "content_filter",
    "recitation": "content_filter",
    "blocklist": "content_filter",
    "prohibited_content": "content_filter",
    "spii": "content_filter",
}


class GeminiProvider:
    """Google Gemini API provider."""

    provider_name = "gemini"

    def __init__(self, api_key: str, *, vision_model: str | None = None) -> None:
        """Create provider with an API key."""
        self.api_key = api_key
        self.vision_model = vision_model
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazy-initialize the Gemini client."""
        if self._client is None:
            try:
                from google import genai
            except ImportError as e:
                raise APIError(
                    "google-genai package not installed",
                    hint="pip install google-genai",
                ) from e
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    @property
    def name(self) -> str:
        return self.provider_name

    @property
    def capabilities(self) -> CapabilityMatrix:
        return GEMINI_CAPABILITIES

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
        """Build ``generate_content`` kwargs: model, contents and config.

        Streaming and single-shot calls share the same request shape.
        """
        _ = stream
        types = _genai_types()

        config_kwargs: dict[str, Any] = {}
        instruction = system_instruction(payload)
        if instruction is not None:
            config_kwargs["system_instruction"] = instruction

        accepted = supported_options(self.name, self.capabilities, model, options)
        if "max_tokens" in accepted:
            config_kwargs["max_output_tokens"] = accepted["max_tokens"]
        for key in ("temperature", "top_p", "top_k"):
            if key in accepted:
                config_kwargs[key] = accepted[key]
        if "reasoning_effort" in accepted:
            config_kwargs["thinking_config"] = types.ThinkingConfig(
                include_thoughts=True,
                thinking_level=accepted["reasoning_effort"],  # type: ignore[arg-type]
            )
        if options.custom_overrides:
            config_kwargs.update(options.custom_overrides)

        if self.tools_enabled(model, options, tools):
            config_kwargs["tools"] = [
                types.Tool(
                    function_declarations=[
                        types.FunctionDeclaration(
                            name=t.name,
                            description=t.description,
                            parameters=gemini_parameters(t),
                        )
                        for t in tools
                    ]
                )
            ]
            config_kwargs["tool_config"] = {"function_calling_config": {"mode": "AUTO"}}

        return {
            "model": model,
            "contents": _to_contents(types, payload),
            "config": types.GenerateContentConfig(**config_kwargs),
        }

    async def complete(self, request: dict[str, Any]) -> ProviderResponse:
        """Generate content from the Gemini model."""
        client = self._get_client()
        try:
            response = await client.aio.models.generate_content(**request)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e,
                provider=self.name,
                phase="generate",
                message="Gemini generate failed",
            ) from e

        if not response:
            raise APIError("Gemini returned an empty response.", provider=self.name)
        text, reasoning, calls = _parse_parts(response)
        return ProviderResponse(
            text=text,
            reasoning=reasoning or None,
            tool_calls=calls,
            usage=_parse_usage(getattr(response, "usage_metadata", None)),
            finish_reason=_finish_reason(response),
        )

    async def open_stream(self, request: dict[str, Any]) -> Any:
        client = self._get_client()
        try:
            return await client.aio.models.generate_content_stream(**request)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e,
                provider=self.name,
                phase="stream",
                message="Gemini stream failed",
            ) from e

    def translate_chunk(self, chunk: Any, context: StreamingContext) -> ChunkDelta:
        """Normalize one streamed ``GenerateContentResponse``.

        Gemini streams function calls whole, never as fragments; each one
        opens its own record.
        """
        _ = context
        text, reasoning, calls = _parse_parts(chunk)
        return ChunkDelta(
            text=text,
            reasoning=reasoning,
            tool_calls=tuple(
                ToolCallDelta(id=c.id, name=c.name, arguments=c.arguments)
                for c in calls
            ),
            finish_reason=_finish_reason(chunk),
            usage=_parse_usage(getattr(chunk, "usage_metadata", None)),
        )

    async def stop(self, stream: Any) -> None:
        await close_native_stream(stream, provider=self.name)

    async def aclose(self) -> None:
        """Close underlying async client resources."""
        client = self._client
        if client is None:
            return
        self._client = None
        aio = getattr(client, "aio", None)
        aclose = getattr(aio, "aclose", None)
        if aclose is not None:
            await aclose()


def _genai_types() -> Any:
    try:
        from google.genai import types
    except ImportError as e:
        raise APIError(
            "google-genai package not installed",
            hint="pip install google-genai",
        ) from e
    return types


def gemini_parameters(tool: ToolDeclaration) -> dict[str, Any] | None:
    """Normalize a JSON schema into the subset Gemini function declarations take.

    Array properties (or anything carrying ``items``) keep only their item
    schema, with the item type defaulting to ``string``. Scalars keep their
    type. Descriptions, enums and the ``required`` list survive.
    """
    properties = tool.properties
    if not properties:
        return None

    normalized: dict[str, Any] = {}
    for name, schema in properties.items():
        entry: dict[str, Any] = {}
        items = schema.get("items")
        if schema.get("type") == "array" or items is not None:
            items = items or {}
            item_schema: dict[str, Any] = {"type": items.get("type") or "string"}
            if items.get("properties"):
                item_schema["properties"] = items["properties"]
            entry["type"] = "array"
            entry["items"] = item_schema
        else:
            entry["type"] = schema.get("type", "string")
            if "enum" in schema:
                entry["enum"] = schema["enum"]
        if schema.get("description"):
            entry["description"] = schema["description"]
        normalized[name] = entry

    parameters: dict[str, Any] = {"type": "object", "properties": normalized}
    if tool.required:
        parameters["required"] = list(tool.required)
    return parameters


def _to_contents(types: Any, payload: Sequence[PayloadMessage]) -> list[Any]:
    """Convert neutral payload units into Gemini ``Content`` objects.

    System units travel as ``system_instruction`` and are skipped here.
    Consecutive units of the same Gemini role share one ``Content``, so a
    batch of tool results goes back as a single user turn.
    """
    contents: list[Any] = []
    for message in payload:
        if message.role == "system":
            continue

        parts: list[Any] = []
        if message.role == "tool":
            role = "user"
            parts.append(
                types.Part.from_function_response(
                    name=message.name or "unknown_tool",
                    response=result_as_object(message.text),
                )
            )
        else:
            role = "model" if message.role == "assistant" else "user"
            for part in message.parts:
                if isinstance(part, ImagePart):
                    parts.append(
                        types.Part.from_bytes(
                            data=base64.b64decode(part.data), mime_type=part.mime_type
                        )
                    )
                elif part.text:
                    parts.append(types.Part.from_text(text=part.text))
            for call in message.tool_calls:
                parts.append(
                    types.Part.from_function_call(
                        name=call.name, args=arguments_as_object(call.arguments)
                    )
                )

        if not parts:
            continue
        if contents and contents[-1].role == role:
            contents[-1].parts.extend(parts)
        else:
            contents.append(types.Content(role=role, parts=parts))
    return contents


def _parse_parts(response: Any) -> tuple[str, str, list[ToolCallRecord]]:
    """Split the first candidate's parts into text, thoughts and calls."""
    text_parts: list[str] = []
    reasoning_parts: list[str] = []
    calls: list[ToolCallRecord] = []

    candidates = getattr(response, "candidates", None) or []
    content = getattr(candidates[0], "content", None) if candidates else None
    for part in getattr(content, "parts", None) or []:
        fc = getattr(part, "function_call", None)
        if fc is not None:
            # Gemini args are Optional[dict]; default to an empty object.
            calls.append(
                ToolCallRecord(
                    id=str(fc.id or f"call_{uuid.uuid4().hex[:8]}"),
                    name=str(fc.name),
                    arguments=json.dumps(fc.args or {}),
                )
            )
            continue
        part_text = getattr(part, "text", None)
        if not part_text:
            continue
        if getattr(part, "thought", False):
            reasoning_parts.append(part_text)
        else:
            text_parts.append(part_text)
    return "".join(text_parts), "".join(reasoning_parts), calls


def _finish_reason(response: Any) -> str | None:
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return None
    reason = getattr(candidates[0], "finish_reason", None)
    if reason is None:
        return None
    name = reason if isinstance(reason, str) else getattr(reason, "name", None)
    if not isinstance(name, str) or not name or name == "FINISH_REASON_UNSPECIFIED":
        return None
    name = name.lower()
    return _FINISH_REASONS.get(name, name)


def _count(raw: Any, attr: str) -> int | None:
    value = getattr(raw, attr, None)
    return int(value) if isinstance(value, int) else None


def _parse_usage(raw: Any) -> UsageStats | None:
    """Map Gemini ``usage_metadata`` into UsageStats."""
    if raw is None:
        return None
    cached = _count(raw, "cached_content_token_count")
    thoughts = _count(raw, "thoughts_token_count")
    return UsageStats(
        prompt_tokens=_count(raw, "prompt_token_count") or 0,
        completion_tokens=_count(raw, "candidates_token_count") or 0,
        prompt_details=PromptTokenDetails(cached_tokens=cached)
        if cached is not None
        else None,
        completion_details=CompletionTokenDetails(reasoning_tokens=thoughts)
        if thoughts is not None
        else None,
    )
