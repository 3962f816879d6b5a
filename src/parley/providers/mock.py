"""Mock provider for testing."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from parley.capabilities import DEFAULT_CAPABILITIES, CapabilityMatrix, select_model
from parley.models import UsageStats
from parley.payload import build_payload
from parley.providers.models import ChunkDelta, ProviderResponse

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from parley.models import Message
    from parley.options import CompletionOptions
    from parley.payload import PayloadMessage
    from parley.stream import StreamingContext
    from parley.tools import ToolDeclaration

_MOCK_USAGE = UsageStats(prompt_tokens=10, completion_tokens=10)


class MockProvider:
    """Mock provider for running without API calls.

    Echoes the latest user text and never requests tools. Streams the echo
    word by word as plain dict chunks.
    """

    provider_name = "mock"

    @property
    def name(self) -> str:
        return self.provider_name

    @property
    def capabilities(self) -> CapabilityMatrix:
        return DEFAULT_CAPABILITIES

    def select_model(self, requested: str, thread: Sequence[Message] | str) -> str:
        return select_model(self.capabilities, requested, thread)

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
        _ = model, options, tools
        return False

    def build_request(
        self,
        model: str,
        payload: Sequence[PayloadMessage],
        options: CompletionOptions,
        tools: Sequence[ToolDeclaration],
        *,
        stream: bool = False,
    ) -> dict[str, Any]:
        _ = options, tools
        prompt = next((m.text for m in reversed(payload) if m.role == "user"), "")
        return {"model": model, "prompt": prompt, "stream": stream}

    async def complete(self, request: dict[str, Any]) -> ProviderResponse:
        """Return a deterministic echo of the prompt."""
        return ProviderResponse(
            text=f"echo: {request['prompt'][:100]}",
            usage=_MOCK_USAGE,
            finish_reason="stop",
        )

    async def open_stream(self, request: dict[str, Any]) -> AsyncIterator[dict[str, Any]]:
        return _echo_chunks(f"echo: {request['prompt'][:100]}")

    def translate_chunk(self, chunk: Any, context: StreamingContext) -> ChunkDelta:
        _ = context
        return ChunkDelta(
            text=chunk.get("text", ""),
            finish_reason=chunk.get("finish_reason"),
            usage=chunk.get("usage"),
        )

    async def stop(self, stream: Any) -> None:
        await stream.aclose()

    async def aclose(self) -> None:
        return None


async def _echo_chunks(text: str) -> AsyncIterator[dict[str, Any]]:
    words = text.split(" ")
    for i, word in enumerate(words):
        yield {"text": word if i == 0 else f" {word}"}
    yield {"finish_reason": "stop", "usage": _MOCK_USAGE}
