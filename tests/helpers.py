"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: it exists to prevent test suites from
growing lots of one-off provider subclasses as coverage expands.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from parley.capabilities import DEFAULT_CAPABILITIES, CapabilityMatrix, select_model
from parley.payload import build_payload
from parley.providers.models import ChunkDelta, ProviderResponse, ToolCallDelta


class FakeStream:
    """Async iterator over scripted native chunks that records being closed."""

    def __init__(self, chunks: list[Any]) -> None:
        self._chunks = list(chunks)
        self.closed = False

    def __aiter__(self) -> FakeStream:
        return self

    async def __anext__(self) -> Any:
        if self.closed or not self._chunks:
            raise StopAsyncIteration
        item = self._chunks.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True


@dataclass
class ScriptedProvider:
    """Provider double that replays scripted responses and streams.

    ``script`` feeds `complete()` (ProviderResponse or exception per call);
    ``streams`` feeds `open_stream()` (one list of ChunkDelta per call). Every
    built request is recorded with a snapshot of the payload it was built from.
    """

    script: list[ProviderResponse | BaseException] = field(default_factory=list)
    streams: list[list[Any]] = field(default_factory=list)
    capabilities: CapabilityMatrix = DEFAULT_CAPABILITIES
    name: str = "scripted"
    requests: list[dict[str, Any]] = field(default_factory=list)
    opened: list[FakeStream] = field(default_factory=list)
    stopped: list[Any] = field(default_factory=list)
    tool_calls_at_open: list[int] = field(default_factory=list)
    closed: int = 0
    context: Any = None

    def select_model(self, requested: str, thread: Any) -> str:
        return select_model(self.capabilities, requested, thread)

    def build_payload(self, model: str, thread: Any) -> list[Any]:
        return build_payload(thread, model, self.capabilities)

    def tools_enabled(self, model: str, options: Any, tools: Any) -> bool:
        _ = model
        return options.tools is not False and bool(tools)

    def build_request(
        self, model: str, payload: Any, options: Any, tools: Any, *, stream: bool = False
    ) -> dict[str, Any]:
        request = {
            "model": model,
            "payload": list(payload),
            "tools": [t.name for t in tools] if self.tools_enabled(model, options, tools) else [],
            "stream": stream,
        }
        self.requests.append(request)
        return request

    async def complete(self, request: dict[str, Any]) -> ProviderResponse:
        _ = request
        if not self.script:
            return ProviderResponse(text="ok", finish_reason="stop")
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def open_stream(self, request: dict[str, Any]) -> FakeStream:
        _ = request
        if self.context is not None:
            self.tool_calls_at_open.append(len(self.context.tool_calls))
        chunks = self.streams.pop(0) if self.streams else [ChunkDelta(finish_reason="stop")]
        stream = FakeStream(chunks)
        self.opened.append(stream)
        return stream

    def translate_chunk(self, chunk: Any, context: Any) -> ChunkDelta:
        self.context = context
        return chunk

    async def stop(self, stream: Any) -> None:
        self.stopped.append(stream)
        await stream.close()

    async def aclose(self) -> None:
        self.closed += 1


def text_chunks(*texts: str, finish: str = "stop", usage: Any = None) -> list[ChunkDelta]:
    """Content chunks with the finish signal (and usage) on the last one."""
    chunks = [ChunkDelta(text=t) for t in texts[:-1]]
    chunks.append(ChunkDelta(text=texts[-1], finish_reason=finish, usage=usage))
    return chunks


def tool_call_chunks(call_id: str, name: str, *fragments: str) -> list[ChunkDelta]:
    """A streamed tool call: id/name first, argument fragments without id."""
    chunks = [ChunkDelta(tool_calls=(ToolCallDelta(id=call_id, name=name),))]
    chunks.extend(
        ChunkDelta(tool_calls=(ToolCallDelta(arguments=fragment),))
        for fragment in fragments
    )
    chunks.append(ChunkDelta(finish_reason="tool_calls"))
    return chunks
