"""Provider protocol: the interface every backend adapter implements."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from parley.capabilities import CapabilityMatrix
    from parley.models import Message
    from parley.options import CompletionOptions
    from parley.payload import PayloadMessage
    from parley.providers.models import ChunkDelta, ProviderResponse
    from parley.stream import StreamingContext
    from parley.tools import ToolDeclaration


@runtime_checkable
class Provider(Protocol):
    """One backend completion service.

    A provider owns the translation of its backend's native shapes in both
    directions and nothing else: the tool loop and the stream producer are
    shared.
    """

    @property
    def name(self) -> str:
        """Short provider name used in logs and errors."""
        ...

    @property
    def capabilities(self) -> CapabilityMatrix:
        """Per-model feature flags for this backend."""
        ...

    def select_model(self, requested: str, thread: Sequence[Message] | str) -> str:
        """Return the model to use, switching to a vision model when needed."""
        ...

    def build_payload(
        self, model: str, thread: Sequence[Message] | str
    ) -> list[PayloadMessage]:
        """Build the neutral payload for *model*."""
        ...

    def tools_enabled(
        self,
        model: str,
        options: CompletionOptions,
        tools: Sequence[ToolDeclaration],
    ) -> bool:
        """Whether tool declarations go into the request."""
        ...

    def build_request(
        self,
        model: str,
        payload: Sequence[PayloadMessage],
        options: CompletionOptions,
        tools: Sequence[ToolDeclaration],
        *,
        stream: bool = False,
    ) -> dict[str, Any]:
        """Translate the payload into native request arguments."""
        ...

    async def complete(self, request: dict[str, Any]) -> ProviderResponse:
        """Issue a single-shot call."""
        ...

    async def open_stream(self, request: dict[str, Any]) -> AsyncIterator[Any]:
        """Issue a streaming call and return the native chunk iterator."""
        ...

    def translate_chunk(self, chunk: Any, context: StreamingContext) -> ChunkDelta:
        """Normalize one native chunk."""
        ...

    async def stop(self, stream: Any) -> None:
        """Ask a native stream to stop (best-effort)."""
        ...

    async def aclose(self) -> None:
        """Release SDK client resources."""
        ...
