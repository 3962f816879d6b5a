"""Streaming turns: native chunks in, ChunkEvents out.

A `StreamingResponse` drains one native stream at a time. When a stream ends
with tool calls pending, the calls run through the shared tool executor, a
fresh native stream is opened and draining continues there; the caller sees
one uninterrupted event sequence.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
from typing import TYPE_CHECKING, Any

from parley.errors import ParleyError
from parley.events import ContentEvent, ReasoningEvent, StreamSwitchEvent, UsageEvent
from parley.loop import DEFAULT_MAX_TOOL_HOPS, check_hop_limit, execute_tool_calls
from parley.models import ToolCallRecord, add_usage
from parley.providers._errors import wrap_provider_error

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence
    from types import TracebackType

    from parley.events import ChunkEvent
    from parley.models import Message, UsageStats
    from parley.options import CompletionOptions
    from parley.payload import PayloadMessage
    from parley.providers.base import Provider
    from parley.providers.models import ChunkDelta, ToolCallDelta
    from parley.tools import ToolDeclaration, ToolRegistry

logger = logging.getLogger(__name__)


@dataclass
class StreamingContext:
    """Mutable state of one streaming turn.

    ``tool_calls``, ``hop_usage``, ``hop_text`` and ``provider_state`` belong
    to the current backend call attempt and are reset before every request.
    """

    model: str
    payload: list[PayloadMessage]
    options: CompletionOptions
    tools: list[ToolDeclaration]
    stream: Any = None
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    #: Scratch space for providers whose chunks depend on earlier ones.
    provider_state: dict[str, Any] = field(default_factory=dict)
    hops: int = 0
    #: Usage of completed hops.
    usage: UsageStats | None = None
    #: Latest usage reported by the current stream.
    hop_usage: UsageStats | None = None
    hop_text: list[str] = field(default_factory=list)
    done: bool = False
    usage_emitted: bool = False
    cancelled: bool = False

    def reset_attempt(self) -> None:
        self.tool_calls = []
        self.provider_state = {}
        self.hop_usage = None
        self.hop_text = []

    @property
    def total_usage(self) -> UsageStats | None:
        return add_usage(self.usage, self.hop_usage)

    def accumulate(self, fragment: ToolCallDelta) -> None:
        """Fold one tool-call fragment into the open records.

        A known id extends its record, an unknown id opens a new one, and a
        fragment without id extends the most recently opened record.
        """
        if fragment.id:
            for record in self.tool_calls:
                if record.id == fragment.id:
                    record.arguments += fragment.arguments
                    if fragment.name and not record.name:
                        record.name = fragment.name
                    return
            self.tool_calls.append(
                ToolCallRecord(
                    id=fragment.id, name=fragment.name, arguments=fragment.arguments
                )
            )
            return

        if not self.tool_calls:
            logger.warning("Dropping tool call fragment with no open call")
            return
        record = self.tool_calls[-1]
        record.arguments += fragment.arguments
        if fragment.name and not record.name:
            record.name = fragment.name


class StreamingResponse:
    """Async iterable of ChunkEvents for one streaming turn.

    Use as an async context manager, or iterate directly and call `stop()`
    to abandon the turn early::

        async with await parley.stream(thread, config=config) as response:
            async for event in response:
                ...
    """

    def __init__(
        self,
        provider: Provider,
        context: StreamingContext,
        registry: ToolRegistry,
        *,
        max_hops: int = DEFAULT_MAX_TOOL_HOPS,
        close_provider: bool = True,
    ) -> None:
        self._provider = provider
        self._context = context
        self._registry = registry
        self._max_hops = max_hops
        self._close_provider = close_provider
        self._events: AsyncIterator[ChunkEvent] | None = None
        self._closed = False
        #: Every executed tool call, oldest first.
        self.tool_calls: list[ToolCallRecord] = []

    @classmethod
    async def open(
        cls,
        provider: Provider,
        thread: Sequence[Message] | str,
        *,
        model: str,
        options: CompletionOptions,
        registry: ToolRegistry,
        max_hops: int = DEFAULT_MAX_TOOL_HOPS,
    ) -> StreamingResponse:
        """Select the model, build the payload and open the first stream.

        The provider is closed if any of these steps fails.
        """
        try:
            model = provider.select_model(model, thread)
            context = StreamingContext(
                model=model,
                payload=provider.build_payload(model, thread),
                options=options,
                tools=registry.list(),
            )
        except BaseException:
            await _release_provider(provider)
            raise
        response = cls(provider, context, registry, max_hops=max_hops)
        try:
            await response._open_stream()
        except BaseException:
            await response._finish()
            raise
        return response

    @property
    def context(self) -> StreamingContext:
        return self._context

    @property
    def model(self) -> str:
        return self._context.model

    @property
    def stream(self) -> Any:
        """The active native stream."""
        return self._context.stream

    @property
    def usage(self) -> UsageStats | None:
        return self._context.total_usage

    def __aiter__(self) -> AsyncIterator[ChunkEvent]:
        if self._events is None:
            self._events = self._produce()
        return self._events

    async def __aenter__(self) -> StreamingResponse:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if not self._context.done:
            await self.stop()
            return
        await self._close_events()
        await self._finish()

    async def stop(self) -> None:
        """Abandon the turn: abort the native stream, never run more tools."""
        context = self._context
        if context.cancelled:
            return
        context.cancelled = True
        logger.debug("[%s] stream stopped by caller", self._provider.name)
        if context.stream is not None:
            await self._provider.stop(context.stream)
        await self._close_events()
        await self._finish()

    async def _close_events(self) -> None:
        events = self._events
        # A generator suspended at a yield can be closed; a running one will
        # see the cancelled flag on its own.
        if events is not None and not getattr(events, "ag_running", False):
            await events.aclose()  # type: ignore[attr-defined]

    async def _open_stream(self) -> None:
        context = self._context
        context.reset_attempt()
        request = self._provider.build_request(
            context.model,
            context.payload,
            context.options,
            context.tools,
            stream=True,
        )
        logger.debug("[%s] prompting model %s", self._provider.name, context.model)
        context.stream = await self._provider.open_stream(request)

    async def _next_chunk(self, iterator: Any) -> tuple[bool, Any]:
        try:
            return True, await iterator.__anext__()
        except StopAsyncIteration:
            return False, None
        except asyncio.CancelledError:
            raise
        except ParleyError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e, provider=self._provider.name, phase="stream"
            ) from e

    async def _produce(self) -> AsyncIterator[ChunkEvent]:
        context = self._context
        try:
            while not context.cancelled:
                iterator = context.stream.__aiter__()
                while True:
                    more, chunk = await self._next_chunk(iterator)
                    if not more or context.cancelled:
                        break
                    delta = self._provider.translate_chunk(chunk, context)
                    for event in self._apply(delta):
                        yield event
                        if context.cancelled:
                            return

                if context.cancelled:
                    return
                if context.tool_calls and not context.done:
                    async for event in self._run_tools():
                        yield event
                        if context.cancelled:
                            return
                    continue

                if not context.done:
                    # Stream ended without a finish signal.
                    context.done = True
                    yield ContentEvent(text="", done=True)
                    usage_event = self._usage_event()
                    if usage_event is not None:
                        yield usage_event
                return
        finally:
            await self._finish()

    def _apply(self, delta: ChunkDelta) -> list[ChunkEvent]:
        """Fold one normalized delta into the context and return its events."""
        context = self._context
        events: list[ChunkEvent] = []
        if delta.usage is not None:
            context.hop_usage = delta.usage
        for fragment in delta.tool_calls:
            context.accumulate(fragment)

        if not context.done:
            finishing = delta.done and not context.tool_calls
            if delta.text:
                context.hop_text.append(delta.text)
            if delta.reasoning:
                events.append(ReasoningEvent(text=delta.reasoning, done=finishing))
            if delta.text or finishing:
                events.append(ContentEvent(text=delta.text, done=finishing))
            if finishing:
                context.done = True

        if context.done and delta.usage is not None:
            usage_event = self._usage_event()
            if usage_event is not None:
                events.append(usage_event)
        return events

    def _usage_event(self) -> UsageEvent | None:
        context = self._context
        if context.usage_emitted or not context.options.usage:
            return None
        usage = context.total_usage
        if usage is None:
            return None
        context.usage_emitted = True
        return UsageEvent(usage=usage)

    async def _run_tools(self) -> AsyncIterator[ChunkEvent]:
        context = self._context
        context.hops += 1
        check_hop_limit(context.hops, self._max_hops)

        calls = context.tool_calls
        context.usage = context.total_usage
        context.hop_usage = None
        async for event in execute_tool_calls(
            calls,
            registry=self._registry,
            payload=context.payload,
            text="".join(context.hop_text),
        ):
            yield event
            if context.cancelled:
                return
        self.tool_calls.extend(calls)

        await self._open_stream()
        logger.debug(
            "[%s] switched to a new stream after %d tool call(s)",
            self._provider.name,
            len(calls),
        )
        yield StreamSwitchEvent(stream=context.stream)

    async def _finish(self) -> None:
        if self._closed:
            return
        self._closed = True
        if not self._close_provider:
            return
        await _release_provider(self._provider)


async def _release_provider(provider: Provider) -> None:
    try:
        await provider.aclose()
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        # Cleanup should never mask the primary failure.
        logger.warning("Provider cleanup failed: %s", exc)

