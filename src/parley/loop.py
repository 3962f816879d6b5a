"""Tool execution loop: request, run requested tools, request again.

The loop is backend-agnostic. Providers translate requests and responses;
everything between two backend calls (argument parsing, registry calls,
folding results back into the payload, usage accounting) happens here.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from typing import TYPE_CHECKING, Any

from parley.errors import (
    ToolArgumentsError,
    ToolLoopExceededError,
    ToolRegistryError,
)
from parley.events import ToolResultEvent, ToolStatusEvent
from parley.models import CompletionResult, add_usage
from parley.payload import PayloadMessage, TextPart

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Sequence

    from parley.events import ChunkEvent
    from parley.models import Message, ToolCallRecord, UsageStats
    from parley.options import CompletionOptions
    from parley.providers.base import Provider
    from parley.tools import ToolRegistry

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOOL_HOPS = 16


def parse_tool_arguments(call: ToolCallRecord) -> dict[str, Any]:
    """Decode a call's accumulated arguments into a dict.

    Empty arguments mean "no arguments". Anything else must be a JSON object.
    """
    raw = call.arguments.strip()
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError as e:
        raise ToolArgumentsError(
            f"Tool call {call.name} has invalid JSON arguments: {raw!r}",
            hint="The model produced malformed arguments; the call was not run.",
            tool_name=call.name,
            call_id=call.id,
        ) from e
    if not isinstance(parsed, dict):
        raise ToolArgumentsError(
            f"Tool call {call.name} arguments must be a JSON object, got {raw!r}",
            tool_name=call.name,
            call_id=call.id,
        )
    return parsed


def serialize_result(result: Any) -> str:
    return json.dumps(result, default=str, ensure_ascii=False)


async def invoke_tool(registry: ToolRegistry, name: str, params: dict[str, Any]) -> Any:
    """Invoke *name*, turning ordinary tool failures into an error result.

    The model gets to see the failure and react. Registry faults
    (`ToolRegistryError`) and cancellation still propagate.
    """
    try:
        return await registry.invoke(name, params)
    except asyncio.CancelledError:
        raise
    except ToolRegistryError:
        raise
    except Exception as e:
        logger.warning("Tool %s failed: %s", name, e)
        return {"error": f"{type(e).__name__}: {e}"}


async def execute_tool_calls(
    calls: Sequence[ToolCallRecord],
    *,
    registry: ToolRegistry,
    payload: list[PayloadMessage],
    text: str = "",
) -> AsyncIterator[ChunkEvent]:
    """Run *calls* one at a time, in backend order, appending to *payload*.

    Appends one assistant announcement carrying every call, then one tool
    message per call. Yields status and result events as it goes.
    """
    payload.append(
        PayloadMessage(
            role="assistant",
            parts=(TextPart(text),) if text else (),
            tool_calls=tuple(calls),
        )
    )
    for call in calls:
        yield ToolStatusEvent(name=call.name, phase="preparing")
        logger.debug("Tool call %s with %s", call.name, call.arguments)
        params = parse_tool_arguments(call)

        yield ToolStatusEvent(name=call.name, phase="running")
        result = await invoke_tool(registry, call.name, params)
        call.params = params
        call.result = result

        content = serialize_result(result)
        logger.debug("Tool call %s => %s", call.name, content[:128])
        payload.append(
            PayloadMessage(
                role="tool",
                parts=(TextPart(content),),
                tool_call_id=call.id,
                name=call.name,
            )
        )
        yield ToolResultEvent(name=call.name, params=params, result=result)


def check_hop_limit(hops: int, max_hops: int) -> None:
    if hops > max_hops:
        raise ToolLoopExceededError(
            f"Backend requested tools {hops} times in one turn (limit {max_hops})",
            hint="Raise Config.max_tool_hops if the tool chain is legitimately long.",
            hops=hops,
        )


async def run_tool_loop(
    provider: Provider,
    thread: Sequence[Message] | str,
    *,
    model: str,
    options: CompletionOptions,
    registry: ToolRegistry,
    max_hops: int = DEFAULT_MAX_TOOL_HOPS,
    on_event: Callable[[ChunkEvent], Any] | None = None,
) -> CompletionResult:
    """Drive one non-streaming turn to its final answer."""
    model = provider.select_model(model, thread)
    payload = provider.build_payload(model, thread)
    tools = registry.list()

    executed: list[ToolCallRecord] = []
    usage: UsageStats | None = None
    hops = 0

    while True:
        request = provider.build_request(model, payload, options, tools)
        logger.debug("[%s] prompting model %s", provider.name, model)
        response = await provider.complete(request)
        if options.usage:
            usage = add_usage(usage, response.usage)

        if not response.tool_calls:
            return CompletionResult(
                text=response.text,
                tool_calls=executed,
                usage=usage,
                reasoning=response.reasoning,
                finish_reason=response.finish_reason,
                model=model,
            )

        hops += 1
        check_hop_limit(hops, max_hops)
        async for event in execute_tool_calls(
            response.tool_calls,
            registry=registry,
            payload=payload,
            text=response.text,
        ):
            if on_event is not None:
                result = on_event(event)
                if inspect.isawaitable(result):
                    await result
        executed.extend(response.tool_calls)
