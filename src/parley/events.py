"""Chunk events: the uniform vocabulary every streaming turn is expressed in."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Literal, Union

from parley.models import UsageStats

ToolPhase = Literal["preparing", "running"]


@dataclass(frozen=True)
class ContentEvent:
    """Answer text. ``done`` is set on the single event that ends the turn."""

    type: ClassVar[str] = "content"

    text: str
    done: bool = False


@dataclass(frozen=True)
class ReasoningEvent:
    """Model thinking text, for backends that expose it."""

    type: ClassVar[str] = "reasoning"

    text: str
    done: bool = False


@dataclass(frozen=True)
class ToolStatusEvent:
    type: ClassVar[str] = "tool_status"

    name: str
    phase: ToolPhase


@dataclass(frozen=True)
class ToolResultEvent:
    type: ClassVar[str] = "tool_result"

    name: str
    params: dict[str, Any]
    result: Any


@dataclass(frozen=True)
class StreamSwitchEvent:
    """A tool hop finished and a fresh backend stream replaced the old one."""

    type: ClassVar[str] = "stream_switch"

    stream: Any


@dataclass(frozen=True)
class UsageEvent:
    """Cumulative usage for the whole turn, emitted at most once."""

    type: ClassVar[str] = "usage"

    usage: UsageStats


ChunkEvent = Union[
    ContentEvent,
    ReasoningEvent,
    ToolStatusEvent,
    ToolResultEvent,
    StreamSwitchEvent,
    UsageEvent,
]
