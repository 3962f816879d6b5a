"""Normalized shapes returned by providers.

Everything a provider hands back to the core uses these types; no SDK object
crosses the provider boundary.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from parley.models import ToolCallRecord, UsageStats

#: Normalized finish reasons that end a turn.
DONE_REASONS = frozenset({"stop", "length", "content_filter", "eos"})


@dataclass
class ProviderResponse:
    """A standardized response from a single (non-streaming) backend call."""

    text: str = ""
    reasoning: str | None = None
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    usage: UsageStats | None = None
    finish_reason: str | None = None


@dataclass(frozen=True)
class ToolCallDelta:
    """A fragment of a tool call seen in one streamed chunk.

    ``id`` is empty when the backend does not repeat it on argument
    fragments; such fragments belong to the most recently opened call.
    """

    id: str = ""
    name: str = ""
    arguments: str = ""


@dataclass(frozen=True)
class ChunkDelta:
    """One native stream chunk, normalized."""

    text: str = ""
    reasoning: str = ""
    tool_calls: tuple[ToolCallDelta, ...] = ()
    finish_reason: str | None = None
    usage: UsageStats | None = None

    @property
    def done(self) -> bool:
        return self.finish_reason in DONE_REASONS
