"""Completion options recognized by every provider."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from parley.errors import ConfigurationError


@dataclass(frozen=True)
class CompletionOptions:
    """Optional generation controls for `complete()` and `stream()`.

    Options a model does not support are silently left out of the outgoing
    request; they never fail a turn.
    """

    #: Hard limit on the model's output tokens.
    max_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    #: ``True`` forces tools on, ``False`` forces them off. ``None`` keeps the
    #: historical behavior: tools are declared only when ``top_k`` is set.
    tools: bool | None = None
    reasoning_effort: str | None = None
    #: Report token usage in results and as a trailing stream event.
    usage: bool = False
    #: Passed through verbatim into the native request.
    custom_overrides: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        """Validate option shapes early for clear errors."""
        if self.max_tokens is not None and (
            not isinstance(self.max_tokens, int) or self.max_tokens <= 0
        ):
            raise ConfigurationError(
                "max_tokens must be a positive integer",
                hint="Pass max_tokens=1024, or leave it unset for the model default.",
            )
        if self.temperature is not None and self.temperature < 0:
            raise ConfigurationError(
                f"temperature must be >= 0, got {self.temperature}",
            )
        if self.top_p is not None and not 0 <= self.top_p <= 1:
            raise ConfigurationError(
                f"top_p must be between 0 and 1, got {self.top_p}",
            )
        if self.top_k is not None and (
            not isinstance(self.top_k, int) or self.top_k <= 0
        ):
            raise ConfigurationError(
                "top_k must be a positive integer",
                hint="Pass top_k=40, or leave it unset.",
            )
        if self.tools is not None and not isinstance(self.tools, bool):
            raise ConfigurationError(
                "tools must be True, False or None",
                hint="None enables tools only when top_k is set.",
            )
        if self.custom_overrides is not None and not isinstance(
            self.custom_overrides, dict
        ):
            raise ConfigurationError(
                "custom_overrides must be a dict of native request fields",
            )

    def wants_tools(self) -> bool:
        """Resolve the tri-state ``tools`` flag."""
        if self.tools is not None:
            return self.tools
        return self.top_k is not None
