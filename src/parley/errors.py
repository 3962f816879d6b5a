"""Exception hierarchy for Parley."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


class ParleyError(Exception):
    """Base exception for all Parley errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(ParleyError):
    """Configuration or option validation failed."""


class InternalError(ParleyError):
    """A Parley internal error (bug) or invariant violation."""


class APIError(ParleyError):
    """Backend call failed.

    Transport, auth and quota failures are never retried by Parley; the turn
    is aborted and the error carries enough metadata to decide what to do.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        status_code: int | None = None,
        provider: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.status_code = status_code
        self.provider = provider
        self.phase = phase


class RateLimitError(APIError):
    """Rate limit exceeded (HTTP 429)."""


class ToolInvocationError(ParleyError):
    """A tool call could not be carried out."""

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        tool_name: str | None = None,
        call_id: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.tool_name = tool_name
        self.call_id = call_id


class ToolArgumentsError(ToolInvocationError):
    """The model sent arguments that are not a JSON object."""


class ToolRegistryError(ToolInvocationError):
    """The tool registry hit a fault it cannot recover from.

    Unlike ordinary tool failures, this aborts the turn instead of being
    reported back to the model.
    """


class ToolNotFoundError(ToolInvocationError):
    """No tool is registered under the requested name."""


class ToolLoopExceededError(ParleyError):
    """The backend kept requesting tools past the configured hop limit."""

    def __init__(self, message: str, *, hint: str | None = None, hops: int) -> None:
        super().__init__(message, hint=hint)
        self.hops = hops


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
