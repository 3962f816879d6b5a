"""Conversation and accounting models shared by every provider."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
import mimetypes
from pathlib import Path
from typing import Any, Literal

from parley.errors import ConfigurationError

Role = Literal["system", "user", "assistant", "tool"]
_ROLES = frozenset({"system", "user", "assistant", "tool"})


@dataclass(frozen=True)
class Attachment:
    """A single file attached to a message.

    ``content`` is either raw bytes or a string: base64 for images, plain
    text for everything else.
    """

    mime_type: str
    content: bytes | str

    @property
    def kind(self) -> Literal["image", "text"]:
        """``"image"`` for image MIME types, ``"text"`` otherwise."""
        return "image" if self.mime_type.startswith("image/") else "text"

    @property
    def is_image(self) -> bool:
        return self.kind == "image"

    @property
    def is_text(self) -> bool:
        return self.kind == "text"

    def base64_data(self) -> str:
        """Return the payload as a base64 string."""
        if isinstance(self.content, bytes):
            return base64.b64encode(self.content).decode("ascii")
        if self.is_image:
            return self.content
        return base64.b64encode(self.content.encode("utf-8")).decode("ascii")

    def text(self) -> str:
        """Return the payload decoded as UTF-8 text."""
        if isinstance(self.content, bytes):
            return self.content.decode("utf-8", errors="replace")
        return self.content

    @classmethod
    def from_file(cls, path: str | Path, mime_type: str | None = None) -> Attachment:
        """Load an attachment from disk, guessing the MIME type when omitted."""
        p = Path(path)
        if not p.is_file():
            raise ConfigurationError(
                f"Attachment file not found: {p}",
                hint="Check the path, or pass the content directly to Attachment().",
            )
        if mime_type is None:
            guessed, _ = mimetypes.guess_type(p.name)
            mime_type = guessed or "text/plain"
        return cls(mime_type=mime_type, content=p.read_bytes())


@dataclass(frozen=True)
class Message:
    """One conversational turn as supplied by the caller."""

    role: Role
    content: str = ""
    attachment: Attachment | None = None

    def __post_init__(self) -> None:
        """Reject unknown roles early."""
        if self.role not in _ROLES:
            raise ConfigurationError(
                f"Unknown message role: {self.role!r}",
                hint="Use one of: system, user, assistant, tool.",
            )

    @property
    def content_for_model(self) -> str:
        """Text sent to the model for this message."""
        return (self.content or "").strip()


@dataclass
class ToolCallRecord:
    """A tool call requested by the model during one backend call attempt.

    ``arguments`` accumulates the serialized JSON as fragments arrive;
    ``params`` and ``result`` are filled in once the call has been executed.
    """

    id: str
    name: str
    arguments: str = ""
    params: dict[str, Any] | None = None
    result: Any = None


@dataclass(frozen=True)
class PromptTokenDetails:
    """Breakdown of prompt-side token counts."""

    cached_tokens: int | None = None
    audio_tokens: int | None = None


@dataclass(frozen=True)
class CompletionTokenDetails:
    """Breakdown of completion-side token counts."""

    reasoning_tokens: int | None = None
    audio_tokens: int | None = None


def _add_optional(a: int | None, b: int | None) -> int | None:
    if a is None and b is None:
        return None
    return (a or 0) + (b or 0)


def _add_details(a: Any, b: Any) -> Any:
    if a is None:
        return b
    if b is None:
        return a
    values = {
        name: _add_optional(getattr(a, name), getattr(b, name))
        for name in a.__dataclass_fields__
    }
    return type(a)(**values)


@dataclass(frozen=True)
class UsageStats:
    """Token usage, summed field by field across tool hops."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    prompt_details: PromptTokenDetails | None = None
    completion_details: CompletionTokenDetails | None = None

    def __post_init__(self) -> None:
        """Counters are never negative."""
        counters: list[int | None] = [self.prompt_tokens, self.completion_tokens]
        for details in (self.prompt_details, self.completion_details):
            if details is not None:
                counters.extend(
                    getattr(details, name) for name in details.__dataclass_fields__
                )
        for value in counters:
            if value is not None and value < 0:
                raise ValueError(f"usage counters must be >= 0, got {value}")

    def __add__(self, other: UsageStats) -> UsageStats:
        if not isinstance(other, UsageStats):
            return NotImplemented
        return UsageStats(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            prompt_details=_add_details(self.prompt_details, other.prompt_details),
            completion_details=_add_details(
                self.completion_details, other.completion_details
            ),
        )

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def to_dict(self) -> dict[str, Any]:
        """Return a plain dict in the familiar ``prompt_tokens`` layout."""
        out: dict[str, Any] = {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
        }
        if self.prompt_details is not None:
            out["prompt_tokens_details"] = {
                k: v for k, v in vars(self.prompt_details).items() if v is not None
            }
        if self.completion_details is not None:
            out["completion_tokens_details"] = {
                k: v
                for k, v in vars(self.completion_details).items()
                if v is not None
            }
        return out


def add_usage(total: UsageStats | None, hop: UsageStats | None) -> UsageStats | None:
    """Fold one hop's usage into the running total; ``None`` leaves it unchanged."""
    if hop is None:
        return total
    if total is None:
        return hop
    return total + hop


@dataclass
class CompletionResult:
    """Aggregate result of one non-streaming turn."""

    text: str = ""
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    usage: UsageStats | None = None
    reasoning: str | None = None
    finish_reason: str | None = None
    model: str | None = None
