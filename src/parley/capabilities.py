"""Per-model feature flags that gate request construction.

Each provider owns one `CapabilityMatrix`. Shared defaults live in
`DEFAULT_CAPABILITIES`; providers derive their own table with
``dataclasses.replace`` and override only the rules that differ.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from parley.models import Message

ModelPredicate = Callable[[str], bool]
SystemFallback = Literal["drop", "user"]


def always(model: str) -> bool:
    _ = model
    return True


def never(model: str) -> bool:
    _ = model
    return False


def prefixed(*prefixes: str) -> ModelPredicate:
    """Predicate: model id starts with any of *prefixes*."""

    def check(model: str) -> bool:
        return model.startswith(prefixes)

    return check


def not_prefixed(*prefixes: str) -> ModelPredicate:
    """Predicate: model id starts with none of *prefixes*."""

    def check(model: str) -> bool:
        return not model.startswith(prefixes)

    return check


def matches_any(model: str, patterns: Sequence[str]) -> bool:
    """Whether *model* matches one of the glob *patterns* (``*`` wildcards)."""
    return any(fnmatchcase(model, pattern) for pattern in patterns)


@dataclass(frozen=True)
class CapabilityMatrix:
    """Pure predicates keyed by model id."""

    accepts_system_role: ModelPredicate = always
    supports_tools: ModelPredicate = always
    supports_temperature: ModelPredicate = always
    supports_top_p: ModelPredicate = always
    supports_top_k: ModelPredicate = always
    supports_reasoning_effort: ModelPredicate = never
    supports_max_tokens: ModelPredicate = always
    #: Glob patterns naming vision-capable models.
    vision_models: tuple[str, ...] = ()
    #: What happens to system messages a model does not accept.
    system_fallback: SystemFallback = "drop"

    def supports_vision(self, model: str) -> bool:
        return matches_any(model, self.vision_models)

    def concrete_vision_models(self) -> list[str]:
        """Vision models that name an actual model rather than a pattern."""
        return [m for m in self.vision_models if not any(c in m for c in "*?[")]


DEFAULT_CAPABILITIES = CapabilityMatrix()


def thread_needs_vision(thread: Sequence[Message] | str) -> bool:
    """Whether any message of *thread* carries an image attachment."""
    if isinstance(thread, str):
        return False
    return any(m.attachment is not None and m.attachment.is_image for m in thread)


def select_model(
    capabilities: CapabilityMatrix,
    requested: str,
    thread: Sequence[Message] | str,
    *,
    fallback: str | None = None,
) -> str:
    """Return the model to use for *thread*.

    When the thread holds an image and *requested* cannot see it, substitute
    *fallback* or else the first concrete vision model of the table. With no
    candidate the requested model is kept and images are left out of the
    payload.
    """
    if not thread_needs_vision(thread) or capabilities.supports_vision(requested):
        return requested
    if fallback:
        return fallback
    candidates = capabilities.concrete_vision_models()
    if candidates:
        return candidates[0]
    return requested
