"""Conversation thread → backend-neutral payload."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from collections.abc import Sequence

    from parley.capabilities import CapabilityMatrix
    from parley.models import Message, ToolCallRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class ImagePart:
    """An inline image, base64-encoded."""

    mime_type: str
    data: str


Part = Union[TextPart, ImagePart]


@dataclass(frozen=True)
class PayloadMessage:
    """One role/content unit of the neutral payload.

    Assistant announcements carry ``tool_calls``; tool results carry
    ``tool_call_id`` and ``name`` with the serialized result as text.
    """

    role: str
    parts: tuple[Part, ...] = ()
    tool_calls: tuple[ToolCallRecord, ...] = ()
    tool_call_id: str | None = None
    name: str | None = None

    @property
    def text(self) -> str:
        return "\n\n".join(p.text for p in self.parts if isinstance(p, TextPart))

    @property
    def images(self) -> list[ImagePart]:
        return [p for p in self.parts if isinstance(p, ImagePart)]


def build_payload(
    thread: Sequence[Message] | str,
    model: str,
    capabilities: CapabilityMatrix,
) -> list[PayloadMessage]:
    """Build the ordered neutral payload for *model*.

    Never mutates *thread*. Only the most recent image attachment is inlined,
    and only for vision-capable models. Caller tool messages carry no call id
    and are sent as user text.
    """
    if isinstance(thread, str):
        return [PayloadMessage(role="user", parts=(TextPart(thread),))]

    accepts_system = capabilities.accepts_system_role(model)
    vision = capabilities.supports_vision(model)
    image_attached = False

    # Walk newest first so the latest image wins.
    payload: list[PayloadMessage] = []
    for message in reversed(thread):
        role: str = message.role
        if role == "system" and not accepts_system:
            if capabilities.system_fallback == "drop":
                logger.debug("Dropping system message unsupported by %s", model)
                continue
            role = "user"
        elif role == "tool":
            # No call id to pair with, so the result travels as plain text.
            logger.debug("Sending caller tool message as user text")
            role = "user"

        text = message.content_for_model
        parts: list[Part] = [TextPart(text)] if text else []
        attachment = message.attachment
        if attachment is not None:
            if attachment.is_text:
                parts.append(TextPart(attachment.text()))
            elif vision and not image_attached:
                parts.append(ImagePart(attachment.mime_type, attachment.base64_data()))
                image_attached = True

        if not parts:
            continue
        payload.append(PayloadMessage(role=role, parts=tuple(parts)))

    payload.reverse()
    return payload


def system_instruction(payload: Sequence[PayloadMessage]) -> str | None:
    """Join the text of all system units, or ``None`` when there are none."""
    texts = [m.text for m in payload if m.role == "system" and m.text]
    return "\n\n".join(texts) if texts else None
