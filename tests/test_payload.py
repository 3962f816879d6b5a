"""Payload building: thread in, neutral payload out."""

from __future__ import annotations

from hypothesis import given
from hypothesis import strategies as st
import pytest

from parley.capabilities import CapabilityMatrix, never
from parley.models import Attachment, Message
from parley.payload import ImagePart, TextPart, build_payload, system_instruction

pytestmark = pytest.mark.unit

SEEING = CapabilityMatrix(vision_models=("seer*",))
NO_SYSTEM = CapabilityMatrix(accepts_system_role=never)
SYSTEM_AS_USER = CapabilityMatrix(accepts_system_role=never, system_fallback="user")

_texts = st.text(
    alphabet=st.characters(min_codepoint=0x21, max_codepoint=0x7E), min_size=1, max_size=20
)
_messages = st.builds(
    Message, role=st.sampled_from(["system", "user", "assistant"]), content=_texts
)


@given(thread=st.lists(_messages, max_size=12))
def test_payload_preserves_message_order(thread: list[Message]) -> None:
    """Every message survives, in thread order."""
    payload = build_payload(thread, "any-model", SEEING)

    assert [(m.role, m.text) for m in payload] == [(m.role, m.content) for m in thread]


@given(thread=st.lists(_messages, max_size=12))
def test_models_without_system_role_yield_no_system_unit(thread: list[Message]) -> None:
    """Unsupported system messages are dropped or relabelled, never sent."""
    for caps in (NO_SYSTEM, SYSTEM_AS_USER):
        payload = build_payload(thread, "any-model", caps)
        assert all(m.role != "system" for m in payload)


def test_string_thread_becomes_one_user_message() -> None:
    """A bare prompt is shorthand for a single user message."""
    payload = build_payload("2+2?", "m", SEEING)

    assert len(payload) == 1
    assert payload[0].role == "user"
    assert payload[0].parts == (TextPart("2+2?"),)


def test_system_fallback_user_keeps_system_text() -> None:
    """Backends that remap system messages receive them as user text."""
    thread = [Message("system", "be terse"), Message("user", "2+2?")]

    payload = build_payload(thread, "m", SYSTEM_AS_USER)

    assert [(m.role, m.text) for m in payload] == [("user", "be terse"), ("user", "2+2?")]


def test_caller_tool_messages_are_sent_as_user_text() -> None:
    """A tool message in the thread has no call id, so it travels as user text."""
    thread = [
        Message("user", "Weather in Lyon?"),
        Message("assistant", "Checking."),
        Message("tool", '{"temp": 21}'),
        Message("user", "Warm enough?"),
    ]

    payload = build_payload(thread, "m", SEEING)

    assert [m.role for m in payload] == ["user", "assistant", "user", "user"]
    assert payload[2].text == '{"temp": 21}'
    assert all(m.tool_call_id is None for m in payload)


def test_only_latest_image_is_attached() -> None:
    """Older images are left out; the newest one is inlined."""
    old = Attachment("image/png", b"old")
    new = Attachment("image/jpeg", b"new")
    thread = [
        Message("user", "first", attachment=old),
        Message("assistant", "seen"),
        Message("user", "second", attachment=new),
    ]

    payload = build_payload(thread, "seer-1", SEEING)

    assert payload[0].images == []
    assert payload[0].text == "first"
    assert payload[2].images == [ImagePart("image/jpeg", new.base64_data())]


def test_images_are_dropped_for_blind_models() -> None:
    """A model without vision receives the text only."""
    thread = [Message("user", "look", attachment=Attachment("image/png", b"x"))]

    payload = build_payload(thread, "blind-1", SEEING)

    assert payload[0].parts == (TextPart("look"),)


def test_text_attachment_follows_message_text() -> None:
    """Text attachments are inlined after the message content."""
    thread = [Message("user", "summarize:", attachment=Attachment("text/plain", "data"))]

    payload = build_payload(thread, "m", SEEING)

    assert payload[0].parts == (TextPart("summarize:"), TextPart("data"))
    assert payload[0].text == "summarize:\n\ndata"


def test_empty_messages_are_skipped() -> None:
    """Whitespace-only messages with no attachment produce no unit."""
    thread = [Message("user", "   "), Message("user", "hi")]

    payload = build_payload(thread, "m", SEEING)

    assert [m.text for m in payload] == ["hi"]


def test_build_payload_never_mutates_thread() -> None:
    """The caller's thread is read, never written."""
    thread = [Message("system", "rules"), Message("user", "hi")]
    snapshot = list(thread)

    build_payload(thread, "m", NO_SYSTEM)

    assert thread == snapshot


def test_system_instruction_joins_system_units() -> None:
    """System text travels separately on backends with a system field."""
    payload = build_payload(
        [Message("system", "a"), Message("user", "q"), Message("system", "b")],
        "m",
        SEEING,
    )

    assert system_instruction(payload) == "a\n\nb"
    assert system_instruction(build_payload("q", "m", SEEING)) is None
