"""Tests for history views and wire conversion."""

import pytest

from gemini_chat.history import (
    alternation_violation,
    is_valid_seed,
    seed_before,
    sent_messages,
    to_contents,
    to_wire_parts,
)
from gemini_chat.models.message import AttachmentPart, Message, MessageStatus, Role, TextPart


def user(text="hi"):
    return Message.user(text)


def model(text="hello", status=MessageStatus.COMPLETE, **kw):
    parts = (TextPart(text=text),) if text else ()
    return Message(role=Role.MODEL, parts=parts, status=status, **kw)


class TestSeeds:
    def test_empty_is_valid(self):
        assert is_valid_seed([])
        assert alternation_violation([]) is None

    def test_alternating_pairs(self):
        assert is_valid_seed([user(), model(), user(), model()])

    def test_must_start_with_user(self):
        seed = [model(), user(), model()]
        assert "start" in alternation_violation(seed)
        assert not is_valid_seed(seed)

    def test_consecutive_roles_rejected(self):
        seed = [user(), user(), model()]
        assert "consecutive user" in alternation_violation(seed)
        assert not is_valid_seed(seed)

    def test_must_end_on_model(self):
        assert alternation_violation([user()]) is None
        assert not is_valid_seed([user()])

    def test_in_flight_replies_are_not_sent(self):
        msgs = [user(), model(status=MessageStatus.CANCELLED), user(), Message.placeholder()]
        assert sent_messages(msgs) == msgs[:3]

    def test_seed_before_index(self):
        msgs = [user("a"), model("b"), user("c"), model("d")]
        assert seed_before(msgs, 2) == msgs[:2]
        assert seed_before(msgs, 0) == []


class TestWire:
    def test_to_wire_parts(self):
        att = AttachmentPart(mime_type="image/png", name="a.png", data="data:image/png;base64,QUJD")
        wire = to_wire_parts([TextPart(text="look"), TextPart(text=""), att])
        assert [p.text for p in wire] == ["look", None]
        assert wire[1].inline_data.mime_type == "image/png"
        assert wire[1].inline_data.data == "QUJD"

    def test_unknown_part_rejected(self):
        with pytest.raises(TypeError):
            to_wire_parts(["raw string"])

    def test_empty_reply_keeps_its_slot(self):
        contents = to_contents([user("q"), model("", status=MessageStatus.ERRORED, error_detail="boom")])
        assert [c.role for c in contents] == ["user", "model"]
        assert contents[1].parts[0].text == "boom"

    def test_wire_uses_camel_case(self):
        att = AttachmentPart(mime_type="text/plain", data="eA==")
        dumped = to_contents([Message.user("", [att])])[0].model_dump(by_alias=True, exclude_none=True)
        assert dumped == {"role": "user", "parts": [{"inlineData": {"mimeType": "text/plain", "data": "eA=="}}]}
