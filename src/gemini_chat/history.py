"""
History views over a session's canonical message sequence.

The remote service only accepts a seed history that alternates user/model
starting with user. These helpers decide which messages count as sent turns
and whether a given prefix is acceptable.
"""

from typing import Optional, Sequence

from gemini_chat.models.message import AttachmentPart, Message, MessageStatus, Role, TextPart
from gemini_chat.models.wire import Content, InlineData, WirePart

# Cancelled replies were received in part and stay visible, so they count as turns.
SENT_STATUSES = {MessageStatus.COMPLETE, MessageStatus.ERRORED, MessageStatus.CANCELLED}


def sent_messages(messages: Sequence[Message]) -> list[Message]:
    return [m for m in messages if m.status in SENT_STATUSES]


def alternation_violation(messages: Sequence[Message]) -> Optional[str]:
    """Describe the first alternation violation, or None if the roles alternate."""
    if not messages:
        return None
    if messages[0].role != Role.USER:
        return "history must start with a user turn"
    for prev, cur in zip(messages, messages[1:]):
        if prev.role == cur.role:
            return f"consecutive {cur.role.value} turns at message {cur.id}"
    return None


def is_valid_seed(messages: Sequence[Message]) -> bool:
    """A seed must alternate and end on a model turn so a user turn can follow."""
    if alternation_violation(messages) is not None:
        return False
    return not messages or messages[-1].role == Role.MODEL


def seed_before(messages: Sequence[Message], index: int) -> list[Message]:
    """Sent messages strictly before position `index`."""
    return sent_messages(messages[:index])


def to_wire_parts(parts: Sequence[object]) -> list[WirePart]:
    wire: list[WirePart] = []
    for part in parts:
        if isinstance(part, TextPart):
            if part.text:
                wire.append(WirePart(text=part.text))
        elif isinstance(part, AttachmentPart):
            wire.append(WirePart(inline_data=InlineData(mime_type=part.mime_type, data=part.data)))
        else:
            raise TypeError(f"Unsupported part type: {type(part).__name__}")
    return wire


def to_contents(messages: Sequence[Message]) -> list[Content]:
    contents = []
    for msg in messages:
        parts = to_wire_parts(msg.parts)
        if not parts:
            # The API rejects empty turns; keep the slot so alternation survives.
            parts = [WirePart(text=msg.error_detail or " ")]
        contents.append(Content(role=msg.role.value, parts=parts))
    return contents
