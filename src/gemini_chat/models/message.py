"""
Message models — turns and their content parts.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    USER = "user"
    MODEL = "model"


class MessageStatus(str, Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETE = "complete"
    ERRORED = "errored"
    CANCELLED = "cancelled"


IN_FLIGHT_STATUSES = {MessageStatus.PENDING, MessageStatus.STREAMING}


class TextPart(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    text: str


class AttachmentPart(BaseModel):
    """Inline file payload; `data` is bare base64 without a data-URL prefix."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["attachment"] = "attachment"
    mime_type: str
    name: str = ""
    data: str

    @field_validator("data")
    @classmethod
    def _strip_data_url(cls, value: str) -> str:
        if value.startswith("data:") and "," in value:
            return value.split(",", 1)[1]
        return value


Part = Annotated[Union[TextPart, AttachmentPart], Field(discriminator="kind")]


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    role: Role
    parts: tuple[Part, ...] = ()
    timestamp: datetime = Field(default_factory=utcnow)
    status: MessageStatus = MessageStatus.COMPLETE
    error_detail: Optional[str] = None

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    @property
    def attachments(self) -> tuple[AttachmentPart, ...]:
        return tuple(p for p in self.parts if isinstance(p, AttachmentPart))

    @property
    def in_flight(self) -> bool:
        return self.status in IN_FLIGHT_STATUSES

    @classmethod
    def user(cls, text: str, attachments: Optional[list[AttachmentPart]] = None) -> Message:
        parts: list[Union[TextPart, AttachmentPart]] = []
        if text.strip():
            parts.append(TextPart(text=text.strip()))
        parts.extend(attachments or [])
        return cls(role=Role.USER, parts=tuple(parts))

    @classmethod
    def placeholder(cls, message_id: Optional[str] = None) -> Message:
        return cls(id=message_id or new_id(), role=Role.MODEL, status=MessageStatus.PENDING)
