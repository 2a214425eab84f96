"""
Session models.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from gemini_chat.models.message import Message, new_id, utcnow

PLACEHOLDER_TITLE = "New Chat"


class TitleOrigin(str, Enum):
    PLACEHOLDER = "placeholder"
    PROVISIONAL = "provisional"
    INFERRED = "inferred"
    USER = "user"


AUTO_TITLE_ORIGINS = {TitleOrigin.PLACEHOLDER, TitleOrigin.PROVISIONAL}


class Session(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    title: str = PLACEHOLDER_TITLE
    title_origin: TitleOrigin = TitleOrigin.PLACEHOLDER
    messages: tuple[Message, ...] = ()
    created_at: datetime = Field(default_factory=utcnow)
    last_updated_at: datetime = Field(default_factory=utcnow)

    @property
    def has_auto_title(self) -> bool:
        return self.title_origin in AUTO_TITLE_ORIGINS

    def index_of(self, message_id: str) -> int:
        """Position of a message, or -1."""
        for i, msg in enumerate(self.messages):
            if msg.id == message_id:
                return i
        return -1

    def find(self, message_id: str) -> Optional[Message]:
        i = self.index_of(message_id)
        return self.messages[i] if i >= 0 else None
