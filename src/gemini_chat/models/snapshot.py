"""
UI-facing engine snapshot.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict

from gemini_chat.models.message import Message
from gemini_chat.models.session import Session


class EngineSnapshot(BaseModel):
    """Everything a UI needs to render, published after every state change."""
    model_config = ConfigDict(frozen=True)

    sessions: tuple[Session, ...] = ()
    active_session_id: Optional[str] = None
    current_messages: tuple[Message, ...] = ()
    is_generating: bool = False
    generating_title_for_session_id: Optional[str] = None
    error: Optional[str] = None
