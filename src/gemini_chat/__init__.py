"""
gemini-chat — multi-session chat client for Gemini.

Named sessions, attachments, edit-and-regenerate and cancellable streaming,
persisted locally after every change.
"""

from gemini_chat.client import AsyncGeminiChat
from gemini_chat.config import Settings, load_settings
from gemini_chat.engine import SessionEngine, TurnState
from gemini_chat.errors import (
    GeminiChatError,
    EmptyEditError,
    EmptyTurnError,
    NotEditableError,
    InvalidHistoryError,
    TransportError,
    CorruptDataError,
    SessionNotFoundError,
    MessageNotFoundError,
    ConfigError,
)
from gemini_chat.models.message import AttachmentPart, Message, MessageStatus, Role, TextPart
from gemini_chat.models.session import Session, TitleOrigin
from gemini_chat.models.snapshot import EngineSnapshot

__version__ = "0.1.0"
__all__ = [
    "AsyncGeminiChat",
    "Settings",
    "load_settings",
    "SessionEngine",
    "TurnState",
    "GeminiChatError",
    "EmptyEditError",
    "EmptyTurnError",
    "NotEditableError",
    "InvalidHistoryError",
    "TransportError",
    "CorruptDataError",
    "SessionNotFoundError",
    "MessageNotFoundError",
    "ConfigError",
    "AttachmentPart",
    "Message",
    "MessageStatus",
    "Role",
    "TextPart",
    "Session",
    "TitleOrigin",
    "EngineSnapshot",
]
