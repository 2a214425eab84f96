"""
gemini-chat error types.

Validation errors are raised to the caller before any side effect; remote
and storage failures are converted at the engine boundary.
"""

from typing import Any, Optional


class GeminiChatError(Exception):
    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.details = details


class EmptyTurnError(GeminiChatError):
    def __init__(self, message: str = "Cannot send a message with no text or attachments."):
        super().__init__("empty_turn", message)


class EmptyEditError(GeminiChatError):
    def __init__(self, message: str = "Cannot save an empty message."):
        super().__init__("empty_edit", message)


class NotEditableError(GeminiChatError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("not_editable", message, details)


class InvalidHistoryError(GeminiChatError):
    """Seed history does not alternate user/model starting with user."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("invalid_history", message, details)


class TransportError(GeminiChatError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__("transport_error", message, {"status_code": status_code} if status_code else None)
        self.status_code = status_code


class CorruptDataError(GeminiChatError):
    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__("corrupt_data", message, {"key": key} if key else None)
        self.key = key


class SessionNotFoundError(GeminiChatError):
    def __init__(self, session_id: str):
        super().__init__("session_not_found", f"Session not found: {session_id!r}", {"session_id": session_id})
        self.session_id = session_id


class MessageNotFoundError(GeminiChatError):
    def __init__(self, message_id: str):
        super().__init__("message_not_found", f"Message not found: {message_id!r}", {"message_id": message_id})
        self.message_id = message_id


class ConfigError(GeminiChatError):
    def __init__(self, message: str):
        super().__init__("config_error", message)
