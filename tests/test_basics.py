"""Basic unit tests for gemini-chat package."""

from gemini_chat import (
    AsyncGeminiChat,
    SessionEngine,
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
    MessageStatus,
    TitleOrigin,
    __version__,
)
from gemini_chat.engine import STOP_MARKER, stopped_text


def test_version():
    assert __version__ == "0.1.0"


def test_public_exports():
    assert AsyncGeminiChat is not None
    assert SessionEngine is not None


def test_error_hierarchy():
    for cls in (
        EmptyEditError, EmptyTurnError, NotEditableError, InvalidHistoryError, TransportError,
        CorruptDataError, SessionNotFoundError, MessageNotFoundError, ConfigError,
    ):
        assert issubclass(cls, GeminiChatError)


def test_error_attributes():
    err = GeminiChatError(code="test_code", message="something broke")
    assert err.code == "test_code"
    assert str(err) == "something broke"
    assert err.details is None

    err_with_details = NotEditableError("model turn", details={"message_id": "123"})
    assert err_with_details.code == "not_editable"
    assert err_with_details.details == {"message_id": "123"}

    transport = TransportError("overloaded", status_code=503)
    assert transport.status_code == 503
    assert transport.details == {"status_code": 503}

    missing = SessionNotFoundError("abc")
    assert missing.session_id == "abc"
    assert "abc" in str(missing)


def test_status_constants():
    assert MessageStatus.CANCELLED == "cancelled"
    assert TitleOrigin.USER == "user"


def test_stopped_text():
    assert stopped_text("Hello ") == "Hello " + STOP_MARKER
    assert stopped_text("") == "(stopped)"
