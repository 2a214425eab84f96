"""
Message & Session store — pure, immutable snapshots.

Every mutation returns a new SessionStore; the receiver is left untouched so
readers holding an older store never observe a half-applied change. Missing
ids are reported with the NOT_FOUND sentinel instead of an exception, since
background writers routinely race with session deletion.
"""

from __future__ import annotations

from datetime import datetime
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Union

from gemini_chat.models.message import Message, utcnow
from gemini_chat.models.session import PLACEHOLDER_TITLE, Session, TitleOrigin


class NotFound:
    _instance: Optional[NotFound] = None

    def __new__(cls) -> NotFound:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NOT_FOUND"


NOT_FOUND = NotFound()

StoreResult = Union["SessionStore", NotFound]


def _recency_key(session: Session) -> tuple[datetime, datetime]:
    return (session.last_updated_at, session.created_at)


class SessionStore:
    __slots__ = ("_sessions",)

    def __init__(self, sessions: Optional[Mapping[str, Session]] = None):
        self._sessions = MappingProxyType(dict(sessions or {}))

    @classmethod
    def from_sessions(cls, sessions: Iterable[Session]) -> SessionStore:
        return cls({s.id: s for s in sessions})

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def get(self, session_id: str) -> Union[Session, NotFound]:
        return self._sessions.get(session_id, NOT_FOUND)

    def _with(self, session: Session) -> SessionStore:
        sessions = dict(self._sessions)
        sessions[session.id] = session
        return SessionStore(sessions)

    def create_session(
        self,
        title: str = PLACEHOLDER_TITLE,
        now: Optional[datetime] = None,
    ) -> tuple[SessionStore, Session]:
        now = now or utcnow()
        session = Session(title=title, created_at=now, last_updated_at=now)
        return self._with(session), session

    def append_message(self, session_id: str, message: Message, now: Optional[datetime] = None) -> StoreResult:
        session = self._sessions.get(session_id)
        if session is None:
            return NOT_FOUND
        if session.index_of(message.id) >= 0:
            raise ValueError(f"Duplicate message id {message.id!r} in session {session_id!r}")
        return self._with(session.model_copy(update={
            "messages": session.messages + (message,),
            "last_updated_at": now or utcnow(),
        }))

    def replace_message(
        self, session_id: str, message_id: str, message: Message, now: Optional[datetime] = None,
    ) -> StoreResult:
        """Swap the message with `message_id` for `message`, keeping its position."""
        session = self._sessions.get(session_id)
        if session is None:
            return NOT_FOUND
        i = session.index_of(message_id)
        if i < 0:
            return NOT_FOUND
        messages = session.messages[:i] + (message,) + session.messages[i + 1:]
        return self._with(session.model_copy(update={
            "messages": messages,
            "last_updated_at": now or utcnow(),
        }))

    def replace_messages(
        self, session_id: str, messages: Iterable[Message], now: Optional[datetime] = None,
    ) -> StoreResult:
        session = self._sessions.get(session_id)
        if session is None:
            return NOT_FOUND
        messages = tuple(messages)
        if len({m.id for m in messages}) != len(messages):
            raise ValueError(f"Duplicate message ids in session {session_id!r}")
        return self._with(session.model_copy(update={
            "messages": messages,
            "last_updated_at": now or utcnow(),
        }))

    def update_title(self, session_id: str, title: str, origin: TitleOrigin) -> StoreResult:
        # Title changes do not count as activity; recency order is left alone.
        session = self._sessions.get(session_id)
        if session is None:
            return NOT_FOUND
        return self._with(session.model_copy(update={"title": title, "title_origin": origin}))

    def delete_session(self, session_id: str) -> StoreResult:
        if session_id not in self._sessions:
            return NOT_FOUND
        sessions = dict(self._sessions)
        del sessions[session_id]
        return SessionStore(sessions)

    def delete_all(self) -> SessionStore:
        return SessionStore()

    def list_sessions_sorted_by_recency(self) -> list[Session]:
        return sorted(self._sessions.values(), key=_recency_key, reverse=True)
