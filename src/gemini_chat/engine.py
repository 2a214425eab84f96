"""
Session engine — the single writer of session state.

Turn lifecycle (one in flight per session):
- USER_MESSAGE_APPENDED: user turn stored COMPLETE, model placeholder PENDING
- CONTEXT_VALIDATED: cached remote context reused, reseeded, or opened empty
  when the prior history does not alternate user/model
- STREAMING: fragments concatenated in receipt order into the placeholder
- FINALIZING: placeholder marked COMPLETE / ERRORED / CANCELLED and saved

Every observable change is pushed to subscribers as an EngineSnapshot.
Durable saves follow every transition; during streaming they are throttled
to one per `save_interval` seconds.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Callable, Optional, Sequence

from gemini_chat.cancellation import CancellationToken
from gemini_chat.errors import (
    CorruptDataError,
    EmptyEditError,
    EmptyTurnError,
    InvalidHistoryError,
    MessageNotFoundError,
    NotEditableError,
    SessionNotFoundError,
    TransportError,
)
from gemini_chat.history import is_valid_seed, seed_before, sent_messages
from gemini_chat.models.message import AttachmentPart, Message, MessageStatus, Role, TextPart, utcnow
from gemini_chat.models.session import Session, TitleOrigin
from gemini_chat.models.snapshot import EngineSnapshot
from gemini_chat.persistence import PersistenceAdapter
from gemini_chat.store import NOT_FOUND, SessionStore
from gemini_chat.streaming import ConversationContext, StreamingClient
from gemini_chat.titles import TitleInferenceWorker, provisional_title

logger = logging.getLogger(__name__)

STOP_MARKER = " (stopped)"

Listener = Callable[[EngineSnapshot], None]


class TurnState(str, Enum):
    IDLE = "idle"
    USER_MESSAGE_APPENDED = "user_message_appended"
    CONTEXT_VALIDATED = "context_validated"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    COMPLETE = "complete"
    ERRORED = "errored"
    CANCELLED = "cancelled"


_FINAL_STATES = {
    MessageStatus.COMPLETE: TurnState.COMPLETE,
    MessageStatus.ERRORED: TurnState.ERRORED,
    MessageStatus.CANCELLED: TurnState.CANCELLED,
}


class GenerationHandle:
    """The one in-flight generation of a session."""

    __slots__ = ("session_id", "target_message_id", "token", "accumulated_text", "state", "finished")

    def __init__(self, session_id: str, target_message_id: str):
        self.session_id = session_id
        self.target_message_id = target_message_id
        self.token = CancellationToken()
        self.accumulated_text = ""
        self.state = TurnState.IDLE
        self.finished = asyncio.Event()

    def cancel(self) -> None:
        self.token.cancel()

    def __repr__(self) -> str:
        return f"GenerationHandle(session_id={self.session_id!r}, state={self.state.value})"


def stopped_text(accumulated: str) -> str:
    return accumulated + STOP_MARKER if accumulated else STOP_MARKER.strip()


def _interrupted(message: Message) -> bool:
    return message.role == Role.MODEL and message.in_flight


def _recover_interrupted(session: Session) -> Session:
    """Replies persisted mid-stream cannot resume; keep them as cancelled."""
    if not any(_interrupted(m) for m in session.messages):
        return session
    messages = tuple(
        m.model_copy(update={
            "status": MessageStatus.CANCELLED,
            "parts": (TextPart(text=stopped_text(m.text)),),
        }) if _interrupted(m) else m
        for m in session.messages
    )
    return session.model_copy(update={"messages": messages})


class SessionEngine:
    def __init__(
        self,
        client: StreamingClient,
        persistence: PersistenceAdapter,
        *,
        title_worker: Optional[TitleInferenceWorker] = None,
        save_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._client = client
        self._persistence = persistence
        self._titles = title_worker or TitleInferenceWorker(client)
        self._save_interval = save_interval
        self._clock = clock

        self._store = SessionStore()
        self._active_id: Optional[str] = None
        self._handles: dict[str, GenerationHandle] = {}
        self._title_tasks: dict[str, "asyncio.Task[None]"] = {}
        self._title_marker: Optional[str] = None
        self._listeners: list[Listener] = []
        self._error: Optional[str] = None
        self._last_stream_save = float("-inf")

    # -- read side ---------------------------------------------------------

    @property
    def store(self) -> SessionStore:
        return self._store

    @property
    def active_session_id(self) -> Optional[str]:
        return self._active_id

    def handle_for(self, session_id: str) -> Optional[GenerationHandle]:
        return self._handles.get(session_id)

    def snapshot(self) -> EngineSnapshot:
        active = self._store.get(self._active_id) if self._active_id else NOT_FOUND
        return EngineSnapshot(
            sessions=tuple(self._store.list_sessions_sorted_by_recency()),
            active_session_id=self._active_id,
            current_messages=active.messages if active is not NOT_FOUND else (),
            is_generating=self._active_id in self._handles,
            generating_title_for_session_id=self._title_marker,
            error=self._error,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a snapshot listener. Returns a cleanup function."""
        self._listeners.append(listener)

        def remove() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass
        return remove

    def _publish(self) -> None:
        if not self._listeners:
            return
        snap = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception:
                logger.exception("Snapshot listener failed")

    # -- persistence -------------------------------------------------------

    async def _save_sessions(self) -> None:
        try:
            await self._persistence.save_sessions(self._store.list_sessions_sorted_by_recency())
        except Exception as e:
            logger.exception("Failed to save chat history")
            self._error = f"Failed to save chat history: {e}"
            self._publish()
        else:
            if self._error is not None:
                self._error = None
                self._publish()

    async def _save_active_id(self) -> None:
        try:
            await self._persistence.save_active_id(self._active_id)
        except Exception as e:
            logger.exception("Failed to save active session id")
            self._error = f"Failed to save active session: {e}"
            self._publish()

    async def _save_while_streaming(self) -> None:
        now = self._clock()
        if now - self._last_stream_save >= self._save_interval:
            self._last_stream_save = now
            await self._save_sessions()

    async def start(self) -> None:
        """Load persisted state; corrupt data is discarded rather than fatal."""
        try:
            sessions = await self._persistence.load_sessions()
            active_id = await self._persistence.load_active_id()
        except CorruptDataError as e:
            logger.warning("Discarding corrupt chat data: %s", e)
            await self._persistence.reset()
            sessions, active_id = [], None

        recovered = [_recover_interrupted(s) for s in sessions]
        self._store = SessionStore.from_sessions(recovered)
        logger.info("Loaded %d session(s)", len(self._store))
        if not len(self._store):
            await self.new_session()
            return

        if active_id not in self._store:
            active_id = self._store.list_sessions_sorted_by_recency()[0].id
        self._active_id = active_id
        if recovered != sessions:
            await self._save_sessions()
        await self._save_active_id()
        self._publish()

    async def close(self) -> None:
        """Cancel in-flight generations and background title tasks."""
        for handle in list(self._handles.values()):
            handle.cancel()
        await asyncio.gather(*(h.finished.wait() for h in list(self._handles.values())))
        tasks = list(self._title_tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def wait_for_background(self) -> None:
        """Wait until pending title inference has finished."""
        while self._title_tasks:
            await asyncio.gather(*list(self._title_tasks.values()), return_exceptions=True)

    # -- session management ------------------------------------------------

    async def new_session(self) -> Session:
        self._store, session = self._store.create_session()
        self._active_id = session.id
        logger.info("Created session %s", session.id)
        self._publish()
        await self._save_sessions()
        await self._save_active_id()
        return session

    async def select_session(self, session_id: str) -> Session:
        session = self._store.get(session_id)
        if session is NOT_FOUND:
            raise SessionNotFoundError(session_id)
        self._active_id = session_id
        self._publish()
        await self._save_active_id()
        return session

    async def rename_session(self, session_id: str, title: str) -> Session:
        title = " ".join(title.split())
        if not title:
            raise ValueError("Title must not be empty")
        result = self._store.update_title(session_id, title, TitleOrigin.USER)
        if result is NOT_FOUND:
            raise SessionNotFoundError(session_id)
        self._store = result
        self._publish()
        await self._save_sessions()
        return self._store.get(session_id)

    async def delete_session(self, session_id: str) -> None:
        if session_id not in self._store:
            raise SessionNotFoundError(session_id)
        await self._claim(session_id)
        result = self._store.delete_session(session_id)
        if result is NOT_FOUND:
            raise SessionNotFoundError(session_id)
        self._store = result
        self._client.discard_context(session_id)
        logger.info("Deleted session %s", session_id)

        if self._active_id == session_id:
            remaining = self._store.list_sessions_sorted_by_recency()
            self._active_id = remaining[0].id if remaining else None
            await self._save_active_id()
        self._publish()
        await self._save_sessions()

    async def delete_all(self) -> None:
        for handle in list(self._handles.values()):
            handle.cancel()
        for session_id in list(self._handles):
            await self._claim(session_id)
        self._store = self._store.delete_all()
        self._client.clear_contexts()
        self._active_id = None
        logger.info("Deleted all sessions")
        self._publish()
        await self._save_sessions()
        await self._save_active_id()

    # -- turns -------------------------------------------------------------

    def cancel_generation(self, session_id: Optional[str] = None) -> bool:
        """Request cancellation of the in-flight reply. Returns False if none."""
        handle = self._handles.get(session_id or self._active_id or "")
        if handle is None:
            return False
        logger.info("Cancelling generation in session %s", handle.session_id)
        handle.cancel()
        return True

    async def _claim(self, session_id: str) -> None:
        """Tear down any in-flight generation for the session and wait for it."""
        handle = self._handles.get(session_id)
        while handle is not None:
            handle.cancel()
            await handle.finished.wait()
            handle = self._handles.get(session_id)

    def _register(self, session_id: str, target_message_id: str) -> GenerationHandle:
        handle = GenerationHandle(session_id, target_message_id)
        self._handles[session_id] = handle
        return handle

    def _refresh_provisional_title(self, session_id: str, message: Message) -> None:
        session = self._store.get(session_id)
        if session is NOT_FOUND or session.title_origin == TitleOrigin.USER:
            return
        title = provisional_title(message.text, message.attachments)
        if title:
            self._store = self._store.update_title(session_id, title, TitleOrigin.PROVISIONAL)

    async def submit(self, text: str, attachments: Optional[Sequence[AttachmentPart]] = None) -> Message:
        """Send a user turn in the active session and stream the reply.

        Returns the finalized model message.
        """
        user_message = Message.user(text, list(attachments or []))
        if not user_message.parts:
            raise EmptyTurnError()

        session_id = self._active_id
        if session_id is None or session_id not in self._store:
            session_id = (await self.new_session()).id

        await self._claim(session_id)
        session = self._store.get(session_id)
        if session is NOT_FOUND:
            raise SessionNotFoundError(session_id)

        placeholder = Message.placeholder()
        handle = self._register(session_id, placeholder.id)
        seed = sent_messages(session.messages)
        first_turn = not any(m.role == Role.USER for m in session.messages)

        self._store = self._store.append_message(session_id, user_message)
        self._store = self._store.append_message(session_id, placeholder)
        if first_turn:
            self._refresh_provisional_title(session_id, user_message)
        handle.state = TurnState.USER_MESSAGE_APPENDED
        self._publish()
        return await self._generate(handle, user_message, seed, fresh=False)

    async def edit(self, message_id: str, new_text: str) -> Optional[Message]:
        """Replace a user turn's text and regenerate the reply that followed it.

        Returns the regenerated model message, or None when nothing followed.
        """
        session_id = self._active_id
        session = self._store.get(session_id) if session_id else NOT_FOUND
        if session is NOT_FOUND:
            raise MessageNotFoundError(message_id)
        original = session.find(message_id)
        if original is None:
            raise MessageNotFoundError(message_id)
        if original.role != Role.USER:
            raise NotEditableError("Only user messages can be edited", {"message_id": message_id})
        if not new_text.strip() and not original.attachments:
            raise EmptyEditError()

        await self._claim(session_id)
        session = self._store.get(session_id)
        if session is NOT_FOUND:
            raise SessionNotFoundError(session_id)
        index = session.index_of(message_id)
        if index < 0:
            raise MessageNotFoundError(message_id)

        current = session.messages[index]
        parts: tuple = ((TextPart(text=new_text.strip()),) if new_text.strip() else ()) + current.attachments
        edited = current.model_copy(update={"parts": parts, "timestamp": utcnow()})
        following = session.messages[index + 1] if index + 1 < len(session.messages) else None

        if following is None or following.role != Role.MODEL:
            self._store = self._store.replace_message(session_id, message_id, edited)
            if index == 0:
                self._refresh_provisional_title(session_id, edited)
            logger.info("Edited unanswered message %s", message_id)
            self._publish()
            await self._save_sessions()
            return None

        # Everything after the regeneration target answered the superseded turn.
        target = following.model_copy(update={
            "parts": (),
            "status": MessageStatus.PENDING,
            "error_detail": None,
            "timestamp": utcnow(),
        })
        handle = self._register(session_id, target.id)
        seed = seed_before(session.messages, index)
        self._store = self._store.replace_messages(session_id, session.messages[:index] + (edited, target))
        if index == 0:
            self._refresh_provisional_title(session_id, edited)
        handle.state = TurnState.USER_MESSAGE_APPENDED
        logger.info("Edited message %s; regenerating %s", message_id, target.id)
        self._publish()
        return await self._generate(handle, edited, seed, fresh=True)

    def _resolve_context(self, session_id: str, seed: list[Message], fresh: bool) -> ConversationContext:
        if is_valid_seed(seed):
            cached = None if fresh else self._client.cached_context(session_id)
            if cached is not None:
                logger.debug("Reusing cached context for session %s", session_id)
                return cached
            try:
                return self._client.open_context(session_id, seed)
            except InvalidHistoryError as e:
                logger.warning("Seed rejected for session %s: %s", session_id, e)
        else:
            logger.warning(
                "History of session %s does not alternate; continuing without prior turns", session_id,
            )
        self._client.discard_context(session_id)
        return self._client.open_context(session_id, ())

    def _write_target(self, handle: GenerationHandle, **update: object) -> Optional[Message]:
        session = self._store.get(handle.session_id)
        if session is NOT_FOUND:
            return None
        current = session.find(handle.target_message_id)
        if current is None:
            return None
        message = current.model_copy(update=update)
        result = self._store.replace_message(handle.session_id, handle.target_message_id, message)
        if result is NOT_FOUND:
            return None
        self._store = result
        return message

    async def _generate(
        self, handle: GenerationHandle, user_message: Message, seed: list[Message], fresh: bool,
    ) -> Message:
        session_id = handle.session_id
        status = MessageStatus.COMPLETE
        detail: Optional[str] = None
        try:
            await self._save_sessions()
            context = self._resolve_context(session_id, seed, fresh)
            handle.state = TurnState.CONTEXT_VALIDATED
            stream = self._client.send_turn(context, user_message.parts, handle.token)
            handle.state = TurnState.STREAMING
            async for fragment in stream:
                handle.accumulated_text += fragment
                self._write_target(
                    handle,
                    parts=(TextPart(text=handle.accumulated_text),),
                    status=MessageStatus.STREAMING,
                )
                self._publish()
                await self._save_while_streaming()
            if handle.token.cancelled:
                status = MessageStatus.CANCELLED
        except TransportError as e:
            status, detail = MessageStatus.ERRORED, str(e)
            logger.warning("Generation failed in session %s: %s", session_id, e)
        except asyncio.CancelledError:
            self._finalize(handle, MessageStatus.CANCELLED, None)
            raise
        except Exception as e:
            status, detail = MessageStatus.ERRORED, str(e) or type(e).__name__
            logger.exception("Unexpected failure while generating in session %s", session_id)

        final = self._finalize(handle, status, detail)
        await self._save_sessions()
        if status == MessageStatus.COMPLETE:
            self._maybe_launch_title(session_id)
        return final

    def _finalize(self, handle: GenerationHandle, status: MessageStatus, detail: Optional[str]) -> Message:
        handle.state = TurnState.FINALIZING
        text = handle.accumulated_text
        if status == MessageStatus.CANCELLED:
            text = stopped_text(text)
        elif status == MessageStatus.ERRORED:
            text = f"{text}\n\nError: {detail}" if text else f"Error: {detail}"
        final = self._write_target(
            handle,
            parts=(TextPart(text=text),) if text else (),
            status=status,
            error_detail=detail,
            timestamp=utcnow(),
        )
        if status != MessageStatus.COMPLETE:
            # The remote context never saw this reply completed; reseed next time.
            self._client.discard_context(handle.session_id)
        handle.state = _FINAL_STATES[status]
        if self._handles.get(handle.session_id) is handle:
            del self._handles[handle.session_id]
        handle.finished.set()
        logger.info("Reply %s in session %s finished: %s", handle.target_message_id, handle.session_id, status.value)
        self._publish()
        if final is None:
            return Message(id=handle.target_message_id, role=Role.MODEL, parts=(TextPart(text=text),),
                           status=status, error_detail=detail)
        return final

    # -- title inference ---------------------------------------------------

    def _maybe_launch_title(self, session_id: str) -> None:
        session = self._store.get(session_id)
        if session is NOT_FOUND or not session.has_auto_title or session_id in self._title_tasks:
            return
        answers = [m for m in session.messages if m.role == Role.MODEL and m.status == MessageStatus.COMPLETE]
        if len(answers) != 1:
            return
        first_user = next((m for m in session.messages if m.role == Role.USER), None)
        if first_user is None:
            return
        user_text = first_user.text or provisional_title("", first_user.attachments) or ""
        self._title_marker = session_id
        self._title_tasks[session_id] = asyncio.create_task(
            self._infer_title(session_id, user_text, answers[0].text)
        )
        self._publish()

    async def _infer_title(self, session_id: str, user_text: str, model_text: str) -> None:
        try:
            title = await self._titles.infer(user_text, model_text)
            if title is None:
                return
            session = self._store.get(session_id)
            if session is NOT_FOUND or not session.has_auto_title:
                logger.debug("Dropping inferred title for session %s", session_id)
                return
            result = self._store.update_title(session_id, title, TitleOrigin.INFERRED)
            if result is NOT_FOUND:
                return
            self._store = result
            logger.info("Session %s titled %r", session_id, title)
            self._publish()
            await self._save_sessions()
        except Exception:
            logger.exception("Title inference crashed for session %s", session_id)
        finally:
            self._title_tasks.pop(session_id, None)
            if self._title_marker == session_id:
                self._title_marker = None
            self._publish()
