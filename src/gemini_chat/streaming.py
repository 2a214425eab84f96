"""
Streaming client — conversation contexts and incremental generation.

A context holds the remote conversation state for one session, seeded from
prior history and extended with every turn that completes normally. Contexts
are cached per session; the engine may discard them whenever it no longer
trusts them.
"""

import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional, Sequence

from gemini_chat.cancellation import CancellationToken, until_cancelled
from gemini_chat.errors import EmptyTurnError, InvalidHistoryError
from gemini_chat.history import alternation_violation, is_valid_seed, to_contents, to_wire_parts
from gemini_chat.models.message import Message, Part
from gemini_chat.models.wire import Content, GenerateContentRequest, GenerateContentResponse, WirePart
from gemini_chat.transport.http import HttpClient
from gemini_chat.transport.sse import iter_text

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"


class ConversationContext:
    __slots__ = ("session_id", "history")

    def __init__(self, session_id: str, history: Optional[list[Content]] = None):
        self.session_id = session_id
        self.history: list[Content] = list(history or [])

    def record(self, user_turn: Content, reply_text: str) -> None:
        self.history.append(user_turn)
        self.history.append(Content(role="model", parts=[WirePart(text=reply_text or " ")]))

    def __repr__(self) -> str:
        return f"ConversationContext(session_id={self.session_id!r}, turns={len(self.history)})"


class StreamingClient(ABC):
    """Context cache and turn validation; subclasses supply the remote calls."""

    def __init__(self) -> None:
        self._contexts: dict[str, ConversationContext] = {}

    def open_context(self, session_id: str, seed: Sequence[Message] = ()) -> ConversationContext:
        """Open (and cache) a fresh context for a session, seeded with `seed`."""
        if not is_valid_seed(seed):
            reason = alternation_violation(seed) or "history must end with a model turn"
            raise InvalidHistoryError(f"Invalid seed history: {reason}", {"session_id": session_id})
        context = ConversationContext(session_id, to_contents(seed))
        self._contexts[session_id] = context
        return context

    def cached_context(self, session_id: str) -> Optional[ConversationContext]:
        return self._contexts.get(session_id)

    def discard_context(self, session_id: str) -> None:
        self._contexts.pop(session_id, None)

    def clear_contexts(self) -> None:
        self._contexts.clear()

    def send_turn(
        self,
        context: ConversationContext,
        parts: Sequence[Part],
        token: Optional[CancellationToken] = None,
    ) -> AsyncIterator[str]:
        """Send one user turn; returns the reply as an iterator of text fragments.

        Raises EmptyTurnError immediately, before any remote call, when the
        parts carry no text or attachment.
        """
        wire_parts = to_wire_parts(parts)
        if not wire_parts:
            raise EmptyTurnError()
        user_turn = Content(role="user", parts=wire_parts)
        return self._run_turn(context, user_turn, token)

    async def _run_turn(
        self, context: ConversationContext, user_turn: Content, token: Optional[CancellationToken],
    ) -> AsyncIterator[str]:
        received: list[str] = []
        async for fragment in until_cancelled(self._stream(context.history + [user_turn]), token):
            received.append(fragment)
            yield fragment
        if token is None or not token.cancelled:
            context.record(user_turn, "".join(received))

    @abstractmethod
    def _stream(self, contents: list[Content]) -> AsyncIterator[str]:
        ...

    @abstractmethod
    async def generate_text(self, prompt: str) -> str:
        """One-shot, non-streamed generation."""
        ...


class GeminiStreamingClient(StreamingClient):
    def __init__(self, http: HttpClient, model: str = DEFAULT_MODEL):
        super().__init__()
        self._http = http
        self._model = model

    @property
    def model(self) -> str:
        return self._model

    async def _stream(self, contents: list[Content]) -> AsyncIterator[str]:
        request = GenerateContentRequest(contents=contents)
        path = f"/models/{self._model}:streamGenerateContent"
        logger.debug("Streaming %d content(s) to %s", len(contents), self._model)
        async with self._http.stream_lines(
            path, request.model_dump(by_alias=True, exclude_none=True), params={"alt": "sse"},
        ) as lines:
            async for fragment in iter_text(lines):
                yield fragment

    async def generate_text(self, prompt: str) -> str:
        request = GenerateContentRequest(contents=[Content(role="user", parts=[WirePart(text=prompt)])])
        raw = await self._http.post(
            f"/models/{self._model}:generateContent",
            request.model_dump(by_alias=True, exclude_none=True),
        )
        return GenerateContentResponse.model_validate(raw).text
