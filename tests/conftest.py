"""Shared fixtures: a scripted streaming client and in-memory persistence."""

import asyncio
from typing import AsyncIterator, Optional, Union

import pytest
import pytest_asyncio

from gemini_chat.engine import SessionEngine
from gemini_chat.models.wire import Content
from gemini_chat.persistence import MemoryStorage, PersistenceAdapter
from gemini_chat.streaming import StreamingClient


class _Reply:
    __slots__ = ("fragments", "hang", "error")

    def __init__(self, fragments: list[str], hang: bool = False, error: Optional[Exception] = None):
        self.fragments = fragments
        self.hang = hang
        self.error = error


class ScriptedClient(StreamingClient):
    """Streams pre-scripted replies, one per turn, and records what it was sent."""

    def __init__(self) -> None:
        super().__init__()
        self.replies: list[_Reply] = []
        self.opened: list[list[str]] = []
        self.sent: list[list[Content]] = []
        self.title: Union[str, Exception] = "Friendly Greeting"
        self.title_gate: Optional[asyncio.Event] = None
        self.prompts: list[str] = []

    def script(self, *fragments: str, hang: bool = False) -> None:
        self.replies.append(_Reply(list(fragments), hang=hang))

    def script_error(self, error: Exception, *fragments: str) -> None:
        self.replies.append(_Reply(list(fragments), error=error))

    def open_context(self, session_id, seed=()):
        context = super().open_context(session_id, seed)
        self.opened.append([m.role.value for m in seed])
        return context

    async def _stream(self, contents: list[Content]) -> AsyncIterator[str]:
        self.sent.append(contents)
        reply = self.replies.pop(0) if self.replies else _Reply(["ok"])
        for fragment in reply.fragments:
            await asyncio.sleep(0)
            yield fragment
        if reply.error is not None:
            raise reply.error
        if reply.hang:
            await asyncio.Event().wait()

    async def generate_text(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.title_gate is not None:
            await self.title_gate.wait()
        if isinstance(self.title, Exception):
            raise self.title
        return self.title


async def _wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


@pytest.fixture
def wait_until():
    return _wait_until


@pytest.fixture
def client() -> ScriptedClient:
    return ScriptedClient()


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def persistence(storage) -> PersistenceAdapter:
    return PersistenceAdapter(storage, offload=False)


@pytest.fixture
def make_engine(client, persistence):
    async def _make(**kwargs) -> SessionEngine:
        engine = SessionEngine(client, persistence, save_interval=0.0, **kwargs)
        await engine.start()
        return engine
    return _make


@pytest_asyncio.fixture
async def engine(make_engine) -> AsyncIterator[SessionEngine]:
    eng = await make_engine()
    yield eng
    await eng.close()
