"""Tests for cancellation tokens."""

import asyncio

import pytest

from gemini_chat.cancellation import CancellationToken, until_cancelled


async def stalled(first: str):
    yield first
    await asyncio.Event().wait()
    yield "never"


async def counted(n: int, closed: list):
    try:
        for i in range(n):
            yield i
    finally:
        closed.append(True)


class TestUntilCancelled:
    @pytest.mark.asyncio
    async def test_without_token_passes_through(self):
        assert [x async for x in until_cancelled(counted(3, []), None)] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_stalled_read_abandoned(self):
        token = CancellationToken()
        received = []

        async def consume():
            async for item in until_cancelled(stalled("first"), token):
                received.append(item)

        task = asyncio.create_task(consume())
        while not received:
            await asyncio.sleep(0)
        assert not token.cancelled
        token.cancel()
        await asyncio.wait_for(task, timeout=1)
        assert received == ["first"]
        assert token.cancelled

    @pytest.mark.asyncio
    async def test_early_stop_closes_source(self):
        token = CancellationToken()
        closed = []
        received = []
        async for item in until_cancelled(counted(10, closed), token):
            received.append(item)
            if item == 1:
                token.cancel()
        assert received == [0, 1]
        assert closed == [True]

    @pytest.mark.asyncio
    async def test_source_errors_propagate(self):
        async def failing():
            yield "a"
            raise RuntimeError("boom")

        token = CancellationToken()
        with pytest.raises(RuntimeError, match="boom"):
            async for _ in until_cancelled(failing(), token):
                pass

    @pytest.mark.asyncio
    async def test_wait(self):
        token = CancellationToken()
        waiter = asyncio.create_task(token.wait())
        await asyncio.sleep(0)
        assert not waiter.done()
        token.cancel()
        await asyncio.wait_for(waiter, timeout=1)
