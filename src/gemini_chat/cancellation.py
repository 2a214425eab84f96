"""
Cooperative cancellation tokens for streaming calls.
"""

import asyncio
from typing import AsyncIterator, Optional, TypeVar

T = TypeVar("T")


class CancellationToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


async def until_cancelled(source: AsyncIterator[T], token: Optional[CancellationToken]) -> AsyncIterator[T]:
    """Yield from `source` until it ends or `token` fires.

    Each pending read is raced against the token, so a stalled read is
    abandoned as soon as cancellation is requested.
    """
    if token is None:
        async for item in source:
            yield item
        return

    waiter = asyncio.ensure_future(token.wait())
    reader: Optional[asyncio.Future] = None
    try:
        while not token.cancelled:
            reader = asyncio.ensure_future(source.__anext__())
            done, _ = await asyncio.wait({reader, waiter}, return_when=asyncio.FIRST_COMPLETED)
            if reader not in done:
                reader.cancel()
                try:
                    await reader
                except (asyncio.CancelledError, StopAsyncIteration):
                    pass
                return
            try:
                item = reader.result()
            except StopAsyncIteration:
                return
            yield item
    finally:
        waiter.cancel()
        if reader is not None and not reader.done():
            reader.cancel()
        elif hasattr(source, "aclose"):
            # Release whatever the source holds open, e.g. an HTTP response.
            await source.aclose()
