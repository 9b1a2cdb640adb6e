import asyncio
from typing import AsyncIterator

from .config import DEFAULT_TRANSPORT_BUFFER
from .errors import TransportClosed


_END = object()


class FragmentTransport:
    """Ordered single-producer/single-consumer hand-off of fragment bytes.

    Backed by a bounded ``asyncio.Queue``: the producer suspends when
    ``maxsize`` fragments are waiting, the consumer suspends when none are.
    ``close()`` queues an end marker behind everything already pushed, so
    the consumer sees every fragment before the stream ends. If the
    consumer calls ``abandon()`` (it stopped early), pushes raise
    :class:`TransportClosed` instead of blocking forever.
    """

    def __init__(self, maxsize: int = DEFAULT_TRANSPORT_BUFFER):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._abandoned = asyncio.Event()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def abandoned(self) -> bool:
        return self._abandoned.is_set()

    def qsize(self) -> int:
        return self._queue.qsize()

    async def push(self, fragment: bytes) -> None:
        if self._closed:
            raise TransportClosed("push after close")
        if self._abandoned.is_set():
            raise TransportClosed("consumer has gone away")
        try:
            self._queue.put_nowait(fragment)
            return
        except asyncio.QueueFull:
            pass

        put = asyncio.ensure_future(self._queue.put(fragment))
        gone = asyncio.ensure_future(self._abandoned.wait())
        try:
            await asyncio.wait({put, gone}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            gone.cancel()
            if not put.done():
                put.cancel()
        if put.cancelled() or not put.done():
            raise TransportClosed("consumer has gone away")

    async def close(self) -> None:
        """Signal end of input. Pending fragments are still delivered."""
        if self._closed:
            return
        self._closed = True
        if self._abandoned.is_set():
            return
        put = asyncio.ensure_future(self._queue.put(_END))
        gone = asyncio.ensure_future(self._abandoned.wait())
        try:
            await asyncio.wait({put, gone}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            gone.cancel()
            if not put.done():
                put.cancel()

    def abandon(self) -> None:
        """Called by the consumer when it stops before end of stream."""
        self._abandoned.set()

    async def pull(self) -> bytes:
        """Next fragment in push order; raises ``StopAsyncIteration`` at end of stream."""
        item = await self._queue.get()
        if item is _END:
            raise StopAsyncIteration
        return item

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self

    async def __anext__(self) -> bytes:
        return await self.pull()
