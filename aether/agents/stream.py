"""Single-consumer event channel between a running turn and its streaming caller."""

import asyncio

from aether.models.events import ChatEvent

_CLOSED = object()


class EventChannel:
    """Unbounded queue of ChatEvents, iterable until close() is called."""

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def put(self, event: ChatEvent) -> None:
        if self._closed:
            raise RuntimeError("Event channel is closed")
        self._queue.put_nowait(event)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> "EventChannel":
        return self

    async def __anext__(self) -> ChatEvent:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item
