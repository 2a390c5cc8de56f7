"""Outward streams for sessions and backends.

A Channel buffers everything put into it until a consumer reads it, so
messages produced before anyone starts iterating are never lost. Closing
a channel lets consumers drain what is buffered and then stop.

Broadcast fans a single producer out to many channels and can replay a
bounded history to late subscribers (used for stderr lines).
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import AsyncIterator
from typing import Generic, TypeVar

T = TypeVar("T")

_CLOSED = object()


class ChannelClosed(Exception):
    """Raised by Channel.get() once the channel is closed and drained."""


class Channel(Generic[T]):
    """Unbounded, closeable, single-consumer async stream."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def put(self, item: T) -> bool:
        """Append an item. Returns False (and drops the item) once closed."""
        if self._closed:
            return False
        self._queue.put_nowait(item)
        return True

    def close(self) -> None:
        """Close the channel. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    def pending(self) -> int:
        """Number of buffered items not yet consumed."""
        size = self._queue.qsize()
        return size - 1 if self._closed and size else size

    async def get(self) -> T:
        item = await self._queue.get()
        if item is _CLOSED:
            # Keep the marker for any other waiter
            self._queue.put_nowait(_CLOSED)
            raise ChannelClosed()
        return item  # type: ignore[return-value]

    def get_nowait(self) -> T:
        """Return the next buffered item or raise asyncio.QueueEmpty."""
        item = self._queue.get_nowait()
        if item is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            raise ChannelClosed()
        return item  # type: ignore[return-value]

    def __aiter__(self) -> AsyncIterator[T]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[T]:
        while True:
            try:
                yield await self.get()
            except ChannelClosed:
                return


class Broadcast(Generic[T]):
    """Fan-out of one producer to any number of Channel subscribers."""

    def __init__(self, history: int = 0) -> None:
        self._subscribers: list[Channel[T]] = []
        self._history: deque[T] = deque(maxlen=history)
        self._closed = False

    @property
    def history(self) -> list[T]:
        return list(self._history)

    def subscribe(self, replay: bool = True) -> Channel[T]:
        channel: Channel[T] = Channel()
        if replay:
            for item in self._history:
                channel.put(item)
        if self._closed:
            channel.close()
        else:
            self._subscribers.append(channel)
        return channel

    def unsubscribe(self, channel: Channel[T]) -> None:
        if channel in self._subscribers:
            self._subscribers.remove(channel)
        channel.close()

    def publish(self, item: T) -> None:
        if self._closed:
            return
        self._history.append(item)
        for channel in list(self._subscribers):
            channel.put(item)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for channel in self._subscribers:
            channel.close()
        self._subscribers.clear()
