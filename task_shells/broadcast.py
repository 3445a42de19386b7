from __future__ import annotations

import asyncio
from asyncio import Queue as AsyncQueue
from typing import List, Optional

from .config import BROADCAST_CAPACITY


class OutputBroadcast:
    """Bounded fan-out of PTY output chunks to live viewers.

    Each subscriber owns a queue of at most ``capacity`` chunks. When a queue is
    full the oldest pending chunk is dropped, so a slow viewer never blocks the
    producer. ``None`` marks the end of the stream.
    """

    def __init__(self, capacity: int = BROADCAST_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._subscribers: List[AsyncQueue[Optional[bytes]]] = []
        self.closed = False

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> AsyncQueue[Optional[bytes]]:
        q: AsyncQueue[Optional[bytes]] = AsyncQueue(maxsize=self.capacity)
        if self.closed:
            q.put_nowait(None)
            return q
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: AsyncQueue[Optional[bytes]]) -> None:
        try:
            self._subscribers.remove(q)
        except ValueError:
            pass

    def publish(self, chunk: bytes) -> int:
        """Deliver ``chunk`` to every subscriber. Returns the number reached."""
        if self.closed:
            return 0
        for q in list(self._subscribers):
            self._offer(q, chunk)
        return len(self._subscribers)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        for q in self._subscribers:
            self._offer(q, None)
        self._subscribers.clear()

    @staticmethod
    def _offer(q: AsyncQueue[Optional[bytes]], item: Optional[bytes]) -> None:
        while True:
            try:
                q.put_nowait(item)
                return
            except asyncio.QueueFull:
                try:
                    q.get_nowait()
                except asyncio.QueueEmpty:
                    pass
