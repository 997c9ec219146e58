from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

from .models import DebugEvent

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 64


class Subscription:
    """One subscriber's view of the bus: a bounded queue of events."""

    def __init__(self, bus: "EventBus", capacity: int):
        self._bus = bus
        self._queue: asyncio.Queue[DebugEvent] = asyncio.Queue(maxsize=capacity)
        self.dropped = 0

    def _offer(self, event: DebugEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.debug("subscriber queue full, dropping %s event", event.kind)

    async def get(self) -> DebugEvent:
        return await self._queue.get()

    def get_nowait(self) -> DebugEvent:
        return self._queue.get_nowait()

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        self._bus.unsubscribe(self)

    def __aiter__(self) -> AsyncIterator[DebugEvent]:
        return self._iter()

    async def _iter(self) -> AsyncIterator[DebugEvent]:
        while True:
            yield await self._queue.get()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class EventBus:
    """Fire-and-forget broadcast of DebugEvents.

    ``publish`` never blocks and never raises: each subscriber has its own
    bounded queue and a full queue drops the event for that subscriber only.
    Subscribers only see events published after they subscribe.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        self.capacity = capacity
        self._subscribers: list[Subscription] = []

    def subscribe(self) -> Subscription:
        sub = Subscription(self, self.capacity)
        self._subscribers.append(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        try:
            self._subscribers.remove(sub)
        except ValueError:
            pass

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: DebugEvent) -> None:
        for sub in list(self._subscribers):
            sub._offer(event)
