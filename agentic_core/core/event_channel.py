"""
Event Channel — single-producer event stream between the loop and an observer.

The loop is the only producer and must never block on a slow consumer:
``send`` is synchronous and never waits. Lifecycle events are always
queued; heartbeats are dropped once ``heartbeat_capacity`` events are
pending, since they carry nothing but timing.

Usage::

    channel = EventChannel()
    task = asyncio.create_task(loop.process(messages, channel))
    async for event in channel:
        render(event)
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Callable, Optional

from .stream_events import AgentUpdate, Heartbeat

logger = logging.getLogger(__name__)

_CLOSED = object()

EventSink = Callable[[AgentUpdate], None]


class EventChannel:
    """Non-blocking, closeable queue of AgentUpdate events."""

    def __init__(self, heartbeat_capacity: int = 64):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._heartbeat_capacity = heartbeat_capacity
        self._closed = False
        self.dropped_heartbeats = 0

    def __call__(self, event: AgentUpdate) -> None:
        self.send(event)

    @property
    def closed(self) -> bool:
        return self._closed

    def pending(self) -> int:
        return self._queue.qsize()

    def send(self, event: AgentUpdate) -> bool:
        """Queue an event. Returns False when it was dropped."""
        if self._closed:
            logger.debug(f"Event sent after close, dropped: {event.event_type}")
            return False
        if isinstance(event, Heartbeat) and self._queue.qsize() >= self._heartbeat_capacity:
            self.dropped_heartbeats += 1
            return False
        self._queue.put_nowait(event)
        return True

    def heartbeat(self, turn_id: str) -> bool:
        return self.send(Heartbeat(turn_id=turn_id))

    def close(self) -> None:
        """Mark the end of the stream; pending events are still delivered."""
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    async def receive(self, timeout: Optional[float] = None) -> Optional[AgentUpdate]:
        """Next event, or None once the channel is closed and drained."""
        if timeout is None:
            item = await self._queue.get()
        else:
            item = await asyncio.wait_for(self._queue.get(), timeout=timeout)
        if item is _CLOSED:
            # Keep the sentinel so further receivers also see end-of-stream
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    def drain(self) -> list[AgentUpdate]:
        """Return every event currently queued without waiting."""
        events = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is _CLOSED:
                self._queue.put_nowait(_CLOSED)
                break
            events.append(item)
        return events

    async def __aiter__(self) -> AsyncIterator[AgentUpdate]:
        while True:
            event = await self.receive()
            if event is None:
                return
            yield event
