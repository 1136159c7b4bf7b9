"""Event Bus and typed event definitions for preview lifecycle notifications.

Background work (chat-initiated starts) reports progress and results as
events. Control planes subscribe and render.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EventBus:
    """Simple in-process asyncio pub/sub event bus.

    Publishers call publish(event). Subscribers receive events via
    subscribe() which returns an asyncio.Queue, or iter_events() for
    convenient async iteration.
    """

    def __init__(self) -> None:
        self._subscribers: dict[type, list[asyncio.Queue]] = {}

    def subscribe(self, event_type: type[T]) -> asyncio.Queue[T]:
        """Subscribe to events of a specific type. Returns a Queue."""
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.setdefault(event_type, []).append(queue)
        return queue

    def unsubscribe(self, event_type: type[T], queue: asyncio.Queue) -> None:
        """Remove a subscription."""
        queues = self._subscribers.get(event_type, [])
        if queue in queues:
            queues.remove(queue)

    def publish(self, event: object) -> None:
        """Publish an event to all subscribers of its type."""
        for queue in self._subscribers.get(type(event), []):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Event queue full, dropping %s", type(event).__name__)

    async def iter_events(self, event_type: type[T]) -> AsyncIterator[T]:
        """Async iterator for events of a specific type."""
        queue = self.subscribe(event_type)
        try:
            while True:
                yield await queue.get()
        finally:
            self.unsubscribe(event_type, queue)


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PreviewProgressEvent:
    """Intermediate step of a preview start (dev server up, tunnel opening)."""
    channel_id: str
    alias: str
    text: str


@dataclass(frozen=True)
class PreviewStartedEvent:
    """A preview finished starting and has a public URL."""
    channel_id: str
    alias: str
    port: int
    public_url: str


@dataclass(frozen=True)
class PreviewFailedEvent:
    """A background preview start failed."""
    channel_id: str
    alias: str
    error: str


@dataclass(frozen=True)
class PreviewStoppedEvent:
    """A preview was stopped."""
    channel_id: str
    alias: str
