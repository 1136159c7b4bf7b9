from __future__ import annotations

import asyncio
import dataclasses
import logging

import pytest

from previewd.core.events import (
    EventBus,
    PreviewFailedEvent,
    PreviewStartedEvent,
    PreviewStoppedEvent,
)


def _started(alias: str = "web") -> PreviewStartedEvent:
    return PreviewStartedEvent("general", alias, 3000, f"https://{alias}.trycloudflare.com")


class TestEventBus:
    def test_subscribe_and_publish(self):
        bus = EventBus()
        queue = bus.subscribe(PreviewStartedEvent)
        bus.publish(_started())
        assert queue.get_nowait().public_url == "https://web.trycloudflare.com"

    def test_every_subscriber_gets_a_copy(self):
        bus = EventBus()
        renderer_q = bus.subscribe(PreviewStartedEvent)
        audit_q = bus.subscribe(PreviewStartedEvent)
        bus.publish(_started())
        assert renderer_q.get_nowait() is audit_q.get_nowait()

    def test_publish_without_subscribers(self):
        EventBus().publish(PreviewStoppedEvent("general", "web"))

    def test_types_are_isolated(self):
        bus = EventBus()
        started = bus.subscribe(PreviewStartedEvent)
        failed = bus.subscribe(PreviewFailedEvent)
        bus.publish(PreviewFailedEvent("general", "web", "Port 3000 is already in use."))
        assert started.empty()
        assert failed.get_nowait().error.startswith("Port 3000")

    def test_unsubscribe(self):
        bus = EventBus()
        queue = bus.subscribe(PreviewStoppedEvent)
        bus.unsubscribe(PreviewStoppedEvent, queue)
        bus.unsubscribe(PreviewStoppedEvent, asyncio.Queue())  # unknown queue is ignored
        bus.publish(PreviewStoppedEvent("general", "web"))
        assert queue.empty()

    def test_full_queue_drops_with_warning(self, caplog):
        bus = EventBus()
        bus._subscribers[PreviewStoppedEvent] = [asyncio.Queue(maxsize=1)]
        bus.publish(PreviewStoppedEvent("general", "a"))
        with caplog.at_level(logging.WARNING):
            bus.publish(PreviewStoppedEvent("general", "b"))
        assert "PreviewStoppedEvent" in caplog.text

    async def test_iter_events_in_order(self):
        bus = EventBus()
        received: list[str] = []

        async def consumer():
            async for ev in bus.iter_events(PreviewStartedEvent):
                received.append(ev.alias)
                if len(received) == 2:
                    break

        task = asyncio.create_task(consumer())
        await asyncio.sleep(0.01)
        bus.publish(_started("a"))
        bus.publish(_started("b"))
        await task

        assert received == ["a", "b"]

    async def test_iter_events_unsubscribes_on_cancel(self):
        bus = EventBus()

        async def consumer():
            async for _ in bus.iter_events(PreviewFailedEvent):
                pass

        task = asyncio.create_task(consumer())
        await asyncio.sleep(0.01)
        assert len(bus._subscribers[PreviewFailedEvent]) == 1

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert bus._subscribers[PreviewFailedEvent] == []


def test_events_are_immutable():
    with pytest.raises(dataclasses.FrozenInstanceError):
        _started().port = 4000
