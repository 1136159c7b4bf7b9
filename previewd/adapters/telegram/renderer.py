"""Event renderer for Telegram.

Subscribes to preview events from the EventBus and renders them as
messages via the MessengerPort interface.
"""
from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from previewd.core.events import (
    EventBus,
    PreviewFailedEvent,
    PreviewProgressEvent,
    PreviewStartedEvent,
    PreviewStoppedEvent,
)

if TYPE_CHECKING:
    from previewd.messenger.port import MessengerPort

logger = logging.getLogger(__name__)


class EventRenderer:
    """Subscribes to EventBus events and renders them to a MessengerPort."""

    def __init__(self, event_bus: EventBus, messenger: MessengerPort) -> None:
        self._bus = event_bus
        self._messenger = messenger
        self._tasks: list[asyncio.Task] = []

    def start(self) -> None:
        """Start background tasks that consume events."""
        self._tasks.append(asyncio.create_task(self._render_progress_events()))
        self._tasks.append(asyncio.create_task(self._render_started_events()))
        self._tasks.append(asyncio.create_task(self._render_failed_events()))
        self._tasks.append(asyncio.create_task(self._render_stopped_events()))

    def stop(self) -> None:
        """Cancel all background tasks."""
        for t in self._tasks:
            t.cancel()
        self._tasks.clear()

    async def _send(self, channel_id: str, text: str, *, silent: bool = False) -> None:
        # Web-originated events carry no chat channel.
        if not channel_id:
            return
        try:
            await self._messenger.send_message(channel_id, text, silent=silent)
        except Exception:
            logger.exception("Failed to send message to %s", channel_id)

    async def _render_progress_events(self) -> None:
        try:
            async for ev in self._bus.iter_events(PreviewProgressEvent):
                await self._send(ev.channel_id, f"⏳ [{ev.alias}] {ev.text}", silent=True)
        except asyncio.CancelledError:
            pass

    async def _render_started_events(self) -> None:
        try:
            async for ev in self._bus.iter_events(PreviewStartedEvent):
                await self._send(
                    ev.channel_id,
                    f"✅ Preview ready: {ev.alias}\n"
                    f"Port: {ev.port}\n"
                    f"URL: {ev.public_url}",
                )
        except asyncio.CancelledError:
            pass

    async def _render_failed_events(self) -> None:
        try:
            async for ev in self._bus.iter_events(PreviewFailedEvent):
                await self._send(
                    ev.channel_id, f"❌ Preview failed to start: {ev.alias}\n{ev.error}",
                )
        except asyncio.CancelledError:
            pass

    async def _render_stopped_events(self) -> None:
        try:
            async for ev in self._bus.iter_events(PreviewStoppedEvent):
                await self._send(ev.channel_id, f"🔴 Preview stopped: {ev.alias}", silent=True)
        except asyncio.CancelledError:
            pass
