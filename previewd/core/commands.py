"""Command API — the single entry point for all control planes.

Every control plane (Telegram, Web) calls these methods. Commands return
plain dataclasses, never messenger-specific objects.
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
from previewd.storage.directory_store import DirectoryStore, WorkingDirectoryConfig

if TYPE_CHECKING:
    from previewd.core.orchestrator import PreviewOrchestrator
    from previewd.storage.preview_store import PreviewRecord

logger = logging.getLogger(__name__)


class Commands:
    """Facade exposing all user-facing preview operations."""

    def __init__(
        self,
        orchestrator: PreviewOrchestrator,
        directory_store: DirectoryStore,
        event_bus: EventBus | None = None,
    ) -> None:
        self._orch = orchestrator
        self._ds = directory_store
        self._bus = event_bus or EventBus()
        self._background: set[asyncio.Task] = set()

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    def _canonical_alias(self, alias: str) -> str:
        config = self._ds.get(alias)
        return config.alias if config else alias

    # -- Directory commands ------------------------------------------------

    def cmd_list_directories(self) -> list[WorkingDirectoryConfig]:
        return self._ds.list_all()

    def cmd_get_directory(self, alias: str) -> WorkingDirectoryConfig | None:
        return self._ds.get(alias)

    # -- Preview commands --------------------------------------------------

    async def cmd_start_preview(self, alias: str) -> PreviewRecord:
        """Start a preview and wait for its URL.

        Raises ValueError for unknown aliases and PreviewError subclasses
        for lifecycle failures.
        """
        config = self._ds.get(alias)
        if not config:
            raise ValueError(f"Unknown directory alias: {alias}")
        return await self._orch.start(config)

    def cmd_start_preview_background(self, channel_id: str, alias: str) -> tuple[bool, str]:
        """Kick off a preview start and return immediately.

        Progress and the final result are published on the event bus.
        Returns (accepted, message).
        """
        config = self._ds.get(alias)
        if not config:
            return False, f"Unknown directory alias: {alias}"

        task = asyncio.create_task(self._start_and_report(channel_id, config))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return True, (
            f"Starting preview: {config.alias}\n"
            f"The public URL will be posted here when it is ready."
        )

    async def _start_and_report(
        self, channel_id: str, config: WorkingDirectoryConfig,
    ) -> None:
        alias = config.alias

        async def progress(text: str) -> None:
            self._bus.publish(PreviewProgressEvent(channel_id, alias, text))

        try:
            record = await self._orch.start(config, progress=progress)
        except Exception as e:
            logger.error("Background preview start failed for %s: %s", alias, e)
            self._bus.publish(PreviewFailedEvent(channel_id, alias, str(e)))
            return
        self._bus.publish(
            PreviewStartedEvent(channel_id, alias, record.port, record.public_url)
        )

    async def cmd_stop_preview(self, alias: str, channel_id: str = "") -> None:
        """Stop a preview. Raises NotFound if it is not running."""
        alias = self._canonical_alias(alias)
        await self._orch.stop(alias)
        self._bus.publish(PreviewStoppedEvent(channel_id, alias))

    async def cmd_stop_all_previews(self) -> list[tuple[str, Exception]]:
        return await self._orch.stop_all()

    def cmd_preview_status(self, alias: str | None = None) -> list[PreviewRecord]:
        if alias is not None:
            alias = self._canonical_alias(alias)
        return self._orch.get_status(alias)

    async def wait_background(self) -> None:
        """Wait for in-flight background starts (used on shutdown and in tests)."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def cancel_background(self) -> None:
        """Cancel in-flight background starts; each rolls back its processes."""
        for task in list(self._background):
            task.cancel()
        await self.wait_background()
