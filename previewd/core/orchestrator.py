"""Preview orchestrator — the lifecycle owner of dev-server + tunnel pairs.

Per alias the lifecycle is::

    ABSENT -> STARTING -> RUNNING -> STOPPING -> ABSENT

A failure while STARTING goes straight back to ABSENT and never leaves a
record behind. The persisted record is authoritative; in-memory state only
tracks the transient STARTING/STOPPING phases.
"""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable

from previewd.capabilities.tunnel.base import TunnelLauncher
from previewd.core.errors import (
    AlreadyRunning,
    DevServerExited,
    MissingStartCommand,
    NotFound,
    PortInUse,
)
from previewd.core.port_probe import PortProbe
from previewd.core.process_supervisor import ProcessHandle, ProcessSupervisor
from previewd.storage.directory_store import WorkingDirectoryConfig
from previewd.storage.preview_store import PreviewRecord, PreviewRecordStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], Awaitable[None]]

PORT_OPEN_TIMEOUT = 30.0
TUNNEL_URL_TIMEOUT = 30.0
PORT_RELEASE_TIMEOUT = 5.0


class PreviewState(Enum):
    ABSENT = "absent"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class PreviewOrchestrator:
    """Starts, stops and reconciles previews.

    Operations on the same alias are serialized with a per-alias lock;
    different aliases never wait on each other.
    """

    def __init__(
        self,
        store: PreviewRecordStore,
        supervisor: ProcessSupervisor,
        tunnel: TunnelLauncher,
        probe: PortProbe | None = None,
        *,
        port_open_timeout: float = PORT_OPEN_TIMEOUT,
        tunnel_timeout: float = TUNNEL_URL_TIMEOUT,
        port_release_timeout: float = PORT_RELEASE_TIMEOUT,
    ) -> None:
        self._store = store
        self._supervisor = supervisor
        self._tunnel = tunnel
        self._probe = probe or PortProbe()
        self._port_open_timeout = port_open_timeout
        self._tunnel_timeout = tunnel_timeout
        self._port_release_timeout = port_release_timeout
        self._locks: dict[str, asyncio.Lock] = {}
        self._transient: dict[str, PreviewState] = {}

    def _lock(self, alias: str) -> asyncio.Lock:
        return self._locks.setdefault(alias, asyncio.Lock())

    def state(self, alias: str) -> PreviewState:
        if alias in self._transient:
            return self._transient[alias]
        if self._store.find_by_alias(alias):
            return PreviewState.RUNNING
        return PreviewState.ABSENT

    # -- start -------------------------------------------------------------

    async def start(
        self,
        config: WorkingDirectoryConfig,
        progress: ProgressCallback | None = None,
    ) -> PreviewRecord:
        """Start dev server + tunnel for *config*. Returns the new record."""
        async with self._lock(config.alias):
            alias = config.alias
            if self._store.find_by_alias(alias):
                raise AlreadyRunning(alias)
            if not config.start_cmd:
                raise MissingStartCommand(alias)

            self._transient[alias] = PreviewState.STARTING
            try:
                record = await self._launch(config, config.resolved_port, progress)
            finally:
                self._transient.pop(alias, None)

        logger.info("Preview %s running on port %d: %s", alias, record.port, record.public_url)
        return record

    async def _launch(
        self,
        config: WorkingDirectoryConfig,
        port: int,
        progress: ProgressCallback | None,
    ) -> PreviewRecord:
        alias = config.alias
        await self._claim_port(alias, port, progress)

        await self._notify(progress, f"Starting dev server: {config.start_cmd}")
        local = await self._supervisor.spawn(
            config.start_cmd, cwd=config.path, label=f"preview:{alias}",
        )
        spawned = [local.pid]
        try:
            await self._wait_for_dev_server(alias, local, port)

            kind = self._tunnel.tunnel_type
            await self._notify(progress, f"Port {port} is up, opening {kind} tunnel...")
            logger.info("Opening %s tunnel for %s on port %d", kind, alias, port)
            tunnel = await self._tunnel.start(port, self._tunnel_timeout)
            spawned.insert(0, tunnel.pid)

            record = PreviewRecord(
                alias=alias,
                local_pid=local.pid,
                tunnel_pid=tunnel.pid,
                port=port,
                public_url=tunnel.url,
            )
            return self._store.create(record)
        except BaseException as e:
            logger.warning("Preview %s failed to start (%s), rolling back", alias, e)
            for pid in spawned:
                try:
                    await self._supervisor.terminate(pid)
                except Exception:
                    logger.exception("Failed to terminate PID %d during rollback", pid)
            raise

    async def _claim_port(
        self, alias: str, port: int, progress: ProgressCallback | None,
    ) -> None:
        """Make *port* bindable, stopping another managed preview if it holds it."""
        if self._probe.is_available(port):
            return

        holders = [r for r in self._store.find_by_port(port) if r.alias != alias]
        if not holders:
            raise PortInUse(port)

        for other in holders:
            logger.info("Port %d is held by preview %s, stopping it", port, other.alias)
            await self._notify(progress, f"Port {port} is used by {other.alias}, stopping it...")
            try:
                await self.stop(other.alias)
            except NotFound:
                pass
        await self._probe.wait_until_released(port, self._port_release_timeout)

    async def _wait_for_dev_server(
        self, alias: str, handle: ProcessHandle, port: int,
    ) -> None:
        opened = asyncio.ensure_future(
            self._probe.wait_until_open(port, self._port_open_timeout)
        )
        exited = asyncio.ensure_future(handle.process.wait())
        try:
            done, _ = await asyncio.wait(
                {opened, exited}, return_when=asyncio.FIRST_COMPLETED,
            )
            if opened in done:
                opened.result()
                return
            raise DevServerExited(alias, handle.returncode)
        finally:
            for fut in (opened, exited):
                if not fut.done():
                    fut.cancel()

    # -- stop --------------------------------------------------------------

    async def stop(self, alias: str) -> None:
        """Stop the preview for *alias*: tunnel first, then the dev server."""
        if alias not in self._locks and not self._store.find_by_alias(alias):
            # nothing running or in flight; avoid creating a lock per unknown name
            raise NotFound(alias)
        async with self._lock(alias):
            record = self._store.find_by_alias(alias)
            if not record:
                raise NotFound(alias)

            self._transient[alias] = PreviewState.STOPPING
            try:
                await self._supervisor.terminate(record.tunnel_pid)
                await self._supervisor.terminate(record.local_pid)
                self._store.delete(alias)
            finally:
                self._transient.pop(alias, None)
        logger.info("Preview %s stopped", alias)

    async def stop_all(self) -> list[tuple[str, Exception]]:
        """Stop every preview. Failures are logged and returned, never raised."""
        failures: list[tuple[str, Exception]] = []
        for record in self._store.find_all():
            try:
                await self.stop(record.alias)
            except Exception as e:
                logger.error("Failed to stop preview %s: %s", record.alias, e)
                failures.append((record.alias, e))
        return failures

    # -- status / reconciliation ---------------------------------------------

    def get_status(self, alias: str | None = None) -> list[PreviewRecord]:
        if alias is not None:
            record = self._store.find_by_alias(alias)
            return [record] if record else []
        return self._store.find_all()

    async def cleanup_orphans(self) -> list[str]:
        """Drop records whose dev server or tunnel is no longer running.

        Run once at startup: records survive a host restart, processes
        may not. Surviving halves are left alone since their pid may have
        been reused by an unrelated process.
        """
        removed: list[str] = []
        for record in self._store.find_all():
            async with self._lock(record.alias):
                local_alive = await self._supervisor.is_alive(record.local_pid)
                tunnel_alive = await self._supervisor.is_alive(record.tunnel_pid)
                if local_alive and tunnel_alive:
                    continue
                logger.warning(
                    "Removing orphaned preview %s (dev-server alive=%s, tunnel alive=%s)",
                    record.alias, local_alive, tunnel_alive,
                )
                self._store.delete(record.alias)
                removed.append(record.alias)
        if removed:
            logger.info("Cleaned up %d orphaned preview(s)", len(removed))
        return removed

    # ------------------------------------------------------------------

    @staticmethod
    async def _notify(progress: ProgressCallback | None, text: str) -> None:
        if progress is None:
            return
        try:
            await progress(text)
        except Exception:
            logger.warning("Progress callback failed", exc_info=True)
