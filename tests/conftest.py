from __future__ import annotations

import asyncio
import itertools
from pathlib import Path

import pytest

from previewd.capabilities.tunnel.base import TunnelHandle
from previewd.core.errors import PortReleaseTimeout, PortWaitTimeout
from previewd.core.orchestrator import PreviewOrchestrator
from previewd.core.process_supervisor import ProcessHandle
from previewd.storage.preview_store import PreviewRecordStore


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """Provide an isolated data directory for stores."""
    d = tmp_path / "data"
    d.mkdir()
    return d


class FakeProcess:
    def __init__(self) -> None:
        self.returncode: int | None = None
        self._exited = asyncio.Event()

    async def wait(self) -> int | None:
        await self._exited.wait()
        return self.returncode

    def exit(self, code: int) -> None:
        self.returncode = code
        self._exited.set()


class FakeWorld:
    """Supervisor, port probe and tunnel launcher sharing one fake process table."""

    def __init__(self) -> None:
        self._pids = itertools.count(1000)
        self.procs: dict[int, FakeProcess] = {}
        self.labels: dict[int, str] = {}
        self.port_owner: dict[int, int] = {}
        self.external_ports: set[int] = set()
        self.external_alive: set[int] = set()
        self.open_behavior: dict[int, str] = {}  # port -> "ok" | "timeout" | "exit" | "hang"
        self.release_blocked: set[int] = set()
        self.tunnel_error: Exception | None = None
        self.fail_terminate: set[int] = set()
        self.terminated: list[int] = []
        self.last_dev_pid: int | None = None
        self.started_hanging = asyncio.Event()

    # -- supervisor --

    async def spawn(self, command, cwd=None, *, label, on_line=None) -> ProcessHandle:
        pid = next(self._pids)
        proc = FakeProcess()
        self.procs[pid] = proc
        self.labels[pid] = label
        if label.startswith("preview:"):
            self.last_dev_pid = pid
        return ProcessHandle(pid=pid, label=label, command=str(command), process=proc)

    async def terminate(self, pid: int) -> None:
        if pid in self.fail_terminate:
            raise OSError(f"cannot kill {pid}")
        self.terminated.append(pid)
        proc = self.procs.get(pid)
        if proc and proc.returncode is None:
            proc.exit(-15)
        self.external_alive.discard(pid)

    async def is_alive(self, pid: int) -> bool:
        proc = self.procs.get(pid)
        if proc is not None:
            return proc.returncode is None
        return pid in self.external_alive

    # -- probe --

    def is_available(self, port: int) -> bool:
        if port in self.external_ports or port in self.release_blocked:
            return False
        owner = self.port_owner.get(port)
        return owner is None or self.procs[owner].returncode is not None

    async def wait_until_open(self, port: int, timeout: float) -> None:
        behavior = self.open_behavior.get(port, "ok")
        if behavior == "timeout":
            raise PortWaitTimeout(port, timeout)
        if behavior == "exit":
            self.procs[self.last_dev_pid].exit(1)
            await asyncio.sleep(3600)
        if behavior == "hang":
            self.started_hanging.set()
            await asyncio.sleep(3600)
        self.port_owner[port] = self.last_dev_pid

    async def wait_until_released(self, port: int, timeout: float) -> None:
        if not self.is_available(port):
            raise PortReleaseTimeout(port, timeout)

    # -- tunnel --

    tunnel_type = "fake"

    async def start(self, port: int, timeout: float = 30.0) -> TunnelHandle:
        if self.tunnel_error is not None:
            raise self.tunnel_error
        handle = await self.spawn(["cloudflared"], label=f"tunnel:{port}")
        return TunnelHandle(url=f"https://t{handle.pid}.trycloudflare.com", pid=handle.pid)

    def alive_pids(self) -> set[int]:
        return {pid for pid, p in self.procs.items() if p.returncode is None}


@pytest.fixture
def world() -> FakeWorld:
    return FakeWorld()


@pytest.fixture
def store(data_dir: Path):
    s = PreviewRecordStore(data_dir)
    yield s
    s.close()


@pytest.fixture
def orch(store: PreviewRecordStore, world: FakeWorld) -> PreviewOrchestrator:
    return PreviewOrchestrator(store, world, world, world)


