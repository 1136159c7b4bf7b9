"""Process supervisor — spawning children and killing their process trees.

Long-running children (dev servers, tunnels) are spawned as leaders of their
own process group so that a single signal reaches everything the shell
started. The platform-specific part (group creation flags, liveness probe,
tree kill) lives behind ``ProcessTreeAdapter`` and is chosen once at
construction time.

The handle cache is only valid for the lifetime of this process. Persisted
pids from a previous run are checked through the adapter instead.
"""
from __future__ import annotations

import asyncio
import logging
import os
import shlex
import signal
import subprocess
import sys
from dataclasses import dataclass, field
from typing import Callable, Protocol

logger = logging.getLogger(__name__)

LineCallback = Callable[[str, str], None]  # (stream_name, text)


@dataclass
class ProcessHandle:
    """A child process spawned by this supervisor."""

    pid: int
    label: str
    command: str
    process: asyncio.subprocess.Process = field(repr=False)

    @property
    def returncode(self) -> int | None:
        return self.process.returncode


# ---------------------------------------------------------------------------
# Platform adapters
# ---------------------------------------------------------------------------

class ProcessTreeAdapter(Protocol):
    """OS-specific process-group handling."""

    def spawn_kwargs(self) -> dict: ...

    async def is_alive(self, pid: int) -> bool: ...

    async def kill_tree(self, pid: int, *, force: bool = False) -> bool:
        """Signal *pid* and its descendants. Returns False if nothing was found."""
        ...

    def kill_tree_now(self, pid: int) -> None:
        """Synchronous best-effort kill (used from atexit)."""
        ...


class PosixProcessTree:
    """Process groups + signals. The child's pid doubles as its pgid."""

    def spawn_kwargs(self) -> dict:
        return {"start_new_session": True}

    async def is_alive(self, pid: int) -> bool:
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            # exists, owned by another user
            return True
        return True

    async def kill_tree(self, pid: int, *, force: bool = False) -> bool:
        return self._signal_group(pid, signal.SIGKILL if force else signal.SIGTERM)

    def kill_tree_now(self, pid: int) -> None:
        try:
            self._signal_group(pid, signal.SIGTERM)
        except OSError as e:
            logger.debug("Failed to signal PID %d: %s", pid, e)

    @staticmethod
    def _signal_group(pid: int, sig: int) -> bool:
        try:
            os.killpg(pid, sig)
            return True
        except ProcessLookupError:
            pass
        # Not a group leader (or the leader is gone): signal the pid itself.
        try:
            os.kill(pid, sig)
            return True
        except ProcessLookupError:
            return False


class WindowsProcessTree:
    """tasklist / taskkill based tree handling."""

    # taskkill exit code when the pid does not exist
    _NOT_FOUND = 128

    def spawn_kwargs(self) -> dict:
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}

    async def is_alive(self, pid: int) -> bool:
        proc = await asyncio.create_subprocess_exec(
            "tasklist", "/FI", f"PID eq {pid}", "/FO", "CSV", "/NH",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            err = stderr.decode(errors="replace").strip()
            raise OSError(f"tasklist failed for PID {pid}: {err}")
        return f'"{pid}"' in stdout.decode(errors="replace")

    async def kill_tree(self, pid: int, *, force: bool = False) -> bool:
        args = ["taskkill", "/PID", str(pid), "/T"]
        if force:
            args.append("/F")
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        _, stderr = await proc.communicate()
        if proc.returncode == self._NOT_FOUND:
            return False
        if proc.returncode != 0:
            err = stderr.decode(errors="replace").strip()
            raise OSError(f"taskkill failed for PID {pid}: {err}")
        return True

    def kill_tree_now(self, pid: int) -> None:
        subprocess.run(
            ["taskkill", "/PID", str(pid), "/T", "/F"],
            capture_output=True,
            check=False,
        )


def default_process_tree() -> ProcessTreeAdapter:
    if sys.platform == "win32":
        return WindowsProcessTree()
    return PosixProcessTree()


# ---------------------------------------------------------------------------
# Supervisor
# ---------------------------------------------------------------------------

class ProcessSupervisor:
    """Spawns and terminates long-running child processes."""

    def __init__(
        self,
        tree: ProcessTreeAdapter | None = None,
        grace_period: float = 5.0,
    ) -> None:
        self._tree = tree or default_process_tree()
        self._grace_period = grace_period
        self._handles: dict[int, ProcessHandle] = {}
        self._tasks: set[asyncio.Task] = set()

    async def spawn(
        self,
        command: str | list[str],
        cwd: str | None = None,
        *,
        label: str,
        on_line: LineCallback | None = None,
    ) -> ProcessHandle:
        """Start *command* (a shell string or an argv list) in *cwd*."""
        kwargs = dict(
            cwd=cwd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            **self._tree.spawn_kwargs(),
        )
        if isinstance(command, str):
            proc = await asyncio.create_subprocess_shell(command, **kwargs)
            command_text = command
        else:
            proc = await asyncio.create_subprocess_exec(*command, **kwargs)
            command_text = shlex.join(command)

        handle = ProcessHandle(
            pid=proc.pid, label=label, command=command_text, process=proc,
        )
        self._handles[proc.pid] = handle
        logger.info("[%s] Started PID %d: %s (cwd=%s)", label, proc.pid, command_text, cwd)

        self._spawn_task(self._pump(handle, proc.stdout, "stdout", on_line))
        self._spawn_task(self._pump(handle, proc.stderr, "stderr", on_line))
        self._spawn_task(self._observe_exit(handle))
        return handle

    def get(self, pid: int) -> ProcessHandle | None:
        return self._handles.get(pid)

    def tracked_pids(self) -> list[int]:
        """PIDs of children spawned here that have not exited yet."""
        return [pid for pid, h in self._handles.items() if h.returncode is None]

    async def is_alive(self, pid: int) -> bool:
        handle = self._handles.get(pid)
        if handle is not None:
            return handle.returncode is None
        return await self._tree.is_alive(pid)

    async def terminate(self, pid: int) -> None:
        """Terminate *pid* and its descendants. Dead pids are not an error."""
        found = await self._tree.kill_tree(pid)
        if not found:
            logger.debug("PID %d already gone", pid)
            return

        if await self._wait_dead(pid, self._grace_period):
            logger.info("Terminated PID %d", pid)
            return

        logger.warning(
            "PID %d still alive after %.1fs, sending SIGKILL", pid, self._grace_period,
        )
        await self._tree.kill_tree(pid, force=True)
        await self._wait_dead(pid, self._grace_period)

    def kill_all_now(self) -> None:
        """Signal every tracked child synchronously (atexit safety net)."""
        for pid in self.tracked_pids():
            self._tree.kill_tree_now(pid)
            logger.debug("Sent SIGTERM to tracked PID %d", pid)

    # ------------------------------------------------------------------

    def _spawn_task(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _wait_dead(self, pid: int, timeout: float) -> bool:
        handle = self._handles.get(pid)
        if handle is not None:
            try:
                await asyncio.wait_for(handle.process.wait(), timeout=timeout)
                return True
            except asyncio.TimeoutError:
                return False

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while await self._tree.is_alive(pid):
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(0.1)
        return True

    async def _pump(
        self,
        handle: ProcessHandle,
        stream: asyncio.StreamReader | None,
        name: str,
        on_line: LineCallback | None,
    ) -> None:
        if stream is None:
            return
        level = logging.DEBUG if name == "stdout" else logging.WARNING
        while True:
            try:
                line = await stream.readline()
            except (ValueError, ConnectionError):
                # over-long line or broken pipe; stop reading this stream
                break
            if not line:
                break
            text = line.decode("utf-8", errors="replace").rstrip()
            if not text:
                continue
            logger.log(level, "[%s] %s", handle.label, text)
            if on_line is not None:
                try:
                    on_line(name, text)
                except Exception:
                    logger.exception("[%s] Line callback failed", handle.label)

    async def _observe_exit(self, handle: ProcessHandle) -> None:
        code = await handle.process.wait()
        self._handles.pop(handle.pid, None)
        logger.info("[%s] PID %d exited with code %s", handle.label, handle.pid, code)
