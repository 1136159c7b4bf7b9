"""TCP port probing — availability checks and open/released polling."""
from __future__ import annotations

import asyncio
import logging
import socket
import sys

from previewd.core.errors import PortReleaseTimeout, PortWaitTimeout

logger = logging.getLogger(__name__)


class PortProbe:
    """Non-destructive checks against the local port table.

    Nothing here holds a port: ``is_available`` binds and releases at once.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        open_interval: float = 0.5,
        release_interval: float = 0.2,
        connect_timeout: float = 0.5,
    ) -> None:
        self._host = host
        self._open_interval = open_interval
        self._release_interval = release_interval
        self._connect_timeout = connect_timeout

    def is_available(self, port: int) -> bool:
        """Return True if a listening socket can be bound on *port*.

        TIME_WAIT leftovers from a stopped server do not count as in use,
        matching how dev servers bind. On Windows SO_REUSEADDR would allow
        stealing a live port, so it is left off there.
        """
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
                if sys.platform != "win32":
                    s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                s.bind(("", port))
                s.listen(1)
        except OSError:
            return False
        return True

    async def _can_connect(self, port: int) -> bool:
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(self._host, port),
                timeout=self._connect_timeout,
            )
        except (OSError, asyncio.TimeoutError):
            # refused / reset: nothing listening yet
            return False
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True

    async def wait_until_open(self, port: int, timeout: float) -> None:
        """Poll until something accepts connections on *port*.

        Raises PortWaitTimeout once *timeout* seconds have passed.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            if await self._can_connect(port):
                logger.info("Port %d is accepting connections", port)
                return
            if loop.time() >= deadline:
                raise PortWaitTimeout(port, timeout)
            await asyncio.sleep(min(self._open_interval, max(deadline - loop.time(), 0)))

    async def wait_until_released(self, port: int, timeout: float) -> None:
        """Poll until *port* can be bound again."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not self.is_available(port):
            if loop.time() >= deadline:
                raise PortReleaseTimeout(port, timeout)
            await asyncio.sleep(self._release_interval)
        logger.debug("Port %d released", port)
