"""Cloudflared quick-tunnel launcher."""
from __future__ import annotations

import asyncio
import logging
import re
import shutil

from previewd.capabilities.tunnel.base import TunnelHandle
from previewd.core.errors import TunnelExited, TunnelTimeout, TunnelUnavailable
from previewd.core.process_supervisor import ProcessSupervisor

logger = logging.getLogger(__name__)


class CloudflaredTunnelLauncher:
    """Runs ``cloudflared tunnel --url`` and scrapes the trycloudflare URL.

    cloudflared prints the assigned hostname inside a banner on stderr; the
    launcher watches both streams and resolves on the first match.
    """

    url_pattern = re.compile(r"https://[a-z0-9-]+\.trycloudflare\.com")

    def __init__(self, supervisor: ProcessSupervisor, binary: str = "cloudflared") -> None:
        self._supervisor = supervisor
        self._binary = binary

    @property
    def tunnel_type(self) -> str:
        return "cloudflared"

    def build_command(self, binary_path: str, port: int) -> list[str]:
        return [binary_path, "tunnel", "--url", f"http://localhost:{port}"]

    def parse_url(self, text: str) -> str | None:
        match = self.url_pattern.search(text)
        return match.group(0) if match else None

    async def start(self, port: int, timeout: float = 30.0) -> TunnelHandle:
        """Start the tunnel client. Returns its URL and pid.

        Raises TunnelExited if the client dies before printing a URL and
        TunnelTimeout (after killing the client) if *timeout* runs out.
        """
        binary_path = shutil.which(self._binary)
        if not binary_path:
            raise TunnelUnavailable(self._binary)

        loop = asyncio.get_running_loop()
        url_found: asyncio.Future[str] = loop.create_future()

        def on_line(_stream: str, text: str) -> None:
            if url_found.done():
                return
            url = self.parse_url(text)
            if url:
                url_found.set_result(url)

        handle = await self._supervisor.spawn(
            self.build_command(binary_path, port),
            label=f"tunnel:{port}",
            on_line=on_line,
        )
        exited = asyncio.ensure_future(handle.process.wait())

        try:
            done, _ = await asyncio.wait(
                {url_found, exited},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if url_found in done:
                url = url_found.result()
                logger.info("Tunnel URL for port %d: %s", port, url)
                return TunnelHandle(url=url, pid=handle.pid)

            if exited in done:
                await self._supervisor.terminate(handle.pid)
                raise TunnelExited(handle.returncode)

            await self._supervisor.terminate(handle.pid)
            raise TunnelTimeout(timeout)
        except asyncio.CancelledError:
            await self._supervisor.terminate(handle.pid)
            raise
        finally:
            if not exited.done():
                exited.cancel()
            if not url_found.done():
                url_found.cancel()
