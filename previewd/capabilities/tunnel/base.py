"""Shared types for the tunnel capability."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class TunnelHandle:
    """A running tunnel client and the public URL it was assigned."""

    url: str
    pid: int


@runtime_checkable
class TunnelLauncher(Protocol):
    """Starts a reverse-tunnel client pointed at a local port.

    Implementations own the provider-specific output parsing; callers only
    see the URL and the pid to terminate later.
    """

    @property
    def tunnel_type(self) -> str: ...

    async def start(self, port: int, timeout: float) -> TunnelHandle: ...
