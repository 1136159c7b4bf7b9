"""Preview error taxonomy.

Every failure the orchestrator surfaces is a ``PreviewError`` with a
human-readable message. Control planes render ``str(e)`` directly.
"""
from __future__ import annotations


class PreviewError(RuntimeError):
    """Base class for preview lifecycle failures."""


class AlreadyRunning(PreviewError):
    def __init__(self, alias: str) -> None:
        super().__init__(f"Preview already running: {alias}")
        self.alias = alias


class MissingStartCommand(PreviewError):
    def __init__(self, alias: str) -> None:
        super().__init__(
            f"No start command configured for {alias}.\n"
            f"Set start_cmd for this directory first."
        )
        self.alias = alias


class PortInUse(PreviewError):
    """Port is held by a process this daemon does not manage."""

    def __init__(self, port: int) -> None:
        self.port = port
        self.remediation = (
            f"Stop whatever is listening on {port}, "
            f"or configure a different preview port for this directory."
        )
        super().__init__(f"Port {port} is already in use.\n{self.remediation}")


class PortWaitTimeout(PreviewError, TimeoutError):
    def __init__(self, port: int, timeout: float) -> None:
        super().__init__(f"Timed out after {timeout:g}s waiting for port {port} to open")
        self.port = port


class PortReleaseTimeout(PreviewError, TimeoutError):
    def __init__(self, port: int, timeout: float) -> None:
        super().__init__(f"Timed out after {timeout:g}s waiting for port {port} to be released")
        self.port = port


class DevServerExited(PreviewError):
    def __init__(self, alias: str, returncode: int | None) -> None:
        super().__init__(f"Dev server for {alias} exited early (code {returncode})")
        self.returncode = returncode


class TunnelUnavailable(PreviewError):
    def __init__(self, binary: str) -> None:
        super().__init__(
            f"{binary} not found in PATH. Install: brew install cloudflared"
        )


class TunnelExited(PreviewError):
    def __init__(self, returncode: int | None) -> None:
        super().__init__(f"Tunnel process exited unexpectedly (code {returncode})")
        self.returncode = returncode


class TunnelTimeout(PreviewError, TimeoutError):
    def __init__(self, timeout: float) -> None:
        super().__init__(f"Timed out after {timeout:g}s waiting for tunnel URL")


class NotFound(PreviewError):
    def __init__(self, alias: str) -> None:
        super().__init__(f"No running preview: {alias}")
        self.alias = alias
