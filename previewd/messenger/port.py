from __future__ import annotations

from typing import Awaitable, Callable, Protocol

CommandCallback = Callable[[str, list[str]], Awaitable[None]]  # (channel_id, args)


class MessengerPort(Protocol):
    """Messenger abstract interface. Core logic depends only on this protocol."""

    async def send_message(
        self, channel_id: str, text: str, *, silent: bool = False
    ) -> str:
        """Send a message. silent=True sends without notification. Returns: message ID."""
        ...

    def set_on_command(self, command: str, callback: CommandCallback) -> None:
        """Register a slash-command callback."""
        ...

    async def start(self) -> None:
        """Start messenger connection (polling, etc.)."""
        ...

    async def stop(self) -> None:
        """Stop messenger connection."""
        ...
