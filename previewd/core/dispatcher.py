from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from previewd.core.errors import PreviewError

if TYPE_CHECKING:
    from previewd.core.commands import Commands
    from previewd.messenger.port import MessengerPort
    from previewd.storage.preview_store import PreviewRecord

logger = logging.getLogger(__name__)

PREVIEW_USAGE = (
    "Usage:\n"
    "/preview start <alias>   (/p s)\n"
    "/preview stop <alias>    (/p x)\n"
    "/preview stop-all        (/p xa)\n"
    "/preview status [alias]  (/p st)"
)

_SUBCOMMANDS = {
    "start": "start", "s": "start",
    "stop": "stop", "x": "stop",
    "stop-all": "stop_all", "xa": "stop_all",
    "status": "status", "st": "status",
}


def format_preview(record: PreviewRecord) -> str:
    started = datetime.fromtimestamp(record.started_at).strftime("%Y-%m-%d %H:%M:%S")
    return (
        f"{record.alias}\n"
        f"Port: {record.port}\n"
        f"URL: {record.public_url}\n"
        f"Dev server PID: {record.local_pid}\n"
        f"Tunnel PID: {record.tunnel_pid}\n"
        f"Started: {started}"
    )


class ChatDispatcher:
    """Routes chat commands to the Commands facade."""

    def __init__(self, messenger: MessengerPort, commands: Commands) -> None:
        self._messenger = messenger
        self._cmd = commands

        messenger.set_on_command("preview", self.handle_preview_command)
        messenger.set_on_command("p", self.handle_preview_command)
        messenger.set_on_command("dirs", self.handle_dirs_command)

    async def handle_preview_command(
        self, channel_id: str, args: list[str]
    ) -> None:
        """/preview <start|stop|stop-all|status> [alias]"""
        if not args:
            await self._messenger.send_message(channel_id, PREVIEW_USAGE)
            return

        sub = _SUBCOMMANDS.get(args[0].lower())
        rest = args[1:]

        if sub == "start" and rest:
            ok, msg = self._cmd.cmd_start_preview_background(channel_id, rest[0])
            await self._messenger.send_message(
                channel_id, f"🚀 {msg}" if ok else f"❌ {msg}",
            )

        elif sub == "stop" and rest:
            try:
                await self._cmd.cmd_stop_preview(rest[0], channel_id=channel_id)
            except PreviewError as e:
                await self._messenger.send_message(channel_id, f"❌ Stop failed: {e}")

        elif sub == "stop_all":
            failures = await self._cmd.cmd_stop_all_previews()
            if failures:
                lines = [f"• {alias}: {err}" for alias, err in failures]
                await self._messenger.send_message(
                    channel_id,
                    "⚠️ Some previews could not be stopped:\n" + "\n".join(lines),
                )
            else:
                await self._messenger.send_message(channel_id, "✅ All previews stopped")

        elif sub == "status":
            alias = rest[0] if rest else None
            records = self._cmd.cmd_preview_status(alias)
            if not records:
                await self._messenger.send_message(
                    channel_id,
                    f"No running preview: {alias}" if alias else "No running previews.",
                )
                return
            body = "\n\n".join(format_preview(r) for r in records)
            await self._messenger.send_message(channel_id, f"📊 Previews\n\n{body}")

        elif sub is None:
            await self._messenger.send_message(
                channel_id, f"❌ Unknown subcommand: {args[0]}\n\n{PREVIEW_USAGE}",
            )
        else:
            await self._messenger.send_message(channel_id, PREVIEW_USAGE)

    async def handle_dirs_command(
        self, channel_id: str, args: list[str]
    ) -> None:
        """/dirs — list configured working directories."""
        dirs = self._cmd.cmd_list_directories()
        if not dirs:
            await self._messenger.send_message(channel_id, "No configured directories.")
            return

        lines = []
        for d in dirs:
            flags = []
            if d.preview_enabled:
                flags.append("preview")
            if d.start_cmd:
                flags.append(f"cmd: {d.start_cmd}")
            flags.append(f"port: {d.resolved_port}")
            lines.append(f"📁 {d.alias}: {d.path} ({', '.join(flags)})")
        await self._messenger.send_message(channel_id, "\n".join(lines))
