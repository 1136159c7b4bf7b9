from __future__ import annotations

import logging
from typing import Callable

from telegram import Update
from telegram.ext import Application, CommandHandler, ContextTypes

from previewd.adapters.telegram.config import TelegramConfig
from previewd.messenger.port import CommandCallback

logger = logging.getLogger(__name__)

# Telegram max message length
MAX_MESSAGE_LENGTH = 4096


def _split_message(text: str) -> list[str]:
    """Split messages exceeding 4096 characters."""
    if len(text) <= MAX_MESSAGE_LENGTH:
        return [text]
    chunks: list[str] = []
    while text:
        if len(text) <= MAX_MESSAGE_LENGTH:
            chunks.append(text)
            break
        # Split at newline boundary
        split_at = text.rfind("\n", 0, MAX_MESSAGE_LENGTH)
        if split_at == -1:
            split_at = MAX_MESSAGE_LENGTH
        chunks.append(text[:split_at])
        text = text[split_at:].lstrip("\n")
    return chunks


class TelegramAdapter:
    """MessengerPort implementation for a single Telegram chat.

    channel_id is the chat's thread id for forum topics, ``"general"``
    otherwise. Updates from other chats are ignored.
    """

    def __init__(self, config: TelegramConfig) -> None:
        self._config = config
        self._app: Application | None = None
        self._chat_id = config.chat_id
        self._on_command: dict[str, CommandCallback] = {}

    def set_on_command(self, command: str, callback: CommandCallback) -> None:
        """Register command callback."""
        self._on_command[command] = callback

    @staticmethod
    def _thread_id(channel_id: str) -> int | None:
        return int(channel_id) if channel_id != "general" else None

    def _get_channel_id(self, update: Update) -> str:
        """Extract channel_id from Update."""
        thread_id = update.effective_message.message_thread_id
        if thread_id:
            return str(thread_id)
        return "general"

    async def send_message(
        self, channel_id: str, text: str, *, silent: bool = False
    ) -> str:
        """Send a message."""
        bot = self._app.bot
        last_msg = None
        for chunk in _split_message(text):
            last_msg = await bot.send_message(
                chat_id=self._chat_id,
                message_thread_id=self._thread_id(channel_id),
                text=chunk,
                disable_notification=silent,
            )
        return str(last_msg.message_id) if last_msg else ""

    def _make_command_handler(self, cmd: str) -> Callable:
        """Command handler factory."""
        callback = self._on_command[cmd]

        async def handler(
            update: Update, context: ContextTypes.DEFAULT_TYPE
        ) -> None:
            if not update.effective_message or not update.effective_chat:
                return
            if update.effective_chat.id != self._chat_id:
                logger.warning("Ignoring /%s from chat %s", cmd, update.effective_chat.id)
                return
            channel_id = self._get_channel_id(update)
            await callback(channel_id, context.args or [])

        return handler

    async def start(self) -> None:
        """Start Telegram bot (polling)."""
        self._app = Application.builder().token(self._config.bot_token).build()

        for cmd in self._on_command:
            self._app.add_handler(CommandHandler(cmd, self._make_command_handler(cmd)))

        logger.info("Starting Telegram polling...")
        await self._app.initialize()
        await self._app.start()
        await self._app.updater.start_polling(drop_pending_updates=True)

    async def stop(self) -> None:
        """Stop Telegram bot."""
        if self._app:
            await self._app.updater.stop()
            await self._app.stop()
            await self._app.shutdown()
