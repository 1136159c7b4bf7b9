from __future__ import annotations

import asyncio
import atexit
import logging
import signal

from previewd.adapters.telegram.config import TelegramConfig
from previewd.adapters.telegram.renderer import EventRenderer
from previewd.adapters.web.server import WebControlPlane
from previewd.capabilities.tunnel.cloudflared import CloudflaredTunnelLauncher
from previewd.config import Config
from previewd.core.commands import Commands
from previewd.core.dispatcher import ChatDispatcher
from previewd.core.events import EventBus
from previewd.core.orchestrator import PreviewOrchestrator
from previewd.core.port_probe import PortProbe
from previewd.core.process_supervisor import ProcessSupervisor
from previewd.storage.directory_store import DirectoryStore
from previewd.storage.preview_store import PreviewRecordStore

logger = logging.getLogger("previewd")


def _setup_logging(log_file: str) -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(log_file),
        ],
    )


async def main() -> None:
    config = Config.from_env()
    _setup_logging(config.log_file)
    logger.info("previewd starting...")

    # -- Storage + process infrastructure --
    directory_store = DirectoryStore(config.data_dir)
    preview_store = PreviewRecordStore(config.data_dir)
    supervisor = ProcessSupervisor()
    # SIGKILL of the daemon cannot be caught; cleanup_orphans() on the next
    # start reconciles the records instead.
    atexit.register(supervisor.kill_all_now)

    orchestrator = PreviewOrchestrator(
        preview_store,
        supervisor,
        CloudflaredTunnelLauncher(supervisor, binary=config.cloudflared_binary),
        PortProbe(),
    )

    # Records outlive the daemon, processes may not: reconcile before
    # accepting any new start.
    removed = await orchestrator.cleanup_orphans()
    if removed:
        logger.info("Removed stale previews: %s", ", ".join(removed))

    event_bus = EventBus()
    commands = Commands(orchestrator, directory_store, event_bus)

    # -- Control planes --
    web_cp = WebControlPlane(commands, host=config.web_host, port=config.web_port)

    messenger = None
    renderer = None
    if config.telegram_enabled:
        from previewd.messenger.telegram.adapter import TelegramAdapter

        messenger = TelegramAdapter(
            TelegramConfig(
                bot_token=config.telegram_bot_token,
                chat_id=config.telegram_chat_id,
            )
        )
        ChatDispatcher(messenger, commands)
        renderer = EventRenderer(event_bus, messenger)
        renderer.start()
        logger.info("Telegram control plane enabled")
    else:
        logger.info("Telegram control plane disabled (no bot token / chat id)")

    # Handle shutdown signals
    stop_event = asyncio.Event()

    def handle_signal() -> None:
        logger.info("Shutdown signal received")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal)

    await web_cp.start()
    if messenger:
        await messenger.start()
    logger.info("previewd is running. Press Ctrl+C to stop.")

    await stop_event.wait()

    # Cleanup: stop every preview so no child outlives the daemon
    logger.info("Shutting down...")
    await web_cp.stop()
    if messenger:
        await messenger.stop()
    if renderer:
        renderer.stop()
    await commands.cancel_background()
    failures = await orchestrator.stop_all()
    if failures:
        logger.error("%d preview(s) could not be stopped cleanly", len(failures))
    preview_store.close()
    logger.info("previewd stopped.")


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
