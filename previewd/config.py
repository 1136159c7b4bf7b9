from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv


def _int_env(name: str, default: str) -> int:
    raw = os.environ.get(name, default)
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


@dataclass
class Config:
    data_dir: Path = field(default_factory=lambda: Path(__file__).parent / "data")
    web_host: str = "127.0.0.1"
    web_port: int = 7777
    telegram_bot_token: str = ""
    telegram_chat_id: int | None = None
    cloudflared_binary: str = "cloudflared"
    log_file: str = "/tmp/previewd.log"

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token) and self.telegram_chat_id is not None

    @classmethod
    def from_env(cls) -> Config:
        load_dotenv()
        data_dir = os.environ.get("PREVIEWD_DATA_DIR", "")
        chat_id = os.environ.get("PREVIEWD_TELEGRAM_CHAT_ID", "")
        return cls(
            data_dir=Path(data_dir).expanduser() if data_dir else Path(__file__).parent / "data",
            web_host=os.environ.get("PREVIEWD_WEB_HOST", "127.0.0.1"),
            web_port=_int_env("PREVIEWD_WEB_PORT", "7777"),
            telegram_bot_token=os.environ.get("PREVIEWD_TELEGRAM_BOT_TOKEN", ""),
            telegram_chat_id=_int_env("PREVIEWD_TELEGRAM_CHAT_ID", chat_id) if chat_id else None,
            cloudflared_binary=os.environ.get("PREVIEWD_CLOUDFLARED", "cloudflared"),
            log_file=os.environ.get("PREVIEWD_LOG_FILE", "/tmp/previewd.log"),
        )
