from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_PREVIEW_PORT = 3000


@dataclass
class WorkingDirectoryConfig:
    """A registered working directory and its preview settings."""

    alias: str
    path: str
    start_cmd: str | None = None
    preview_port: int | None = None
    preview_enabled: bool = False
    description: str | None = None
    created_at: str = ""

    @property
    def resolved_port(self) -> int:
        return self.preview_port or DEFAULT_PREVIEW_PORT

    @classmethod
    def from_dict(cls, alias: str, data: dict) -> WorkingDirectoryConfig:
        return cls(
            alias=alias,
            path=data["path"],
            start_cmd=data.get("start_cmd") or None,
            preview_port=data.get("preview_port"),
            preview_enabled=bool(data.get("preview_enabled", False)),
            description=data.get("description"),
            created_at=data.get("created_at", ""),
        )


class DirectoryStore:
    """Manages working-directory registrations in a JSON file."""

    def __init__(self, data_dir: Path) -> None:
        self._path = data_dir / "directories.json"
        self._dirs: dict[str, dict] = {}
        self._load()

    def _load(self) -> None:
        if self._path.exists():
            self._dirs = json.loads(self._path.read_text())
            logger.info("Loaded %d directories", len(self._dirs))

    def _save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(
            json.dumps(self._dirs, indent=2, ensure_ascii=False)
        )

    def _find_key(self, alias: str) -> str | None:
        """Find the actual key for a case-insensitive alias lookup."""
        if alias in self._dirs:
            return alias
        alias_lower = alias.lower()
        for key in self._dirs:
            if key.lower() == alias_lower:
                return key
        return None

    def add(
        self,
        alias: str,
        path: str,
        *,
        start_cmd: str | None = None,
        preview_port: int | None = None,
        preview_enabled: bool = False,
        description: str | None = None,
    ) -> bool:
        """Register a directory. Returns False if the alias already exists."""
        if self._find_key(alias) is not None:
            return False
        resolved = str(Path(path).expanduser().resolve())
        if not Path(resolved).is_dir():
            raise ValueError(f"Directory not found: {resolved}")
        config = WorkingDirectoryConfig(
            alias=alias,
            path=resolved,
            start_cmd=start_cmd,
            preview_port=preview_port,
            preview_enabled=preview_enabled,
            description=description,
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        data = asdict(config)
        del data["alias"]
        self._dirs[alias] = data
        self._save()
        return True

    def remove(self, alias: str) -> bool:
        key = self._find_key(alias)
        if key is None:
            return False
        del self._dirs[key]
        self._save()
        return True

    def get(self, alias: str) -> WorkingDirectoryConfig | None:
        """Look up a directory (case-insensitive)."""
        key = self._find_key(alias)
        if key is None:
            return None
        return WorkingDirectoryConfig.from_dict(key, self._dirs[key])

    def list_all(self) -> list[WorkingDirectoryConfig]:
        return [
            WorkingDirectoryConfig.from_dict(key, data)
            for key, data in self._dirs.items()
        ]
