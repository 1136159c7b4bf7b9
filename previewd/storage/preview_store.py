from __future__ import annotations

import logging
import sqlite3
import time
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS preview_services (
    alias TEXT PRIMARY KEY,
    pid INTEGER NOT NULL,
    tunnel_pid INTEGER NOT NULL,
    port INTEGER NOT NULL,
    tunnel_url TEXT NOT NULL,
    started_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_preview_services_port ON preview_services(port);
"""


@dataclass(frozen=True)
class PreviewRecord:
    """A running preview: dev-server pid, tunnel pid, port and public URL."""

    alias: str
    local_pid: int
    tunnel_pid: int
    port: int
    public_url: str
    started_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "alias": self.alias,
            "port": self.port,
            "publicUrl": self.public_url,
            "pid": self.local_pid,
            "tunnelPid": self.tunnel_pid,
            "startedAt": int(self.started_at * 1000),
        }


class PreviewRecordStore:
    """Persists one PreviewRecord per alias in a SQLite database."""

    def __init__(self, data_dir: Path) -> None:
        data_dir.mkdir(parents=True, exist_ok=True)
        self._path = data_dir / "previews.db"
        self._conn = sqlite3.connect(str(self._path))
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(_SCHEMA)
        self._conn.commit()
        logger.info("Preview store at %s (%d records)", self._path, self.count())

    def close(self) -> None:
        self._conn.close()

    @staticmethod
    def _to_record(row: sqlite3.Row) -> PreviewRecord:
        return PreviewRecord(
            alias=row["alias"],
            local_pid=row["pid"],
            tunnel_pid=row["tunnel_pid"],
            port=row["port"],
            public_url=row["tunnel_url"],
            started_at=row["started_at"],
        )

    def create(self, record: PreviewRecord) -> PreviewRecord:
        """Insert *record*. Raises sqlite3.IntegrityError if the alias exists."""
        with self._conn:
            self._conn.execute(
                "INSERT INTO preview_services "
                "(alias, pid, tunnel_pid, port, tunnel_url, started_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    record.alias, record.local_pid, record.tunnel_pid,
                    record.port, record.public_url, record.started_at,
                ),
            )
        return record

    def find_by_alias(self, alias: str) -> PreviewRecord | None:
        row = self._conn.execute(
            "SELECT * FROM preview_services WHERE alias = ?", (alias,),
        ).fetchone()
        return self._to_record(row) if row else None

    def find_by_port(self, port: int) -> list[PreviewRecord]:
        rows = self._conn.execute(
            "SELECT * FROM preview_services WHERE port = ?", (port,),
        ).fetchall()
        return [self._to_record(r) for r in rows]

    def find_all(self) -> list[PreviewRecord]:
        rows = self._conn.execute(
            "SELECT * FROM preview_services ORDER BY started_at DESC",
        ).fetchall()
        return [self._to_record(r) for r in rows]

    def count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM preview_services").fetchone()[0]

    def delete(self, alias: str) -> bool:
        """Delete the record for *alias*. Returns True if one existed."""
        with self._conn:
            cur = self._conn.execute(
                "DELETE FROM preview_services WHERE alias = ?", (alias,),
            )
        return cur.rowcount > 0

    def delete_all(self) -> None:
        with self._conn:
            self._conn.execute("DELETE FROM preview_services")
