from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from previewd.storage.preview_store import PreviewRecord, PreviewRecordStore


def _record(alias: str = "web", port: int = 3000, started_at: float = 1_700_000_000.0) -> PreviewRecord:
    return PreviewRecord(
        alias=alias,
        local_pid=1001,
        tunnel_pid=1002,
        port=port,
        public_url=f"https://{alias}.trycloudflare.com",
        started_at=started_at,
    )


@pytest.fixture
def store(data_dir: Path):
    s = PreviewRecordStore(data_dir)
    yield s
    s.close()


class TestPreviewRecordStore:
    def test_create_and_find(self, store: PreviewRecordStore):
        store.create(_record())
        found = store.find_by_alias("web")
        assert found == _record()

    def test_find_missing(self, store: PreviewRecordStore):
        assert store.find_by_alias("nope") is None
        assert store.find_by_port(3000) == []

    def test_one_record_per_alias(self, store: PreviewRecordStore):
        store.create(_record())
        with pytest.raises(sqlite3.IntegrityError):
            store.create(_record(port=4000))

    def test_find_by_port(self, store: PreviewRecordStore):
        store.create(_record("a", port=3000))
        store.create(_record("b", port=4000))
        assert [r.alias for r in store.find_by_port(4000)] == ["b"]

    def test_find_all_newest_first(self, store: PreviewRecordStore):
        store.create(_record("old", port=3000, started_at=100.0))
        store.create(_record("new", port=3001, started_at=200.0))
        assert [r.alias for r in store.find_all()] == ["new", "old"]
        assert store.count() == 2

    def test_delete(self, store: PreviewRecordStore):
        store.create(_record())
        assert store.delete("web") is True
        assert store.delete("web") is False
        assert store.find_by_alias("web") is None

    def test_delete_all(self, store: PreviewRecordStore):
        store.create(_record("a", port=3000))
        store.create(_record("b", port=3001))
        store.delete_all()
        assert store.count() == 0

    def test_records_survive_reopen(self, data_dir: Path):
        first = PreviewRecordStore(data_dir)
        first.create(_record())
        first.close()

        second = PreviewRecordStore(data_dir)
        try:
            assert second.find_by_alias("web") == _record()
        finally:
            second.close()


class TestPreviewRecord:
    def test_to_dict_uses_wire_names(self):
        data = _record(started_at=1.5).to_dict()
        assert data == {
            "alias": "web",
            "port": 3000,
            "publicUrl": "https://web.trycloudflare.com",
            "pid": 1001,
            "tunnelPid": 1002,
            "startedAt": 1500,
        }
