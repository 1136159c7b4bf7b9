"""Tests for the REST control plane."""
from __future__ import annotations

from pathlib import Path

import pytest
from aiohttp import test_utils

from previewd.adapters.web.server import build_app
from previewd.core.commands import Commands
from previewd.storage.directory_store import DirectoryStore


@pytest.fixture
def directories(data_dir: Path, tmp_path: Path) -> DirectoryStore:
    ds = DirectoryStore(data_dir)
    for name in ("web", "disabled", "nocmd", "other"):
        (tmp_path / name).mkdir()
    ds.add("web", str(tmp_path / "web"), start_cmd="npm run dev", preview_enabled=True)
    ds.add("other", str(tmp_path / "other"), start_cmd="vite", preview_port=5173, preview_enabled=True)
    ds.add("disabled", str(tmp_path / "disabled"), start_cmd="npm start")
    ds.add("nocmd", str(tmp_path / "nocmd"), preview_enabled=True)
    return ds


@pytest.fixture
async def client(orch, directories):
    app = build_app(Commands(orch, directories))
    async with test_utils.TestClient(test_utils.TestServer(app)) as c:
        yield c


class TestHealth:
    async def test_health(self, client: test_utils.TestClient):
        resp = await client.get("/health")
        assert resp.status == 200
        assert await resp.json() == {"success": True, "data": {"previews": 0}}


class TestStart:
    async def test_start(self, client: test_utils.TestClient):
        resp = await client.post("/previews/web/start")
        assert resp.status == 200
        body = await resp.json()
        assert body["success"] is True
        data = body["data"]
        assert data["alias"] == "web"
        assert data["port"] == 3000
        assert data["publicUrl"].endswith(".trycloudflare.com")
        assert set(data) == {"alias", "port", "publicUrl", "pid", "tunnelPid", "startedAt"}

    async def test_unknown_directory(self, client: test_utils.TestClient):
        resp = await client.post("/previews/ghost/start")
        assert resp.status == 404
        assert await resp.json() == {"success": False, "error": "Working directory not found"}

    async def test_preview_not_enabled(self, client: test_utils.TestClient):
        resp = await client.post("/previews/disabled/start")
        assert resp.status == 400
        assert (await resp.json())["success"] is False

    async def test_no_start_command(self, client: test_utils.TestClient):
        resp = await client.post("/previews/nocmd/start")
        assert resp.status == 400
        assert (await resp.json())["error"] == "No start command configured"

    async def test_already_running(self, client: test_utils.TestClient):
        await client.post("/previews/web/start")
        resp = await client.post("/previews/web/start")
        assert resp.status == 409
        assert "already running" in (await resp.json())["error"]

    async def test_port_in_use(self, client: test_utils.TestClient, world):
        world.external_ports.add(3000)
        resp = await client.post("/previews/web/start")
        assert resp.status == 409
        assert "3000" in (await resp.json())["error"]

    async def test_other_failures_are_500(self, client: test_utils.TestClient, world):
        world.open_behavior[3000] = "timeout"
        resp = await client.post("/previews/web/start")
        assert resp.status == 500
        body = await resp.json()
        assert body["success"] is False
        assert "port 3000" in body["error"]


class TestQueryAndStop:
    async def test_list_and_get(self, client: test_utils.TestClient):
        await client.post("/previews/web/start")
        await client.post("/previews/other/start")

        resp = await client.get("/previews")
        assert resp.status == 200
        assert {p["alias"] for p in (await resp.json())["data"]} == {"web", "other"}

        resp = await client.get("/previews/other")
        assert (await resp.json())["data"]["port"] == 5173

    async def test_get_missing(self, client: test_utils.TestClient):
        resp = await client.get("/previews/web")
        assert resp.status == 404
        assert await resp.json() == {"success": False, "error": "Preview not found"}

    async def test_stop(self, client: test_utils.TestClient):
        await client.post("/previews/web/start")
        resp = await client.post("/previews/web/stop")
        assert resp.status == 200
        assert await resp.json() == {"success": True}

        resp = await client.get("/previews")
        assert (await resp.json())["data"] == []

    async def test_stop_not_running(self, client: test_utils.TestClient):
        resp = await client.post("/previews/web/stop")
        assert resp.status == 404
        assert (await resp.json())["success"] is False

    async def test_stop_all(self, client: test_utils.TestClient):
        await client.post("/previews/web/start")
        await client.post("/previews/other/start")
        resp = await client.post("/previews/stop-all")
        assert resp.status == 200
        assert await resp.json() == {"success": True}

        resp = await client.get("/health")
        assert (await resp.json())["data"]["previews"] == 0
