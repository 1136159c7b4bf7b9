"""Web Control Plane — REST API for preview management.

Every response uses the envelope ``{"success": bool, "data"?: ..., "error"?: str}``.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from aiohttp import web

from previewd.core.errors import (
    AlreadyRunning,
    MissingStartCommand,
    NotFound,
    PortInUse,
    PreviewError,
)

if TYPE_CHECKING:
    from previewd.core.commands import Commands

logger = logging.getLogger(__name__)

_ERROR_STATUS: dict[type, int] = {
    NotFound: 404,
    MissingStartCommand: 400,
    AlreadyRunning: 409,
    PortInUse: 409,
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _ok(data=None) -> web.Response:
    body: dict = {"success": True}
    if data is not None:
        body["data"] = data
    return web.json_response(body)


def _fail(error: str, status: int) -> web.Response:
    return web.json_response({"success": False, "error": error}, status=status)


@web.middleware
async def _error_middleware(request: web.Request, handler) -> web.StreamResponse:
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except PreviewError as e:
        status = _ERROR_STATUS.get(type(e), 500)
        logger.warning("API %s %s failed: %s", request.method, request.path, e)
        return _fail(str(e), status)
    except Exception as e:
        logger.exception("API Error: %s %s", request.method, request.path)
        return _fail(str(e) or "Internal Server Error", 500)


# ---------------------------------------------------------------------------
# Route handlers
# ---------------------------------------------------------------------------

async def _handle_health(request: web.Request) -> web.Response:
    cmd: Commands = request.app["cmd"]
    return _ok({"previews": len(cmd.cmd_preview_status())})


async def _handle_list_previews(request: web.Request) -> web.Response:
    """GET /previews — all running previews."""
    cmd: Commands = request.app["cmd"]
    return _ok([r.to_dict() for r in cmd.cmd_preview_status()])


async def _handle_get_preview(request: web.Request) -> web.Response:
    """GET /previews/{alias}"""
    cmd: Commands = request.app["cmd"]
    records = cmd.cmd_preview_status(request.match_info["alias"])
    if not records:
        return _fail("Preview not found", 404)
    return _ok(records[0].to_dict())


async def _handle_start_preview(request: web.Request) -> web.Response:
    """POST /previews/{alias}/start"""
    cmd: Commands = request.app["cmd"]
    alias = request.match_info["alias"]
    directory = cmd.cmd_get_directory(alias)
    if not directory:
        return _fail("Working directory not found", 404)
    if not directory.preview_enabled:
        return _fail("Preview is not enabled for this directory", 400)
    if not directory.start_cmd:
        return _fail("No start command configured", 400)

    record = await cmd.cmd_start_preview(directory.alias)
    return _ok(record.to_dict())


async def _handle_stop_all(request: web.Request) -> web.Response:
    """POST /previews/stop-all"""
    cmd: Commands = request.app["cmd"]
    failures = await cmd.cmd_stop_all_previews()
    if failures:
        logger.warning("stop-all left %d preview(s) running", len(failures))
    return _ok()


async def _handle_stop_preview(request: web.Request) -> web.Response:
    """POST /previews/{alias}/stop"""
    cmd: Commands = request.app["cmd"]
    await cmd.cmd_stop_preview(request.match_info["alias"])
    return _ok()


# ---------------------------------------------------------------------------
# App factory & server class
# ---------------------------------------------------------------------------

def build_app(commands: Commands) -> web.Application:
    app = web.Application(middlewares=[_error_middleware])
    app["cmd"] = commands

    app.router.add_get("/health", _handle_health)

    app.router.add_get("/previews", _handle_list_previews)
    # stop-all must be registered before {alias}/stop
    app.router.add_post("/previews/stop-all", _handle_stop_all)
    app.router.add_get("/previews/{alias}", _handle_get_preview)
    app.router.add_post("/previews/{alias}/start", _handle_start_preview)
    app.router.add_post("/previews/{alias}/stop", _handle_stop_preview)

    return app


class WebControlPlane:
    """aiohttp-based web control plane server."""

    def __init__(
        self,
        commands: Commands,
        host: str = "127.0.0.1",
        port: int = 7777,
    ) -> None:
        self._app = build_app(commands)
        self._host = host
        self._port = port
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._host, self._port)
        await site.start()
        logger.info("Web control plane running at http://%s:%d", self._host, self._port)

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            logger.info("Web control plane stopped")
