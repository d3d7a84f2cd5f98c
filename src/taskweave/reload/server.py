# src/taskweave/reload/server.py

from __future__ import annotations

"""
Development server.

- serves the project's static root,
- injects the reload client script into HTML pages,
- exposes the ReloadBus over a WebSocket.

Runs uvicorn inside the caller's event loop so the Watcher and the server
share one loop (and one ReloadBus).
"""

import asyncio
import contextlib
import logging
import re
from pathlib import Path
from typing import Iterator

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import FileResponse, HTMLResponse, Response
from fastapi.staticfiles import StaticFiles

from .bus import ClientHandle, ReloadBus

logger = logging.getLogger(__name__)

WS_PATH = "/__taskweave/ws"
CLIENT_PATH = "/__taskweave/client.js"
CLIENT_TAG = f'<script src="{CLIENT_PATH}" async></script>'

_BODY_CLOSE = re.compile(r"</body\s*>", re.IGNORECASE)

CLIENT_JS = """\
(function () {
  var proto = location.protocol === "https:" ? "wss://" : "ws://";
  var url = proto + location.host + "%(ws_path)s";

  function swapStyles() {
    var links = document.querySelectorAll('link[rel="stylesheet"]');
    var stamp = "tw=" + Date.now();
    for (var i = 0; i < links.length; i++) {
      var href = links[i].href.replace(/([?&])tw=\\d+&?/, "$1").replace(/[?&]$/, "");
      links[i].href = href + (href.indexOf("?") >= 0 ? "&" : "?") + stamp;
    }
  }

  function connect() {
    var ws = new WebSocket(url);
    ws.onmessage = function (event) {
      var msg = JSON.parse(event.data);
      if (msg.type !== "reload") { return; }
      if (msg.scope === "style") { swapStyles(); } else { location.reload(); }
    };
    ws.onclose = function () { setTimeout(connect, 1000); };
  }

  connect();
})();
""" % {"ws_path": WS_PATH}


def inject_client(html: str) -> str:
    """Insert the reload client tag before the last </body> (or append it)."""
    matches = list(_BODY_CLOSE.finditer(html))
    if not matches:
        return html + CLIENT_TAG
    pos = matches[-1].start()
    return html[:pos] + CLIENT_TAG + html[pos:]


class LiveReloadStaticFiles(StaticFiles):
    """StaticFiles that adds the reload client to every HTML page it serves."""

    async def get_response(self, path: str, scope) -> Response:
        response = await super().get_response(path, scope)
        if (
            isinstance(response, FileResponse)
            and response.status_code == 200
            and str(response.path).lower().endswith((".html", ".htm"))
        ):
            text = await asyncio.to_thread(Path(response.path).read_text, "utf-8", "replace")
            return HTMLResponse(inject_client(text))
        return response


async def _pump(websocket: WebSocket, bus: ReloadBus, handle: ClientHandle) -> None:
    """Write reload notices until the bus lets go of the handle."""
    try:
        async for message in handle:
            await websocket.send_json(message.to_dict())
    except (WebSocketDisconnect, RuntimeError):
        # Socket went away between two notifications.
        logger.debug("Reload client %s gone while sending", handle.id[:8])
        bus.disconnect(handle)


async def _drain(websocket: WebSocket) -> None:
    # Clients do not send anything meaningful; this only detects disconnects.
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass


async def serve_client(websocket: WebSocket, bus: ReloadBus) -> None:
    """
    Bridge one WebSocket to the bus until either side goes away.

    When the bus drops the client (full mailbox) the socket is closed, so the
    browser script notices and reconnects with a fresh handle.
    """
    await websocket.accept()
    # Clients that cannot swap stylesheets connect with ?style=0.
    supports_style = websocket.query_params.get("style", "1") != "0"
    handle = bus.connect(supports_style=supports_style)
    await websocket.send_json({"type": "hello", "id": handle.id, "style": supports_style})

    pump = asyncio.create_task(_pump(websocket, bus, handle))
    reader = asyncio.create_task(_drain(websocket))
    try:
        done, _ = await asyncio.wait({pump, reader}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        bus.disconnect(handle)
        for task in (pump, reader):
            task.cancel()
        await asyncio.gather(pump, reader, return_exceptions=True)

    if reader not in done:
        logger.info("Closing reload client %s", handle.id[:8])
        with contextlib.suppress(WebSocketDisconnect, RuntimeError):
            await websocket.close()


def create_app(bus: ReloadBus, root: Path | None = None) -> FastAPI:
    app = FastAPI(title="taskweave dev server", docs_url=None, redoc_url=None, openapi_url=None)

    @app.get(CLIENT_PATH)
    async def client_script() -> Response:
        return Response(CLIENT_JS, media_type="application/javascript")

    @app.websocket(WS_PATH)
    async def reload_socket(websocket: WebSocket) -> None:
        await serve_client(websocket, bus)

    if root is not None:
        app.mount("/", LiveReloadStaticFiles(directory=str(root), html=True), name="static")

    return app


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the CLI."""

    def install_signal_handlers(self) -> None:
        return None

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


class DevServer:
    def __init__(self, bus: ReloadBus, root: Path | None, *, host: str = "127.0.0.1", port: int = 3000) -> None:
        self.app = create_app(bus, root)
        self.host = host
        self.port = port
        config = uvicorn.Config(self.app, host=host, port=port, log_config=None, lifespan="off")
        self._server = _EmbeddedServer(config)
        self._task: asyncio.Task | None = None

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}/"

    async def start(self) -> None:
        self._task = asyncio.create_task(self._server.serve(), name="taskweave-devserver")
        logger.info("Serving at %s", self.url)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._server.should_exit = True
        try:
            await self._task
        finally:
            self._task = None
