# tests/test_reload_server.py

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from taskweave.reload.bus import ReloadBus, ReloadScope
from taskweave.reload.server import CLIENT_PATH, CLIENT_TAG, WS_PATH, DevServer, create_app, inject_client, serve_client


@pytest.fixture()
def site(tmp_path: Path) -> Path:
    root = tmp_path / "_dev"
    (root / "assets").mkdir(parents=True)
    (root / "index.html").write_text("<html><body><h1>Hi</h1></body></html>", "utf-8")
    (root / "assets" / "site.css").write_text("h1 { color: red; }", "utf-8")
    return root


def test_inject_client_before_last_body_close() -> None:
    html = "<body><pre></body></pre></BODY>"
    out = inject_client(html)
    assert out == "<body><pre></body></pre>" + CLIENT_TAG + "</BODY>"


def test_inject_client_appends_without_body() -> None:
    assert inject_client("<p>fragment</p>") == "<p>fragment</p>" + CLIENT_TAG


def test_client_script_is_served() -> None:
    client = TestClient(create_app(ReloadBus()))
    resp = client.get(CLIENT_PATH)
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("application/javascript")
    assert WS_PATH in resp.text


def test_html_pages_get_the_client_injected(site: Path) -> None:
    client = TestClient(create_app(ReloadBus(), site))

    page = client.get("/")
    assert page.status_code == 200
    assert CLIENT_TAG in page.text
    assert page.text.index(CLIENT_TAG) < page.text.lower().index("</body>")

    css = client.get("/assets/site.css")
    assert css.status_code == 200
    assert css.text == "h1 { color: red; }"

    assert client.get("/missing.html").status_code == 404


def test_websocket_receives_broadcasts() -> None:
    bus = ReloadBus()
    client = TestClient(create_app(bus))

    with client.websocket_connect(WS_PATH) as ws:
        hello = ws.receive_json()
        assert hello["type"] == "hello"
        assert hello["style"] is True
        assert len(bus) == 1

        bus.broadcast(ReloadScope.STYLE, ["assets/site.css"])
        msg = ws.receive_json()
        assert msg["type"] == "reload"
        assert msg["scope"] == "style"
        assert msg["paths"] == ["assets/site.css"]


def test_websocket_without_style_support_gets_full_reload() -> None:
    bus = ReloadBus()
    client = TestClient(create_app(bus))

    with client.websocket_connect(WS_PATH + "?style=0") as ws:
        assert ws.receive_json()["style"] is False
        bus.broadcast(ReloadScope.STYLE, ["a.css"])
        assert ws.receive_json()["scope"] == "full"


def test_closing_the_socket_removes_the_client() -> None:
    bus = ReloadBus()
    client = TestClient(create_app(bus))

    with client.websocket_connect(WS_PATH) as ws:
        client_id = ws.receive_json()["id"]
        assert [h.id for h in bus.clients()] == [client_id]

    # The endpoint's finally-block runs before the test client returns.
    assert len(bus) == 0
    assert bus.broadcast(ReloadScope.FULL) == 0


def test_dev_server_url() -> None:
    server = DevServer(ReloadBus(), None, host="127.0.0.1", port=4123)
    assert server.url == "http://127.0.0.1:4123/"


class FakeSocket:
    """Just enough of starlette's WebSocket for serve_client()."""

    def __init__(self) -> None:
        self.query_params: dict[str, str] = {}
        self.sent: list[dict] = []
        self.closed = False
        self._gone = asyncio.Event()

    async def accept(self) -> None:
        pass

    async def send_json(self, data: dict) -> None:
        await asyncio.sleep(0.01)
        self.sent.append(data)

    async def receive_text(self) -> str:
        await self._gone.wait()
        raise WebSocketDisconnect(1000)

    async def close(self, code: int = 1000) -> None:
        self.closed = True
        self._gone.set()

    def disconnect(self) -> None:
        self._gone.set()


async def _connected(bus: ReloadBus) -> None:
    for _ in range(100):
        if len(bus):
            return
        await asyncio.sleep(0.01)
    raise AssertionError("client never connected")


@pytest.mark.asyncio
async def test_dropped_client_socket_is_closed() -> None:
    bus = ReloadBus(mailbox_size=1)
    ws = FakeSocket()
    task = asyncio.create_task(serve_client(ws, bus))
    await _connected(bus)

    # Second notice overflows the one-slot mailbox before the pump can send.
    bus.broadcast(ReloadScope.FULL)
    bus.broadcast(ReloadScope.FULL)

    await asyncio.wait_for(task, timeout=1.0)
    assert len(bus) == 0
    assert ws.closed
    assert ws.sent[0]["type"] == "hello"


@pytest.mark.asyncio
async def test_client_disconnect_leaves_socket_to_the_peer() -> None:
    bus = ReloadBus()
    ws = FakeSocket()
    task = asyncio.create_task(serve_client(ws, bus))
    await _connected(bus)

    ws.disconnect()

    await asyncio.wait_for(task, timeout=1.0)
    assert len(bus) == 0
    assert not ws.closed
