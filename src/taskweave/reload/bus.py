# src/taskweave/reload/bus.py

from __future__ import annotations

"""
Reload bus.

Tracks connected development clients and pushes reload notifications to them.
Transport agnostic: every client gets a small bounded mailbox; a transport
(the WebSocket endpoint in server.py) drains it and writes to the wire.

Delivery is fire-and-forget. A client whose mailbox is full or that already
disconnected is dropped instead of retried: a reload notice is advisory and
the next one supersedes it.
"""

import asyncio
import contextlib
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Iterable

logger = logging.getLogger(__name__)


class ReloadScope(StrEnum):
    NONE = "none"
    FULL = "full"
    STYLE = "style"


@dataclass(frozen=True, slots=True)
class ReloadMessage:
    scope: ReloadScope
    paths: tuple[str, ...] = ()
    sent_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "reload",
            "scope": self.scope.value,
            "paths": list(self.paths),
            "sent_at": self.sent_at,
        }


class ClientHandle:
    """One connected client as seen by the bus."""

    def __init__(self, *, supports_style: bool = True, mailbox_size: int = 16) -> None:
        self.id = uuid.uuid4().hex
        self.supports_style = supports_style
        self._mailbox: asyncio.Queue[ReloadMessage] = asyncio.Queue(maxsize=max(1, mailbox_size))
        self._connected = True
        # The transport reads the mailbox on this loop; broadcasts may come from other threads.
        try:
            self._loop: asyncio.AbstractEventLoop | None = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None

    @property
    def connected(self) -> bool:
        return self._connected

    def _deliver(self, message: ReloadMessage) -> bool:
        if not self._connected or self._mailbox.full():
            return False
        loop = self._loop
        if loop is None or _running_loop() is loop:
            self._mailbox.put_nowait(message)
            return True
        if loop.is_closed():
            return False
        loop.call_soon_threadsafe(self._put, message)
        return True

    def _put(self, message: ReloadMessage) -> None:
        # Two cross-thread deliveries can race for the last slot; the later notice is dropped.
        with contextlib.suppress(asyncio.QueueFull):
            self._mailbox.put_nowait(message)

    def _close(self) -> None:
        self._connected = False

    def pending(self) -> int:
        return self._mailbox.qsize()

    def poll(self) -> ReloadMessage | None:
        """Non-blocking read; None when the mailbox is empty."""
        try:
            return self._mailbox.get_nowait()
        except asyncio.QueueEmpty:
            return None

    async def next(self) -> ReloadMessage:
        return await self._mailbox.get()

    def __aiter__(self) -> "ClientHandle":
        return self

    async def __anext__(self) -> ReloadMessage:
        if not self._connected and self._mailbox.empty():
            raise StopAsyncIteration
        return await self._mailbox.get()

    def __repr__(self) -> str:
        return f"ClientHandle(id={self.id[:8]}, style={self.supports_style}, connected={self._connected})"


class ReloadBus:
    def __init__(self, *, mailbox_size: int = 16) -> None:
        self._mailbox_size = mailbox_size
        self._clients: dict[str, ClientHandle] = {}
        # Connects/disconnects come from transport handlers, broadcasts from finished builds.
        self._lock = threading.Lock()

    def connect(self, *, supports_style: bool = True) -> ClientHandle:
        handle = ClientHandle(supports_style=supports_style, mailbox_size=self._mailbox_size)
        with self._lock:
            self._clients[handle.id] = handle
            count = len(self._clients)
        logger.info("Reload client connected: %s (%d connected)", handle.id[:8], count)
        return handle

    def disconnect(self, handle: ClientHandle) -> None:
        with self._lock:
            removed = self._clients.pop(handle.id, None)
            count = len(self._clients)
        handle._close()
        if removed is not None:
            logger.info("Reload client disconnected: %s (%d connected)", handle.id[:8], count)

    def broadcast(self, scope: ReloadScope, paths: Iterable[str] = ()) -> int:
        """
        Notify every connected client. Returns how many were reached.

        STYLE goes out as FULL to clients that cannot swap stylesheets in place.
        """
        scope = ReloadScope(scope)
        if scope is ReloadScope.NONE:
            return 0

        paths = tuple(paths)
        style_msg = ReloadMessage(scope, paths)
        full_msg = style_msg if scope is ReloadScope.FULL else ReloadMessage(ReloadScope.FULL, paths)

        delivered = 0
        with self._lock:
            dropped: list[ClientHandle] = []
            for handle in self._clients.values():
                message = style_msg if handle.supports_style else full_msg
                if handle._deliver(message):
                    delivered += 1
                else:
                    dropped.append(handle)
            for handle in dropped:
                self._clients.pop(handle.id, None)
                handle._close()

        for handle in dropped:
            logger.debug("Dropped unresponsive reload client %s", handle.id[:8])
        logger.info("Reloading browsers (%s): %d client(s)", scope.value, delivered)
        return delivered

    def clients(self) -> list[ClientHandle]:
        with self._lock:
            return list(self._clients.values())

    def is_connected(self, handle: ClientHandle) -> bool:
        with self._lock:
            return handle.id in self._clients

    def close(self) -> None:
        with self._lock:
            handles = list(self._clients.values())
            self._clients.clear()
        for handle in handles:
            handle._close()

    def __len__(self) -> int:
        with self._lock:
            return len(self._clients)


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None
