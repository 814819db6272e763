"""Socket.IO transport backed by ``socketio.AsyncClient``.

The board server speaks Socket.IO: the client emits ``subscribe`` and
``unsubscribe`` with a bare session id, the server pushes per-session room
events plus ``global_*`` variants to everyone.
"""

import logging
from typing import Any

import socketio

from ..config import get_ws_url, load_token
from ..transport import INBOUND_EVENTS, RealtimeTransport

logger = logging.getLogger(__name__)


class SocketIOTransport(RealtimeTransport):
    """Production transport for the board's realtime endpoint."""

    name = "socketio"

    def __init__(self, url: str | None = None, *, reconnection: bool = True):
        super().__init__()
        self.url = _to_http_url(url or get_ws_url())
        self._sio = socketio.AsyncClient(reconnection=reconnection, logger=False)
        self._register_handlers()

    @property
    def connected(self) -> bool:
        return bool(self._sio.connected)

    @property
    def sid(self) -> str | None:
        return self._sio.sid

    async def _open(self) -> None:
        token = load_token()
        await self._sio.connect(
            self.url,
            transports=["websocket", "polling"],
            auth={"token": token} if token else None,
        )

    async def _close(self) -> None:
        if self._sio.connected:
            await self._sio.disconnect()

    async def _send(self, event: str, data: Any) -> None:
        await self._sio.emit(event, data)

    # ── Private helpers ──────────────────────────────────────────

    def _register_handlers(self) -> None:
        self._sio.on("connect", self._on_connect)
        self._sio.on("disconnect", self._on_disconnect)
        self._sio.on("connect_error", self._on_connect_error)
        for event in INBOUND_EVENTS:
            self._sio.on(event, self._make_handler(event))

    def _make_handler(self, event: str):
        async def handler(data=None):
            await self._dispatch(event, data)
        return handler

    async def _on_connect(self) -> None:
        logger.debug("Socket.IO connected with sid %s", self._sio.sid)
        await self._handle_connected()

    async def _on_disconnect(self, *args) -> None:
        await self._handle_disconnected(args[0] if args else None)

    async def _on_connect_error(self, data=None) -> None:
        # Explicit connect() attempts report their own failure; this covers
        # the client's background reconnection attempts.
        if self._connect_task is not None:
            return
        logger.warning("Socket.IO reconnection failed: %s", data)
        await self._notify("connect_error", ConnectionError(str(data)))


def _to_http_url(url: str) -> str:
    if url.startswith("wss://"):
        return "https://" + url[len("wss://"):]
    if url.startswith("ws://"):
        return "http://" + url[len("ws://"):]
    return url
