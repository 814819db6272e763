"""In-process transport with no network underneath.

Server traffic is simulated with :meth:`InMemoryTransport.inject`; everything
the client emits is recorded in :attr:`InMemoryTransport.sent`.
"""

import logging
from typing import Any

from ..transport import RealtimeTransport

logger = logging.getLogger(__name__)


class InMemoryTransport(RealtimeTransport):
    """Transport used by tests and for replaying captured event streams."""

    name = "memory"

    def __init__(self) -> None:
        super().__init__()
        self._connected = False
        self.sent: list[tuple[str, Any]] = []
        self.connect_attempts = 0
        self.fail_next: Exception | None = None
        self.gate = None  # optional asyncio.Event that _open waits on

    @property
    def connected(self) -> bool:
        return self._connected

    async def _open(self) -> None:
        self.connect_attempts += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_next is not None:
            error, self.fail_next = self.fail_next, None
            raise error
        self._connected = True
        await self._handle_connected()

    async def _close(self) -> None:
        if self._connected:
            self._connected = False
            await self._handle_disconnected("client disconnect")

    async def _send(self, event: str, data: Any) -> None:
        self.sent.append((event, data))

    async def inject(self, event: str, data: Any = None) -> None:
        """Deliver one server event as if it came off the wire."""
        await self._dispatch(event, data)

    async def drop(self, reason: str = "transport close") -> None:
        """Simulate the server dropping the connection."""
        self._connected = False
        await self._handle_disconnected(reason)
