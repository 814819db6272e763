"""Realtime transport backends and the factory that picks one."""

from ..config import get_ws_url
from ..transport import RealtimeTransport
from .memory import InMemoryTransport
from .socket_io import SocketIOTransport


def create_transport(url: str | None = None) -> RealtimeTransport:
    """Build the transport for ``url`` (defaults to the configured endpoint).

    ``memory://`` selects the in-process transport.
    """
    url = url or get_ws_url()
    if url.startswith("memory://"):
        return InMemoryTransport()
    return SocketIOTransport(url)
