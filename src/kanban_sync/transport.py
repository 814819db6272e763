"""Abstract realtime transport and inbound event normalization.

Every concrete transport (Socket.IO, in-memory) shares one listener registry,
one subscription set and one normalization path, so consumers only ever see
the canonical events:

- ``message``: a :class:`MessageEvent`. The wire events ``message``,
  ``assistant``, ``user``, ``system``, ``tool_use``, ``thinking`` and
  ``output`` all collapse into it, the wire name kept as ``type``.
- ``error``: an :class:`ErrorEvent`.
- ``status_update``, ``global_status_update``, ``session_updated``,
  ``process_started``, ``process_exit``, ``global_process_exit``: the raw
  payload dict, only stamped with a timestamp when it lacks one.
- ``connect``, ``disconnect``, ``connect_error``: connection lifecycle.
"""

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

from .core import Message, parse_timestamp, utcnow

logger = logging.getLogger(__name__)

MESSAGE_EVENTS = ("message", "assistant", "user", "system", "tool_use", "thinking", "output")

PASSTHROUGH_EVENTS = (
    "status_update",
    "global_status_update",
    "session_updated",
    "process_started",
    "process_exit",
    "global_process_exit",
)

INBOUND_EVENTS = MESSAGE_EVENTS + PASSTHROUGH_EVENTS + ("error",)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass
class MessageEvent:
    """Canonical shape of every inbound chat message."""

    session_id: str
    type: str
    content: str
    timestamp: datetime
    metadata: dict = field(default_factory=dict)
    message_id: Optional[str] = None  # absent when the server did not assign one

    def to_message(self, fallback_id: str) -> Message:
        return Message(
            message_id=self.message_id or fallback_id,
            session_id=self.session_id,
            type=self.type,
            content=self.content,
            timestamp=self.timestamp,
            metadata=dict(self.metadata),
        )


@dataclass
class ErrorEvent:
    session_id: str
    error: str
    timestamp: datetime
    error_type: Optional[str] = None
    details: Optional[dict] = None


def safe_timestamp(value: Any) -> datetime:
    """Parse a wire timestamp, falling back to now."""
    return parse_timestamp(value) or utcnow()


def normalize_message(event: str, data: Any) -> MessageEvent | None:
    """Collapse one of the message-family wire events into a MessageEvent."""
    if not isinstance(data, dict):
        logger.warning("Invalid %s data received: %r", event, data)
        return None

    if event == "message":
        msg_type = data.get("type") or "message"
    else:
        msg_type = event

    return MessageEvent(
        session_id=data.get("sessionId") or "",
        type=msg_type,
        content=data.get("content") or "",
        timestamp=safe_timestamp(data.get("timestamp")),
        metadata=dict(data.get("metadata") or {}),
        message_id=data.get("messageId") or None,
    )


def normalize_error(data: Any) -> ErrorEvent | None:
    if not isinstance(data, dict):
        logger.warning("Invalid error data received: %r", data)
        return None

    return ErrorEvent(
        session_id=data.get("sessionId") or "",
        error=data.get("error") or "Unknown error",
        timestamp=safe_timestamp(data.get("timestamp")),
        error_type=data.get("errorType"),
        details=data.get("details"),
    )


def normalize_passthrough(event: str, data: Any) -> dict | None:
    if not isinstance(data, dict):
        logger.warning("Invalid %s data received: %r", event, data)
        return None

    if parse_timestamp(data.get("timestamp")) is None:
        data = {**data, "timestamp": utcnow()}
    return data


class RealtimeTransport(ABC):
    """Base class for realtime transports.

    Subclasses provide the wire (``_open``, ``_close``, ``_send`` and
    ``connected``) and report inbound traffic through ``_dispatch``,
    ``_handle_connected`` and ``_handle_disconnected``.
    """

    name: str  # "socketio", "memory"

    def __init__(self) -> None:
        self._listeners: dict[str, list[Callable]] = {}
        self._subscriptions: set[str] = set()
        self._connect_task: asyncio.Task | None = None
        self.last_error: Exception | None = None

    # ── Wire ─────────────────────────────────────────────────────

    @property
    @abstractmethod
    def connected(self) -> bool:
        """Return True while the underlying connection is up."""
        ...

    @abstractmethod
    async def _open(self) -> None:
        """Open the connection; return once connected or raise."""
        ...

    @abstractmethod
    async def _close(self) -> None:
        ...

    @abstractmethod
    async def _send(self, event: str, data: Any) -> None:
        ...

    # ── Connection ───────────────────────────────────────────────

    @property
    def state(self) -> ConnectionState:
        if self.connected:
            return ConnectionState.CONNECTED
        if self._connect_task is not None:
            return ConnectionState.CONNECTING
        return ConnectionState.DISCONNECTED

    @property
    def subscriptions(self) -> frozenset[str]:
        return frozenset(self._subscriptions)

    async def connect(self) -> None:
        """Connect, or join the attempt already in flight.

        A failure is raised to every caller waiting on the attempt and leaves
        the transport disconnected, so the next call retries.
        """
        if self.connected:
            return

        if self._connect_task is None:
            task = asyncio.ensure_future(self._attempt_connect())
            task.add_done_callback(self._clear_connect_task)
            self._connect_task = task

        await asyncio.shield(self._connect_task)

    def _clear_connect_task(self, task: asyncio.Task) -> None:
        if self._connect_task is task:
            self._connect_task = None
        if not task.cancelled():
            # Retrieve so an unawaited failure is not reported as never retrieved.
            task.exception()

    async def _attempt_connect(self) -> None:
        try:
            await self._open()
        except Exception as e:
            self.last_error = e
            logger.error("Realtime connection failed: %s", e)
            await self._notify("connect_error", e)
            raise
        self.last_error = None

    async def disconnect(self) -> None:
        """Close the connection and forget every subscription."""
        await self._close()
        self._subscriptions.clear()

    async def _handle_connected(self) -> None:
        """Resubscribe everything recorded before the (re)connect."""
        logger.info("Realtime transport %s connected", self.name)
        for session_id in sorted(self._subscriptions):
            await self._send("subscribe", session_id)
        await self._notify("connect")

    async def _handle_disconnected(self, reason: Any = None) -> None:
        logger.info("Realtime transport %s disconnected: %s", self.name, reason)
        await self._notify("disconnect", reason)

    # ── Subscriptions ────────────────────────────────────────────

    async def subscribe(self, session_id: str) -> bool:
        if not self.connected:
            logger.warning("Cannot subscribe to %s: not connected", session_id)
            return False

        self._subscriptions.add(session_id)
        await self._send("subscribe", session_id)
        logger.debug("Subscribed to session %s", session_id)
        return True

    async def unsubscribe(self, session_id: str) -> bool:
        if not self.connected:
            logger.warning("Cannot unsubscribe from %s: not connected", session_id)
            return False

        self._subscriptions.discard(session_id)
        await self._send("unsubscribe", session_id)
        logger.debug("Unsubscribed from session %s", session_id)
        return True

    # ── Listeners ────────────────────────────────────────────────

    def on(self, event: str, handler: Callable) -> None:
        handlers = self._listeners.setdefault(event, [])
        if handler not in handlers:
            handlers.append(handler)

    def off(self, event: str, handler: Callable) -> None:
        handlers = self._listeners.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    async def _notify(self, event: str, *args: Any) -> None:
        for handler in list(self._listeners.get(event, [])):
            try:
                result = handler(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("Error in %s listener %r: %s", event, handler, e)

    # ── Inbound ──────────────────────────────────────────────────

    async def _dispatch(self, event: str, data: Any) -> None:
        """Normalize one inbound wire event and fan it out."""
        if event in MESSAGE_EVENTS:
            payload = normalize_message(event, data)
            if payload is not None:
                await self._notify("message", payload)
        elif event == "error":
            error = normalize_error(data)
            if error is not None:
                await self._notify("error", error)
        elif event in PASSTHROUGH_EVENTS:
            payload = normalize_passthrough(event, data)
            if payload is not None:
                await self._notify(event, payload)
        else:
            logger.debug("Ignoring unknown realtime event %s", event)
