"""Session roster: the full list of sessions, patched live from realtime events."""

import asyncio
import inspect
import logging
from dataclasses import replace
from typing import Callable

from .api import SessionApi
from .core import (
    COMPLETED_LIKE,
    CreateSessionRequest,
    Session,
    SessionStatus,
    SystemStats,
    map_status,
    parse_timestamp,
    utcnow,
)
from .transport import RealtimeTransport

logger = logging.getLogger(__name__)


class SessionRosterStore:
    """Holds every session and keeps it in step with the server.

    REST actions apply a minimal local patch instead of reloading. Realtime
    handlers are registered by :meth:`attach`.
    """

    def __init__(self, api: SessionApi, transport: RealtimeTransport | None = None):
        self.api = api
        self.transport = transport
        self.sessions: list[Session] = []
        self.system_stats: SystemStats | None = None
        self.loading = False
        self.error: str | None = None
        self._removal_listeners: list[Callable] = []
        self._handlers = {
            "status_update": self._on_status_update,
            "global_status_update": self._on_status_update,
            "process_exit": self._on_process_exit,
            "global_process_exit": self._on_process_exit,
            "session_updated": self._on_session_updated,
        }

    # ── Realtime wiring ──────────────────────────────────────────

    def attach(self) -> None:
        if self.transport is None:
            return
        for event, handler in self._handlers.items():
            self.transport.on(event, handler)

    def detach(self) -> None:
        if self.transport is None:
            return
        for event, handler in self._handlers.items():
            self.transport.off(event, handler)

    def add_removal_listener(self, callback: Callable[[str], object]) -> None:
        """Register ``callback(session_id)`` for sessions leaving the roster."""
        if callback not in self._removal_listeners:
            self._removal_listeners.append(callback)

    def remove_removal_listener(self, callback: Callable[[str], object]) -> None:
        if callback in self._removal_listeners:
            self._removal_listeners.remove(callback)

    async def _notify_removed(self, session_ids) -> None:
        for session_id in session_ids:
            for callback in list(self._removal_listeners):
                try:
                    result = callback(session_id)
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    logger.error("Error in removal listener for %s: %s", session_id, e)

    # ── Queries ──────────────────────────────────────────────────

    def get(self, session_id: str) -> Session | None:
        return next((s for s in self.sessions if s.session_id == session_id), None)

    @property
    def sessions_by_status(self) -> dict[SessionStatus, list[Session]]:
        return {
            status: [s for s in self.sessions if s.status == status]
            for status in SessionStatus
        }

    # ── REST actions ─────────────────────────────────────────────

    async def load_sessions(self) -> None:
        """Replace the roster and system stats with the server's view."""
        self.loading = True
        self.error = None
        try:
            sessions, stats = await asyncio.gather(
                self.api.get_all_sessions(),
                self.api.get_system_stats(),
            )
        except Exception as e:
            self.error = str(e) or "Failed to load sessions"
            logger.error("Error loading sessions: %s", e)
            return
        finally:
            self.loading = False

        previous = {s.session_id for s in self.sessions}
        self.sessions = sessions
        self.system_stats = stats
        current = {s.session_id for s in sessions}
        await self._notify_removed(sorted(previous - current))

    async def create_session(self, request: CreateSessionRequest) -> Session:
        session = await self._call("create session", self.api.create_session(request))
        self.sessions.insert(0, session)
        return session

    async def complete_session(self, session_id: str) -> Session:
        """Complete a session and surface it first in the completed group."""
        updated = await self._call("complete session", self.api.complete_session(session_id))
        if self.get(session_id) is None:
            return updated

        result = []
        inserted = False
        for s in self.sessions:
            if s.session_id == session_id:
                continue
            if not inserted and s.status in COMPLETED_LIKE:
                result.append(updated)
                inserted = True
            result.append(s)
        if not inserted:
            result.append(updated)

        self.sessions = result
        return updated

    async def interrupt_session(self, session_id: str) -> Session:
        updated = await self._call("interrupt session", self.api.interrupt_session(session_id))
        self._replace(updated)
        return updated

    async def resume_session(self, session_id: str) -> Session:
        updated = await self._call("resume session", self.api.resume_session(session_id))
        self._replace(updated)
        return updated

    async def delete_session(self, session_id: str) -> None:
        await self._call("delete session", self.api.delete_session(session_id))
        self.sessions = [s for s in self.sessions if s.session_id != session_id]
        await self._notify_removed([session_id])

    async def reorder_sessions_by_status(self, status: SessionStatus, reordered: list[Session]) -> None:
        """Apply a new order within one status bucket, then persist it.

        Sessions of other statuses keep their slots; the bucket's slots are
        refilled from ``reordered`` in order. A failed save is only logged
        and the local order stays.
        """
        status = SessionStatus(status)
        others = iter([s for s in self.sessions if s.status != status])
        bucket = iter(reordered)

        result = []
        for s in self.sessions:
            source = bucket if s.status == status else others
            nxt = next(source, None)
            if nxt is not None:
                result.append(nxt)
        self.sessions = result

        try:
            await self.api.reorder_sessions(status, [s.session_id for s in reordered])
        except Exception as e:
            logger.error("Failed to save session order: %s", e)

    async def _call(self, action: str, coro):
        self.error = None
        try:
            return await coro
        except Exception as e:
            self.error = str(e) or f"Failed to {action}"
            raise

    def _replace(self, updated: Session) -> None:
        self.sessions = [updated if s.session_id == updated.session_id else s for s in self.sessions]

    # ── Local patches ────────────────────────────────────────────

    def update_session_status(self, session_id: str, status: SessionStatus) -> None:
        self.sessions = [
            replace(
                s,
                status=status,
                updated_at=utcnow(),
                error=s.error if status == SessionStatus.ERROR else None,
            )
            if s.session_id == session_id else s
            for s in self.sessions
        ]

    def apply_local_update(self, session_id: str, **fields) -> None:
        """Patch fields of one session without a server round trip."""
        self.sessions = [
            replace(s, **fields) if s.session_id == session_id else s
            for s in self.sessions
        ]

    # ── Realtime handlers ────────────────────────────────────────

    def _on_status_update(self, data: dict) -> None:
        status = map_status(data.get("status"))
        if status is None:
            logger.debug("Ignoring unmapped status %r for %s", data.get("status"), data.get("sessionId"))
            return
        self.update_session_status(data.get("sessionId", ""), status)

    def _on_process_exit(self, data: dict) -> None:
        # A clean exit is not completion; idle arrives as a status update.
        if data.get("code") != 0:
            self.update_session_status(data.get("sessionId", ""), SessionStatus.ERROR)

    def _on_session_updated(self, data: dict) -> None:
        session = self.get(data.get("sessionId", ""))
        if session is None:
            return
        last_user_message = data.get("lastUserMessage")
        message_count = data.get("messageCount")
        self.apply_local_update(
            session.session_id,
            last_user_message=session.last_user_message if last_user_message is None else last_user_message,
            message_count=session.message_count if message_count is None else message_count,
            updated_at=parse_timestamp(data.get("updatedAt")) or session.updated_at,
        )
