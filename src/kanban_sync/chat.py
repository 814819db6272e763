"""Chat view controller: binds the message store and transport to one session."""

import logging
import random
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

from .api import SessionApi
from .config import DEFAULT_HIDDEN_TYPES, save_hidden_types
from .core import Message, TEMP_PREFIX, utcnow
from .message_store import Direction, LoadResult, MessageStore
from .session_store import SessionRosterStore
from .transport import MessageEvent, RealtimeTransport

logger = logging.getLogger(__name__)

# Distance from the top, in pixels, that triggers loading older history.
SCROLL_LOAD_THRESHOLD = 100


@dataclass
class ScrollPosition:
    scroll_top: float
    scroll_height: float


class ChatViewController:
    """Per-session composition of store, transport and send API."""

    def __init__(
        self,
        store: MessageStore,
        transport: RealtimeTransport,
        api: SessionApi,
        roster: SessionRosterStore | None = None,
        hidden_types: set[str] | None = None,
    ):
        self.store = store
        self.transport = transport
        self.api = api
        self.roster = roster
        self.session_id: str | None = None
        self.hidden_types = set(DEFAULT_HIDDEN_TYPES if hidden_types is None else hidden_types)
        if roster is not None:
            roster.add_removal_listener(self._on_session_removed)

    # ── Lifecycle ────────────────────────────────────────────────

    async def mount(self, session_id: str) -> LoadResult:
        """Show ``session_id``: load history if needed and go live."""
        if self.session_id and self.session_id != session_id:
            await self.unmount()

        self.session_id = session_id
        needs_load = self.store.current_session_id != session_id or not self.store.is_initialized
        if needs_load:
            self.store.reset()

        await self.transport.subscribe(session_id)
        # on() ignores a handler that is already registered
        self.transport.on("message", self._handle_message)

        if not needs_load:
            return LoadResult.SKIPPED
        return await self.store.initialize_from_api(session_id)

    async def unmount(self) -> None:
        if self.session_id is None:
            return
        session_id, self.session_id = self.session_id, None
        await self.transport.unsubscribe(session_id)
        self.transport.off("message", self._handle_message)
        self.store.reset()

    async def _on_session_removed(self, session_id: str) -> None:
        if session_id == self.session_id:
            logger.info("Session %s was removed, closing its chat view", session_id)
            await self.unmount()

    def _handle_message(self, event: MessageEvent) -> None:
        if event.session_id != self.session_id:
            return
        fallback_id = f"ws-{int(time.time() * 1000)}-{random.random()}"
        self.store.add_message(event.to_message(fallback_id))

    # ── Sending ──────────────────────────────────────────────────

    async def send_message(self, content: str, session_active: bool = True) -> Message | None:
        """Echo ``content`` locally, then send it.

        The temporary message is replaced when the server's copy arrives over
        the transport. On failure it is marked failed and the error re-raised.
        """
        if not content.strip() or not session_active or self.session_id is None:
            return None

        session_id = self.session_id
        temp = Message(
            message_id=f"{TEMP_PREFIX}{int(time.time() * 1000)}-{random.random()}",
            session_id=session_id,
            type="user",
            content=content,
            timestamp=utcnow(),
            metadata={"status": "sending"},
        )
        self.store.add_message(temp)

        try:
            sent = await self.api.send_message(session_id, content)
        except Exception as e:
            logger.error("Error sending message to %s: %s", session_id, e)
            self.store.update_message_status(temp.message_id, "failed")
            raise

        if self.roster is not None:
            session = self.roster.get(session_id)
            count = session.message_count if session else None
            self.roster.apply_local_update(
                session_id,
                last_user_message=content,
                message_count=(count or 0) + 1,
            )
        self.store.update_message_status(temp.message_id, "sent")
        return sent

    # ── Infinite scroll ──────────────────────────────────────────

    async def on_scroll(
        self,
        position: ScrollPosition,
        measure_height: Callable[[], float | Awaitable[float]],
    ) -> float | None:
        """Load older history near the top and keep the viewport steady.

        Returns the scroll offset to restore, or None when nothing loaded.
        ``measure_height`` reports the content height after the new page
        has been rendered.
        """
        if position.scroll_top >= SCROLL_LOAD_THRESHOLD:
            return None
        if self.store.is_loading_more or not self.store.can_load_more(Direction.OLDER):
            return None

        result = await self.store.load_more_messages(Direction.OLDER)
        if result != LoadResult.LOADED:
            return None

        new_height = measure_height()
        if not isinstance(new_height, (int, float)):
            new_height = await new_height
        return position.scroll_top + (new_height - position.scroll_height)

    # ── Filtering ────────────────────────────────────────────────

    def set_hidden_types(self, types: set[str], persist: bool = True) -> None:
        """Change which message types are hidden, saving the choice by default."""
        self.hidden_types = set(types)
        if not persist:
            return
        try:
            save_hidden_types(self.hidden_types)
        except OSError as e:
            logger.warning("Failed to save message filter: %s", e)

    def visible_messages(self) -> tuple[list[Message], int]:
        """Return the sorted visible messages and how many were filtered out."""
        messages = self.store.get_sorted_messages()
        visible = [m for m in messages if m.type not in self.hidden_types]
        return visible, len(messages) - len(visible)
