"""Deduplicated, time-ordered message store for the open session.

History comes from the REST API page by page; live messages come from the
realtime transport. Both land here, and the rules in :meth:`MessageStore.add_message`
keep the optimistic local echo of a send, the server's confirmation of it
and overlapping history pages from rendering twice.
"""

import logging
from enum import Enum
from typing import Callable

from .api import SessionApi
from .config import PAGE_SIZE
from .core import Message, Pagination, to_epoch_ms, utcnow

logger = logging.getLogger(__name__)

# Same type and content this close together is the same message.
DUPLICATE_WINDOW_MS = 100


class LoadState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    ERROR = "error"


class LoadResult(str, Enum):
    LOADED = "loaded"
    SKIPPED = "skipped"  # same session already loaded or loading
    FAILED = "failed"
    ABANDONED = "abandoned"  # store was reset or switched while fetching
    NO_SESSION = "no_session"
    BUSY = "busy"  # another page fetch is in flight
    NO_MORE = "no_more"


class AddResult(str, Enum):
    ADDED = "added"
    REPLACED_TEMPORARY = "replaced_temporary"
    WRONG_SESSION = "wrong_session"
    DUPLICATE_ID = "duplicate_id"
    STALE = "stale"
    DUPLICATE_CONTENT = "duplicate_content"


class Direction(str, Enum):
    OLDER = "older"
    NEWER = "newer"


class MessageStore:
    """Authoritative message collection for one session at a time."""

    def __init__(self, api: SessionApi, page_size: int = PAGE_SIZE):
        self.api = api
        self.page_size = page_size
        self._listeners: list[Callable[["MessageStore"], None]] = []
        self._generation = 0
        self._clear()

    def _clear(self) -> None:
        self.messages: dict[str, Message] = {}
        self.current_session_id: str | None = None
        self.state = LoadState.IDLE
        self.is_loading_more = False
        self.last_sync_time: int | None = None  # epoch ms
        self.error: Exception | None = None
        self.pagination = Pagination()

    @property
    def is_initialized(self) -> bool:
        return self.state == LoadState.LOADED

    @property
    def is_loading(self) -> bool:
        return self.state == LoadState.LOADING

    # ── Listeners ────────────────────────────────────────────────

    def add_listener(self, callback: Callable[["MessageStore"], None]) -> None:
        if callback not in self._listeners:
            self._listeners.append(callback)

    def remove_listener(self, callback: Callable[["MessageStore"], None]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _changed(self) -> None:
        for callback in list(self._listeners):
            try:
                callback(self)
            except Exception as e:
                logger.error("Error in message store listener %r: %s", callback, e)

    # ── Loading ──────────────────────────────────────────────────

    async def initialize_from_api(self, session_id: str) -> LoadResult:
        """Load the most recent page of history for ``session_id``.

        The first page tells us how many pages exist; when there is more
        than one, the last page is fetched instead so the newest messages
        show first.
        """
        if self.current_session_id == session_id and self.state in (LoadState.LOADING, LoadState.LOADED):
            logger.debug("Skipping duplicate initialization for session %s", session_id)
            return LoadResult.SKIPPED

        if self.current_session_id is not None and self.current_session_id != session_id:
            logger.debug("Switching message store from %s to %s", self.current_session_id, session_id)
            self.reset()

        generation = self._generation
        self.current_session_id = session_id
        self.state = LoadState.LOADING
        self.error = None
        self._changed()

        try:
            page = await self.api.get_messages(session_id, 1, self.page_size)
            total_pages = page.pagination.total_pages
            if total_pages > 1:
                page = await self.api.get_messages(session_id, total_pages, self.page_size)
        except Exception as e:
            if not self._still_current(generation, session_id):
                return LoadResult.ABANDONED
            logger.error("Failed to load messages for %s: %s", session_id, e)
            self.state = LoadState.ERROR
            self.error = e
            self._changed()
            return LoadResult.FAILED

        if not self._still_current(generation, session_id):
            logger.debug("Discarding history for abandoned session %s", session_id)
            return LoadResult.ABANDONED

        # Realtime messages for this session that arrived while fetching are kept.
        self.messages = {k: m for k, m in self.messages.items() if m.session_id == session_id}
        for msg in page.messages:
            self.messages.setdefault(msg.message_id, msg)

        loaded_page = total_pages if total_pages > 1 else 1
        self.state = LoadState.LOADED
        self.last_sync_time = to_epoch_ms(utcnow())
        self.error = None
        self.pagination = Pagination(
            current_page=loaded_page,
            total_pages=page.pagination.total_pages,
            total_messages=page.pagination.total,
            has_more=total_pages > 1,
            loaded_pages={loaded_page},
        )
        logger.info(
            "Initialized %d messages from page %d of %d for session %s",
            len(page.messages), loaded_page, total_pages, session_id,
        )
        self._changed()
        return LoadResult.LOADED

    def can_load_more(self, direction: Direction | str) -> bool:
        loaded = self.pagination.loaded_pages
        if not loaded:
            return False
        if Direction(direction) == Direction.OLDER:
            return min(loaded) > 1
        return max(loaded) < self.pagination.total_pages

    async def load_more_messages(self, direction: Direction | str) -> LoadResult:
        """Fetch the page just outside the loaded range in ``direction``."""
        direction = Direction(direction)
        if not self.current_session_id:
            return LoadResult.NO_SESSION
        if self.is_loading_more:
            return LoadResult.BUSY
        if not self.can_load_more(direction):
            return LoadResult.NO_MORE

        loaded = self.pagination.loaded_pages
        if direction == Direction.OLDER:
            page_to_load = min(loaded) - 1
        else:
            page_to_load = max(loaded) + 1
        if page_to_load < 1 or page_to_load > self.pagination.total_pages:
            return LoadResult.NO_MORE

        session_id = self.current_session_id
        generation = self._generation
        self.is_loading_more = True
        self.error = None
        self._changed()

        try:
            page = await self.api.get_messages(session_id, page_to_load, self.page_size)
        except Exception as e:
            if not self._still_current(generation, session_id):
                return LoadResult.ABANDONED
            logger.error("Failed to load page %d for %s: %s", page_to_load, session_id, e)
            self.is_loading_more = False
            self.error = e
            self._changed()
            return LoadResult.FAILED

        if not self._still_current(generation, session_id):
            return LoadResult.ABANDONED

        for msg in page.messages:
            self.messages.setdefault(msg.message_id, msg)

        self.pagination.loaded_pages.add(page_to_load)
        self.pagination.has_more = len(self.pagination.loaded_pages) < self.pagination.total_pages
        self.is_loading_more = False
        logger.debug("Loaded %d messages from page %d", len(page.messages), page_to_load)
        self._changed()
        return LoadResult.LOADED

    def _still_current(self, generation: int, session_id: str) -> bool:
        return self._generation == generation and self.current_session_id == session_id

    # ── Mutation ─────────────────────────────────────────────────

    def add_message(self, message: Message) -> AddResult:
        """Insert a message from the transport or a local send.

        Checks, in order: owning session, exact id, staleness against the
        last history sync, replacement of a pending temporary user message,
        and the same-type/same-content/close-timestamp window.
        """
        if self.current_session_id and message.session_id != self.current_session_id:
            logger.debug("Ignoring message from different session: %s", message.session_id)
            return AddResult.WRONG_SESSION

        if message.message_id in self.messages:
            logger.debug("Message already exists: %s", message.message_id)
            return AddResult.DUPLICATE_ID

        message_time = to_epoch_ms(message.timestamp)
        if self.last_sync_time is not None and message_time < self.last_sync_time:
            logger.debug("Skipping old message %s", message.message_id)
            return AddResult.STALE

        if message.type == "user" and not message.is_temporary:
            temp_id = self._find_pending_temporary(message.content)
            if temp_id is not None:
                logger.debug("Replacing temp message %s with %s", temp_id, message.message_id)
                del self.messages[temp_id]
                self.messages[message.message_id] = message
                self._changed()
                return AddResult.REPLACED_TEMPORARY

        for existing in self.messages.values():
            if (
                abs(to_epoch_ms(existing.timestamp) - message_time) < DUPLICATE_WINDOW_MS
                and existing.type == message.type
                and existing.content == message.content
            ):
                logger.debug("Skipping duplicate %s message: %s", message.type, message.content[:50])
                return AddResult.DUPLICATE_CONTENT

        self.messages[message.message_id] = message
        self._changed()
        return AddResult.ADDED

    def _find_pending_temporary(self, content: str) -> str | None:
        for msg_id, msg in self.messages.items():
            if msg.is_temporary and msg.type == "user" and msg.content == content and msg.status == "sending":
                return msg_id
        return None

    def update_message_status(self, message_id: str, status: str) -> bool:
        msg = self.messages.get(message_id)
        if msg is None:
            return False
        msg.metadata = {**msg.metadata, "status": status}
        self._changed()
        return True

    def remove_message(self, message_id: str) -> None:
        if self.messages.pop(message_id, None) is not None:
            self._changed()

    def reset(self) -> None:
        """Drop everything; in-flight fetches started before this are discarded."""
        self._generation += 1
        self._clear()
        self._changed()

    # ── Selectors ────────────────────────────────────────────────

    def get_sorted_messages(self) -> list[Message]:
        return sorted(self.messages.values(), key=lambda m: to_epoch_ms(m.timestamp))

    def has_message(self, message_id: str) -> bool:
        return message_id in self.messages

    def message_count(self) -> int:
        return len(self.messages)
