"""Sort orders offered for the session list."""

from enum import Enum

from .core import Session, SessionStatus, to_epoch_ms


class SortType(str, Enum):
    CREATED_DESC = "created_desc"
    CREATED_ASC = "created_asc"
    UPDATED_DESC = "updated_desc"
    UPDATED_ASC = "updated_asc"
    NAME_ASC = "name_asc"
    NAME_DESC = "name_desc"
    STATUS = "status"
    MESSAGES_DESC = "messages_desc"
    MESSAGES_ASC = "messages_asc"


STATUS_PRIORITY = {
    SessionStatus.PROCESSING: 1,
    SessionStatus.IDLE: 2,
    SessionStatus.COMPLETED: 3,
    SessionStatus.ERROR: 4,
    SessionStatus.INTERRUPTED: 5,
}

SORT_OPTIONS = [
    (SortType.UPDATED_DESC, "Recently Updated"),
    (SortType.CREATED_DESC, "Newest First"),
    (SortType.CREATED_ASC, "Oldest First"),
    (SortType.NAME_ASC, "Name A-Z"),
    (SortType.NAME_DESC, "Name Z-A"),
    (SortType.STATUS, "Status Priority"),
    (SortType.MESSAGES_DESC, "Most Messages"),
    (SortType.MESSAGES_ASC, "Fewest Messages"),
]


def sort_sessions(sessions: list[Session], sort_type: SortType | str) -> list[Session]:
    """Return a sorted copy of ``sessions``; the input is left alone."""
    sort_type = SortType(sort_type)
    result = list(sessions)

    if sort_type == SortType.CREATED_DESC:
        result.sort(key=lambda s: to_epoch_ms(s.created_at), reverse=True)
    elif sort_type == SortType.CREATED_ASC:
        result.sort(key=lambda s: to_epoch_ms(s.created_at))
    elif sort_type == SortType.UPDATED_DESC:
        result.sort(key=lambda s: to_epoch_ms(s.updated_at), reverse=True)
    elif sort_type == SortType.UPDATED_ASC:
        result.sort(key=lambda s: to_epoch_ms(s.updated_at))
    elif sort_type == SortType.NAME_ASC:
        result.sort(key=lambda s: s.name.casefold())
    elif sort_type == SortType.NAME_DESC:
        result.sort(key=lambda s: s.name.casefold(), reverse=True)
    elif sort_type == SortType.STATUS:
        # Priority ascending, then most recently updated first
        result.sort(key=lambda s: (STATUS_PRIORITY.get(s.status, 999), -to_epoch_ms(s.updated_at)))
    elif sort_type == SortType.MESSAGES_DESC:
        result.sort(key=lambda s: s.message_count or 0, reverse=True)
    elif sort_type == SortType.MESSAGES_ASC:
        result.sort(key=lambda s: s.message_count or 0)

    return result
