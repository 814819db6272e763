"""Core data models for kanban-sync."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    PROCESSING = "processing"
    IDLE = "idle"
    COMPLETED = "completed"
    ERROR = "error"
    INTERRUPTED = "interrupted"


# Lowercase wire status -> client status. Anything else is unmapped.
STATUS_MAP = {
    "processing": SessionStatus.PROCESSING,
    "idle": SessionStatus.IDLE,
    "initializing": SessionStatus.PROCESSING,
    "running": SessionStatus.IDLE,
    "completed": SessionStatus.COMPLETED,
    "error": SessionStatus.ERROR,
    "interrupted": SessionStatus.INTERRUPTED,
}


def map_status(value) -> Optional[SessionStatus]:
    """Map a wire status string onto SessionStatus, or None if unknown."""
    if not isinstance(value, str):
        return None
    return STATUS_MAP.get(value.lower())


# Statuses that sit in the "done" group of the board.
COMPLETED_LIKE = (SessionStatus.COMPLETED, SessionStatus.ERROR, SessionStatus.INTERRUPTED)

MESSAGE_TYPES = (
    "user", "assistant", "claude", "system",
    "tool_use", "thinking", "output", "error",
)

TEMP_PREFIX = "temp-"


@dataclass
class Message:
    """A single message within a session."""

    message_id: str  # server id, or "temp-<ms>" for an unconfirmed local send
    session_id: str
    type: str  # one of MESSAGE_TYPES
    content: str
    timestamp: datetime
    metadata: dict = field(default_factory=dict)  # status, tool/streaming fields
    compressed: Optional[bool] = None
    original_size: Optional[int] = None
    compressed_size: Optional[int] = None

    @property
    def is_temporary(self) -> bool:
        return self.message_id.startswith(TEMP_PREFIX)

    @property
    def status(self) -> Optional[str]:
        return self.metadata.get("status")


@dataclass
class Session:
    """A tracked unit of assistant work."""

    session_id: str
    name: str
    working_dir: str
    task: str
    status: SessionStatus
    created_at: datetime
    updated_at: datetime
    last_user_message: Optional[str] = None
    message_count: Optional[int] = None
    sort_order: Optional[int] = None
    error: Optional[str] = None
    completed_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    continue_chat: bool = False
    previous_session_id: Optional[str] = None
    process_id: Optional[int] = None
    projects: list = field(default_factory=list)
    tags: list = field(default_factory=list)


@dataclass
class SystemStats:
    total_processes: int = 0
    system_status: str = "idle"  # "active" | "idle"
    processes: list = field(default_factory=list)
    memory: Optional[dict] = None
    cpu: Optional[dict] = None


@dataclass
class Pagination:
    """Cursor over the paged message history of one session."""

    current_page: int = 1
    total_pages: int = 1
    total_messages: int = 0
    has_more: bool = False
    loaded_pages: set = field(default_factory=set)


@dataclass
class CreateSessionRequest:
    name: str
    working_dir: str
    task: str
    continue_chat: bool = False
    previous_session_id: Optional[str] = None
    dangerously_skip_permissions: bool = False
    workflow_stage_id: Optional[str] = None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "name": self.name,
            "workingDir": self.working_dir,
            "task": self.task,
            "continueChat": self.continue_chat,
            "dangerouslySkipPermissions": self.dangerously_skip_permissions,
        }
        if self.previous_session_id:
            data["previousSessionId"] = self.previous_session_id
        if self.workflow_stage_id:
            data["workflow_stage_id"] = self.workflow_stage_id
        return data


# ── Timestamps ───────────────────────────────────────────────────


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a wire timestamp into an aware datetime.

    Accepts datetimes, ISO 8601 strings and epoch milliseconds.
    Returns None for anything unusable.
    """
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        try:
            if value.endswith("Z"):
                value = value[:-1] + "+00:00"
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def to_epoch_ms(value: Any) -> int:
    """Normalize any timestamp representation to epoch milliseconds.

    Unparsable values sort first (0).
    """
    parsed = parse_timestamp(value)
    if parsed is None:
        return 0
    return int(parsed.timestamp() * 1000)


# ── Wire conversion ──────────────────────────────────────────────


def message_from_dict(data: dict) -> Message:
    """Build a Message from the camelCase JSON the API returns."""
    return Message(
        message_id=data.get("messageId", ""),
        session_id=data.get("sessionId", ""),
        type=data.get("type", "system"),
        content=data.get("content") or "",
        timestamp=parse_timestamp(data.get("timestamp")) or utcnow(),
        metadata=dict(data.get("metadata") or {}),
        compressed=data.get("compressed"),
        original_size=data.get("originalSize"),
        compressed_size=data.get("compressedSize"),
    )


def message_to_dict(msg: Message) -> dict:
    return {
        "messageId": msg.message_id,
        "sessionId": msg.session_id,
        "type": msg.type,
        "content": msg.content,
        "timestamp": msg.timestamp.isoformat(),
        "metadata": msg.metadata,
    }


def session_from_dict(data: dict) -> Session:
    """Build a Session from the API payload, converting ISO strings to datetimes."""
    now = utcnow()
    status = map_status(data.get("status", SessionStatus.IDLE.value))
    if status is None:
        logger.debug("Unmapped status %r for session %s, showing it as idle", data.get("status"), data.get("sessionId"))
        status = SessionStatus.IDLE
    return Session(
        session_id=data["sessionId"],
        name=data.get("name", ""),
        working_dir=data.get("workingDir", ""),
        task=data.get("task", ""),
        status=status,
        created_at=parse_timestamp(data.get("createdAt")) or now,
        updated_at=parse_timestamp(data.get("updatedAt")) or now,
        last_user_message=data.get("lastUserMessage"),
        message_count=data.get("messageCount"),
        sort_order=data.get("sortOrder"),
        error=data.get("error"),
        completed_at=parse_timestamp(data.get("completedAt")),
        deleted_at=parse_timestamp(data.get("deletedAt")),
        continue_chat=bool(data.get("continueChat", False)),
        previous_session_id=data.get("previousSessionId"),
        process_id=data.get("processId"),
        projects=list(data.get("projects") or []),
        tags=list(data.get("tags") or []),
    )


def session_to_dict(session: Session) -> dict:
    return {
        "sessionId": session.session_id,
        "name": session.name,
        "workingDir": session.working_dir,
        "task": session.task,
        "status": session.status.value,
        "lastUserMessage": session.last_user_message,
        "messageCount": session.message_count,
        "sortOrder": session.sort_order,
        "error": session.error,
        "createdAt": session.created_at.isoformat(),
        "updatedAt": session.updated_at.isoformat(),
        "completedAt": session.completed_at.isoformat() if session.completed_at else None,
    }


def stats_from_dict(data: dict) -> SystemStats:
    return SystemStats(
        total_processes=data.get("totalProcesses", 0),
        system_status=data.get("systemStatus", "idle"),
        processes=list(data.get("processes") or []),
        memory=data.get("memory"),
        cpu=data.get("cpu"),
    )
