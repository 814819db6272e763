"""Shared test fixtures for kanban-sync."""

import math
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from httpx import ASGITransport

from kanban_sync.api import SessionApi
from kanban_sync.backends.memory import InMemoryTransport

HISTORY_START = datetime(2025, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


def make_session(session_id: str, status: str = "idle", name: str | None = None, **extra) -> dict:
    data = {
        "sessionId": session_id,
        "name": name or f"Session {session_id}",
        "workingDir": "/Users/testuser/dev/myapp",
        "task": "Fix the login bug",
        "status": status,
        "createdAt": "2025-01-15T09:00:00.000Z",
        "updatedAt": "2025-01-15T09:30:00.000Z",
        "messageCount": 0,
    }
    data.update(extra)
    return data


def make_history(session_id: str, count: int) -> list[dict]:
    """Alternating user/assistant messages one minute apart."""
    return [
        {
            "messageId": f"{session_id}-msg-{i:03d}",
            "sessionId": session_id,
            "type": "user" if i % 2 == 0 else "assistant",
            "content": f"message {i}",
            "timestamp": (HISTORY_START + timedelta(minutes=i)).isoformat(),
            "metadata": {},
        }
        for i in range(count)
    ]


class FakeBoard:
    """In-memory state behind the stub REST API."""

    def __init__(self):
        self.sessions: list[dict] = []
        self.messages: dict[str, list[dict]] = {}
        self.failing: set[str] = set()
        self.required_token: str | None = None
        self.requests: list[tuple[str, str]] = []
        self.auth_headers: list[str | None] = []
        self.reorders: list[dict] = []
        self._next_id = 1

    def check(self, action: str) -> None:
        if action in self.failing:
            raise HTTPException(status_code=500, detail=f"{action} exploded")

    def find(self, session_id: str) -> dict:
        for s in self.sessions:
            if s["sessionId"] == session_id:
                return s
        raise HTTPException(status_code=404, detail="Session not found")

    def next_message_id(self) -> str:
        msg_id = f"srv-{self._next_id}"
        self._next_id += 1
        return msg_id


def make_board_app(board: FakeBoard) -> FastAPI:
    app = FastAPI()

    @app.middleware("http")
    async def record(request: Request, call_next):
        board.requests.append((request.method, request.url.path))
        auth = request.headers.get("authorization")
        board.auth_headers.append(auth)
        if board.required_token and auth != f"Bearer {board.required_token}":
            return JSONResponse({"error": "Unauthorized"}, status_code=401)
        return await call_next(request)

    @app.get("/api/sessions")
    async def list_sessions():
        board.check("list")
        return board.sessions

    @app.get("/api/sessions/system/stats")
    async def system_stats():
        board.check("stats")
        return {"totalProcesses": 1, "systemStatus": "active", "processes": []}

    @app.put("/api/sessions/reorder")
    async def reorder(body: dict):
        board.check("reorder")
        board.reorders.append(body)
        return {"success": True}

    @app.post("/api/sessions")
    async def create(body: dict):
        board.check("create")
        session = make_session(f"new-{len(board.sessions) + 1}", name=body["name"], task=body["task"])
        board.sessions.append(session)
        return session

    @app.get("/api/sessions/{session_id}")
    async def get_session(session_id: str):
        return board.find(session_id)

    @app.delete("/api/sessions/{session_id}")
    async def delete(session_id: str):
        board.check("delete")
        board.sessions.remove(board.find(session_id))
        return {"success": True}

    @app.post("/api/sessions/{session_id}/messages")
    async def send_message(session_id: str, body: dict):
        board.check("send")
        msg = {
            "messageId": board.next_message_id(),
            "sessionId": session_id,
            "type": "user",
            "content": body["content"],
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "metadata": {},
        }
        board.messages.setdefault(session_id, []).append(msg)
        return msg

    @app.post("/api/sessions/{session_id}/{action}")
    async def lifecycle(session_id: str, action: str):
        board.check(action)
        session = board.find(session_id)
        status = {"complete": "completed", "interrupt": "interrupted", "resume": "idle"}.get(action)
        if status is None:
            raise HTTPException(status_code=404, detail="Unknown action")
        session["status"] = status
        return session

    @app.get("/api/sessions/{session_id}/messages")
    async def get_messages(session_id: str, page: int = 1, limit: int = 50):
        board.check("get_messages")
        messages = board.messages.get(session_id, [])
        total_pages = max(1, math.ceil(len(messages) / limit))
        start = (page - 1) * limit
        return {
            "messages": messages[start:start + limit],
            "pagination": {
                "total": len(messages),
                "page": page,
                "totalPages": total_pages,
                "hasNext": page < total_pages,
                "hasPrev": page > 1,
            },
        }

    return app


def make_api(board: FakeBoard, **kwargs) -> SessionApi:
    return SessionApi(
        base_url="http://test/api",
        transport=ASGITransport(app=make_board_app(board)),
        **kwargs,
    )


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep token and preference files out of the real home directory."""
    config_dir = tmp_path / "config"
    monkeypatch.setenv("KANBAN_CONFIG_DIR", str(config_dir))
    monkeypatch.delenv("KANBAN_API_URL", raising=False)
    monkeypatch.delenv("KANBAN_WS_URL", raising=False)
    return config_dir


@pytest.fixture
def board():
    """A board with three sessions; session A has 250 messages (3 pages of 100)."""
    b = FakeBoard()
    b.sessions = [
        make_session("A", "idle", name="Alpha"),
        make_session("B", "processing", name="Beta"),
        make_session("C", "completed", name="Gamma"),
    ]
    b.messages = {
        "A": make_history("A", 250),
        "B": make_history("B", 5),
        "C": [],
    }
    return b


@pytest.fixture
def api(board):
    return make_api(board)


@pytest.fixture
def transport():
    return InMemoryTransport()
