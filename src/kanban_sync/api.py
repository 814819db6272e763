"""Async REST client for the board's session API."""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import httpx

from .config import REQUEST_TIMEOUT, clear_token, get_api_base_url, load_token
from .core import (
    CreateSessionRequest,
    Message,
    Session,
    SessionStatus,
    SystemStats,
    message_from_dict,
    session_from_dict,
    stats_from_dict,
)

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """A REST call failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class UnauthorizedError(ApiError):
    """The server rejected the bearer token."""


@dataclass
class PageInfo:
    total: int
    page: int
    total_pages: int
    has_next: bool
    has_prev: bool


@dataclass
class MessagePage:
    messages: list[Message]
    pagination: PageInfo


class SessionApi:
    """Thin wrapper over ``httpx.AsyncClient`` for ``/sessions`` endpoints.

    The bearer token is read from the token store on every call, so a login
    from another process is picked up without rebuilding the client.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = REQUEST_TIMEOUT,
        on_unauthorized: Optional[Callable[[], Awaitable[None] | None]] = None,
    ):
        self.base_url = base_url or get_api_base_url()
        self.on_unauthorized = on_unauthorized
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            transport=transport,
            timeout=timeout,
        )

    async def __aenter__(self) -> "SessionApi":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ── Sessions ─────────────────────────────────────────────────

    async def get_all_sessions(self) -> list[Session]:
        data = await self._request("GET", "/sessions")
        return [session_from_dict(s) for s in data]

    async def get_session(self, session_id: str) -> Session:
        return session_from_dict(await self._request("GET", f"/sessions/{session_id}"))

    async def create_session(self, request: CreateSessionRequest) -> Session:
        data = await self._request("POST", "/sessions", json=request.to_dict())
        return session_from_dict(data)

    async def complete_session(self, session_id: str) -> Session:
        return session_from_dict(await self._request("POST", f"/sessions/{session_id}/complete"))

    async def interrupt_session(self, session_id: str) -> Session:
        return session_from_dict(await self._request("POST", f"/sessions/{session_id}/interrupt"))

    async def resume_session(self, session_id: str) -> Session:
        return session_from_dict(await self._request("POST", f"/sessions/{session_id}/resume"))

    async def delete_session(self, session_id: str) -> None:
        await self._request("DELETE", f"/sessions/{session_id}")

    async def reorder_sessions(self, status: SessionStatus, session_ids: list[str]) -> None:
        await self._request(
            "PUT", "/sessions/reorder",
            json={"status": SessionStatus(status).value, "sessionIds": session_ids},
        )

    async def get_system_stats(self) -> SystemStats:
        return stats_from_dict(await self._request("GET", "/sessions/system/stats"))

    # ── Messages ─────────────────────────────────────────────────

    async def send_message(self, session_id: str, content: str) -> Message:
        data = await self._request(
            "POST", f"/sessions/{session_id}/messages", json={"content": content}
        )
        return message_from_dict(data)

    async def get_messages(self, session_id: str, page: int = 1, limit: int = 50) -> MessagePage:
        data = await self._request(
            "GET", f"/sessions/{session_id}/messages",
            params={"page": page, "limit": limit},
        )
        pagination = data.get("pagination") or {}
        return MessagePage(
            messages=[message_from_dict(m) for m in data.get("messages", [])],
            pagination=PageInfo(
                total=pagination.get("total", 0),
                page=pagination.get("page", page),
                total_pages=max(1, pagination.get("totalPages", 1)),
                has_next=bool(pagination.get("hasNext", False)),
                has_prev=bool(pagination.get("hasPrev", False)),
            ),
        )

    # ── Private helpers ──────────────────────────────────────────

    def _headers(self) -> dict[str, str]:
        token = load_token()
        if token:
            return {"Authorization": f"Bearer {token}"}
        return {}

    async def _request(self, method: str, path: str, **kwargs):
        try:
            resp = await self._client.request(method, path, headers=self._headers(), **kwargs)
        except httpx.HTTPError as e:
            logger.error("%s %s failed: %s", method, path, e)
            raise ApiError(f"{method} {path} failed: {e}") from e

        if resp.status_code == 401:
            logger.warning("%s %s rejected with 401, logging out", method, path)
            clear_token()
            if self.on_unauthorized is not None:
                result = self.on_unauthorized()
                if result is not None:
                    await result
            raise UnauthorizedError("Unauthorized", status_code=401)

        if resp.is_error:
            detail = _error_detail(resp)
            logger.error("%s %s returned %d: %s", method, path, resp.status_code, detail)
            raise ApiError(detail, status_code=resp.status_code)

        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            logger.error("%s %s returned invalid JSON: %s", method, path, e)
            raise ApiError(f"{method} {path} returned invalid JSON", status_code=resp.status_code) from e


def _error_detail(resp: httpx.Response) -> str:
    """Pull a readable message out of an error response."""
    try:
        body = resp.json()
    except ValueError:
        return resp.text or resp.reason_phrase
    if isinstance(body, dict):
        for key in ("error", "message", "detail"):
            if body.get(key):
                return str(body[key])
    return resp.reason_phrase
