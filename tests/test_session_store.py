"""Tests for the session roster store."""

import pytest

from kanban_sync.api import ApiError
from kanban_sync.core import CreateSessionRequest, SessionStatus, map_status, session_from_dict
from kanban_sync.session_store import SessionRosterStore

from conftest import make_session


def ids(roster):
    return [s.session_id for s in roster.sessions]


@pytest.fixture
def roster(api, transport):
    r = SessionRosterStore(api, transport)
    r.attach()
    return r


class TestStatusMapping:
    @pytest.mark.parametrize("wire,expected", [
        ("processing", SessionStatus.PROCESSING),
        ("idle", SessionStatus.IDLE),
        ("completed", SessionStatus.COMPLETED),
        ("error", SessionStatus.ERROR),
        ("interrupted", SessionStatus.INTERRUPTED),
        ("IDLE", SessionStatus.IDLE),
        ("initializing", SessionStatus.PROCESSING),
        ("running", SessionStatus.IDLE),
    ])
    def test_known_statuses(self, wire, expected):
        assert map_status(wire) == expected

    def test_unknown_status(self):
        assert map_status("frobnicate") is None
        assert map_status(None) is None

    @pytest.mark.asyncio
    async def test_status_update_event(self, roster, transport):
        await roster.load_sessions()
        await transport.inject("status_update", {"sessionId": "A", "status": "processing"})
        assert roster.get("A").status == SessionStatus.PROCESSING

        await transport.inject("global_status_update", {"sessionId": "A", "status": "frobnicate"})
        assert roster.get("A").status == SessionStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_leaving_error_clears_error_text(self, roster, board, transport):
        board.sessions[0]["status"] = "error"
        board.sessions[0]["error"] = "exit code 1"
        await roster.load_sessions()

        await transport.inject("status_update", {"sessionId": "A", "status": "idle"})
        assert roster.get("A").error is None


class TestProcessExit:
    @pytest.mark.asyncio
    async def test_non_zero_exit_forces_error(self, roster, transport):
        await roster.load_sessions()
        await transport.inject("process_exit", {"sessionId": "C", "code": 1, "signal": None})
        assert roster.get("C").status == SessionStatus.ERROR

    @pytest.mark.asyncio
    async def test_zero_exit_leaves_status(self, roster, transport):
        await roster.load_sessions()
        await transport.inject("global_process_exit", {"sessionId": "B", "code": 0, "signal": None})
        assert roster.get("B").status == SessionStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_detach_stops_patching(self, roster, transport):
        await roster.load_sessions()
        roster.detach()
        await transport.inject("process_exit", {"sessionId": "A", "code": 1})
        assert roster.get("A").status == SessionStatus.IDLE


class TestSessionUpdated:
    @pytest.mark.asyncio
    async def test_patches_metadata(self, roster, transport):
        await roster.load_sessions()
        await transport.inject("session_updated", {
            "sessionId": "A",
            "lastUserMessage": "run the tests",
            "messageCount": 12,
            "updatedAt": "2025-02-01T00:00:00Z",
        })
        session = roster.get("A")
        assert session.last_user_message == "run the tests"
        assert session.message_count == 12
        assert session.updated_at.month == 2

    @pytest.mark.asyncio
    async def test_missing_fields_keep_values(self, roster, board, transport):
        board.sessions[0]["lastUserMessage"] = "previous"
        await roster.load_sessions()
        await transport.inject("session_updated", {"sessionId": "A"})
        assert roster.get("A").last_user_message == "previous"

    @pytest.mark.asyncio
    async def test_zero_count_and_empty_text_are_applied(self, roster, board, transport):
        board.sessions[0]["lastUserMessage"] = "previous"
        board.sessions[0]["messageCount"] = 4
        await roster.load_sessions()
        await transport.inject("session_updated", {"sessionId": "A", "lastUserMessage": "", "messageCount": 0})
        session = roster.get("A")
        assert session.message_count == 0
        assert session.last_user_message == ""

    @pytest.mark.asyncio
    async def test_unknown_session_is_ignored(self, roster, transport):
        await roster.load_sessions()
        await transport.inject("session_updated", {"sessionId": "zzz", "messageCount": 3})
        assert ids(roster) == ["A", "B", "C"]


class TestRestActions:
    @pytest.mark.asyncio
    async def test_load_sessions(self, roster):
        await roster.load_sessions()
        assert ids(roster) == ["A", "B", "C"]
        assert roster.system_stats.total_processes == 1
        assert roster.loading is False
        grouped = roster.sessions_by_status
        assert [s.session_id for s in grouped[SessionStatus.IDLE]] == ["A"]
        assert grouped[SessionStatus.ERROR] == []

    @pytest.mark.asyncio
    async def test_unmapped_status_keeps_the_roster(self, roster, board):
        board.sessions.append(make_session("D", "crashed"))
        await roster.load_sessions()
        assert roster.error is None
        assert ids(roster) == ["A", "B", "C", "D"]
        assert roster.get("D").status == SessionStatus.IDLE

    @pytest.mark.asyncio
    async def test_load_failure_is_recorded(self, roster, board):
        board.failing.add("stats")
        await roster.load_sessions()
        assert roster.error is not None
        assert roster.loading is False
        assert roster.sessions == []

    @pytest.mark.asyncio
    async def test_create_inserts_first(self, roster):
        await roster.load_sessions()
        session = await roster.create_session(CreateSessionRequest(name="New", working_dir="/tmp", task="t"))
        assert ids(roster)[0] == session.session_id

    @pytest.mark.asyncio
    async def test_complete_moves_to_front_of_done_group(self, roster, board):
        board.sessions.append(make_session("D", "interrupted"))
        await roster.load_sessions()

        await roster.complete_session("A")
        assert ids(roster) == ["B", "A", "C", "D"]
        assert roster.get("A").status == SessionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_complete_without_done_group_appends(self, roster, board):
        board.sessions = [make_session("X", "idle"), make_session("Y", "processing")]
        await roster.load_sessions()
        await roster.complete_session("X")
        assert ids(roster) == ["Y", "X"]

    @pytest.mark.asyncio
    async def test_interrupt_and_resume_patch_in_place(self, roster):
        await roster.load_sessions()
        await roster.interrupt_session("B")
        assert ids(roster) == ["A", "B", "C"]
        assert roster.get("B").status == SessionStatus.INTERRUPTED
        await roster.resume_session("B")
        assert roster.get("B").status == SessionStatus.IDLE

    @pytest.mark.asyncio
    async def test_delete_notifies_removal(self, roster):
        removed = []
        roster.add_removal_listener(removed.append)
        await roster.load_sessions()
        await roster.delete_session("B")
        assert ids(roster) == ["A", "C"]
        assert removed == ["B"]

    @pytest.mark.asyncio
    async def test_reload_without_session_notifies_removal(self, roster, board):
        removed = []
        roster.add_removal_listener(removed.append)
        await roster.load_sessions()
        board.sessions.pop(0)
        await roster.load_sessions()
        assert removed == ["A"]

    @pytest.mark.asyncio
    async def test_failed_action_records_error_and_raises(self, roster, board):
        await roster.load_sessions()
        board.failing.add("delete")
        with pytest.raises(ApiError):
            await roster.delete_session("A")
        assert roster.error == "delete exploded"
        assert "A" in ids(roster)


class TestReorder:
    @pytest.mark.asyncio
    async def test_reorder_keeps_other_statuses_in_place(self, roster, board):
        board.sessions = [
            make_session("X", "idle"),
            make_session("Y", "processing"),
            make_session("Z", "idle"),
        ]
        await roster.load_sessions()
        x, _, z = roster.sessions

        await roster.reorder_sessions_by_status(SessionStatus.IDLE, [z, x])

        assert ids(roster) == ["Z", "Y", "X"]
        assert board.reorders == [{"status": "idle", "sessionIds": ["Z", "X"]}]

    @pytest.mark.asyncio
    async def test_failed_save_keeps_local_order(self, roster, board):
        board.sessions = [make_session("X", "idle"), make_session("Z", "idle")]
        await roster.load_sessions()
        board.failing.add("reorder")
        x, z = roster.sessions

        await roster.reorder_sessions_by_status(SessionStatus.IDLE, [z, x])
        assert ids(roster) == ["Z", "X"]

    def test_apply_local_update(self, api):
        roster = SessionRosterStore(api)
        roster.sessions = [session_from_dict(make_session("A"))]
        roster.apply_local_update("A", last_user_message="hi", message_count=4)
        assert roster.get("A").message_count == 4
