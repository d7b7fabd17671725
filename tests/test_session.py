"""Tests for ballerina_mcp.session module."""

import pytest
import asyncio

from ballerina_mcp.session import (
    InvalidTransition,
    Session,
    SessionManager,
    SessionState,
    TRANSITIONS,
)
from ballerina_mcp.transport import Connection


class RecordingConnection(Connection):
    """Connection that records what the server sends."""

    transport_kind = "websocket"

    def __init__(self, id="test-conn"):
        super().__init__(id)
        self.sent = []
        self.close_calls = 0

    async def send(self, message):
        self.sent.append(message)

    async def receive(self):
        return None

    async def close(self):
        self.close_calls += 1
        self._closed = True


class TestSessionStateMachine:
    def test_every_state_has_transitions(self):
        assert set(TRANSITIONS) == set(SessionState)

    def test_shutdown_is_terminal(self):
        assert TRANSITIONS[SessionState.SHUTDOWN] == set()

    def test_happy_path(self):
        session = Session(id="s", connection=RecordingConnection())
        assert session.state is SessionState.UNINITIALIZED

        session.transition(SessionState.INITIALIZING)
        session.transition(SessionState.INITIALIZED)
        assert session.is_initialized
        session.transition(SessionState.SHUTTING_DOWN)
        session.transition(SessionState.SHUTDOWN)
        assert session.state is SessionState.SHUTDOWN

    def test_illegal_transition_raises(self):
        session = Session(id="s", connection=RecordingConnection())

        with pytest.raises(InvalidTransition):
            session.transition(SessionState.INITIALIZED)
        assert session.state is SessionState.UNINITIALIZED

    def test_cannot_leave_shutdown(self):
        session = Session(id="s", connection=RecordingConnection())
        session.transition(SessionState.SHUTDOWN)

        with pytest.raises(InvalidTransition):
            session.transition(SessionState.UNINITIALIZED)

    def test_permissions_wildcard(self):
        session = Session(id="s", connection=RecordingConnection(), permissions={"tools:*"})
        assert session.has_permission("tools:call")
        assert not session.has_permission("resources:read")


class TestSessionManager:
    def test_create(self):
        manager = SessionManager(["tools:*"])
        connection = RecordingConnection()
        session = manager.create(connection)

        assert session.state is SessionState.UNINITIALIZED
        assert session.connection is connection
        assert session.permissions == {"tools:*"}
        assert manager.get(session.id) is session
        assert manager.active_sessions == 1

    def test_sessions_are_independent(self):
        manager = SessionManager()
        a = manager.create(RecordingConnection("a"))
        b = manager.create(RecordingConnection("b"))

        assert a.id != b.id
        assert a.lock is not b.lock
        assert manager.find_by_connection(b.connection) is b

    @pytest.mark.asyncio
    async def test_destroy(self):
        manager = SessionManager()
        connection = RecordingConnection()
        session = manager.create(connection)

        await manager.destroy(session.id)

        assert manager.get(session.id) is None
        assert session.state is SessionState.SHUTDOWN
        assert connection.close_calls == 1

    @pytest.mark.asyncio
    async def test_destroy_missing_is_noop(self):
        manager = SessionManager()
        await manager.destroy("does-not-exist")
        assert len(manager) == 0

    @pytest.mark.asyncio
    async def test_destroy_twice(self):
        manager = SessionManager()
        connection = RecordingConnection()
        session = manager.create(connection)

        await manager.destroy(session.id)
        await manager.destroy(session.id)

        assert connection.close_calls == 1

    @pytest.mark.asyncio
    async def test_destroy_all(self):
        manager = SessionManager()
        connections = [RecordingConnection(str(i)) for i in range(3)]
        sessions = [manager.create(c) for c in connections]

        await manager.destroy_all()

        assert manager.active_sessions == 0
        assert all(s.state is SessionState.SHUTDOWN for s in sessions)
        assert all(c.closed for c in connections)

    @pytest.mark.asyncio
    async def test_schedule_destroy(self):
        manager = SessionManager()
        session = manager.create(RecordingConnection())

        manager.schedule_destroy(session.id, 0.05)
        assert session.id in manager

        await asyncio.sleep(0.15)
        assert session.id not in manager

    @pytest.mark.asyncio
    async def test_destroy_cancels_scheduled(self):
        manager = SessionManager()
        connection = RecordingConnection()
        session = manager.create(connection)

        task = manager.schedule_destroy(session.id, 10)
        await manager.destroy(session.id)
        await asyncio.sleep(0.01)

        assert task.cancelled()
        assert connection.close_calls == 1

    def test_session_info(self):
        manager = SessionManager(["prompts:*"])
        session = manager.create(RecordingConnection())

        info = manager.session_info(session.id)

        assert info["id"] == session.id
        assert info["state"] == "uninitialized"
        assert info["transport"] == "websocket"
        assert info["initialized"] is False
        assert info["permissions"] == ["prompts:*"]

    def test_session_info_missing(self):
        assert SessionManager().session_info("nope") is None
