"""
Session management.

One Session per accepted connection, tracking the protocol handshake
through an explicit state machine.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set

from .transport import Connection


logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Handshake progress of a session."""
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    INITIALIZED = "initialized"
    SHUTTING_DOWN = "shutting_down"
    SHUTDOWN = "shutdown"


# Every state may move to SHUTDOWN (connection loss); SHUTDOWN is terminal.
TRANSITIONS: Dict[SessionState, Set[SessionState]] = {
    SessionState.UNINITIALIZED: {SessionState.INITIALIZING, SessionState.SHUTDOWN},
    SessionState.INITIALIZING: {
        SessionState.INITIALIZED,
        SessionState.UNINITIALIZED,
        SessionState.SHUTDOWN,
    },
    SessionState.INITIALIZED: {SessionState.SHUTTING_DOWN, SessionState.SHUTDOWN},
    SessionState.SHUTTING_DOWN: {SessionState.SHUTDOWN},
    SessionState.SHUTDOWN: set(),
}


class InvalidTransition(ValueError):
    """Raised for a state change the session state machine does not allow."""

    def __init__(self, current: SessionState, target: SessionState):
        super().__init__(
            f"Invalid session transition: {current.value} -> {target.value}"
        )
        self.current = current
        self.target = target


@dataclass
class SessionContext:
    """What the client told us during initialize."""
    initialized: bool = False
    protocol_version: Optional[str] = None
    capabilities: Dict[str, Any] = field(default_factory=dict)
    client_info: Optional[Dict[str, Any]] = None


@dataclass(eq=False)
class Session:
    """
    Per-connection protocol state.

    The connection is a back-reference used to reply; the session does not
    own it. State reads and writes that must not interleave with another
    request on the same session happen under ``lock``.
    """
    id: str
    connection: Connection
    state: SessionState = SessionState.UNINITIALIZED
    context: SessionContext = field(default_factory=SessionContext)
    permissions: Set[str] = field(default_factory=set)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def can_transition(self, target: SessionState) -> bool:
        return target in TRANSITIONS[self.state]

    def transition(self, target: SessionState) -> None:
        """Move to ``target`` or raise InvalidTransition."""
        if not self.can_transition(target):
            raise InvalidTransition(self.state, target)
        logger.debug(f"Session {self.id}: {self.state.value} -> {target.value}")
        self.state = target

    @property
    def is_initialized(self) -> bool:
        return self.state is SessionState.INITIALIZED

    def has_permission(self, permission: str) -> bool:
        if permission in self.permissions:
            return True
        scope = permission.split(":", 1)[0]
        return f"{scope}:*" in self.permissions


class SessionManager:
    """Creates, tracks and destroys sessions."""

    def __init__(self, default_permissions: Optional[Iterable[str]] = None):
        self._sessions: Dict[str, Session] = {}
        self._timers: Dict[str, asyncio.Task] = {}
        self._default_permissions = set(default_permissions or ())

    def create(self, connection: Connection) -> Session:
        """Allocate a session in UNINITIALIZED for a new connection."""
        session = Session(
            id=str(uuid.uuid4()),
            connection=connection,
            permissions=self.determine_permissions(connection),
        )
        self._sessions[session.id] = session
        logger.info(f"Session created: {session.id} ({connection.id})")
        return session

    def determine_permissions(self, connection: Connection) -> Set[str]:
        """Permissions granted to a connection; carried opaquely on the session."""
        return set(self._default_permissions)

    def get(self, id: str) -> Optional[Session]:
        return self._sessions.get(id)

    def find_by_connection(self, connection: Connection) -> Optional[Session]:
        for session in self._sessions.values():
            if session.connection is connection:
                return session
        return None

    def schedule_destroy(self, id: str, delay: float) -> asyncio.Task:
        """Destroy a session after ``delay`` seconds."""
        self._cancel_timer(id)
        task = asyncio.create_task(self._destroy_later(id, delay))
        self._timers[id] = task
        return task

    async def _destroy_later(self, id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        self._timers.pop(id, None)
        await self.destroy(id)

    def _cancel_timer(self, id: str) -> None:
        timer = self._timers.pop(id, None)
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()

    async def destroy(self, id: str) -> None:
        """Remove a session immediately. Unknown ids are ignored."""
        self._cancel_timer(id)
        session = self._sessions.pop(id, None)
        if session is None:
            return

        await self._cleanup(session)
        logger.info(f"Session destroyed: {id}")

    async def destroy_all(self) -> None:
        """Destroy every live session."""
        for id in list(self._sessions):
            await self.destroy(id)
        logger.info("All sessions destroyed")

    async def _cleanup(self, session: Session) -> None:
        if session.state is not SessionState.SHUTDOWN:
            session.transition(SessionState.SHUTDOWN)
        session.context.initialized = False

        try:
            await session.connection.close()
        except Exception:
            logger.exception(f"Error closing connection for session {session.id}")

    @property
    def active_sessions(self) -> int:
        return len(self._sessions)

    def list_sessions(self) -> List[Session]:
        return list(self._sessions.values())

    def session_info(self, id: str) -> Optional[dict]:
        """Diagnostic summary of a session."""
        session = self._sessions.get(id)
        if session is None:
            return None

        return {
            "id": session.id,
            "state": session.state.value,
            "transport": session.connection.transport_kind,
            "initialized": session.context.initialized,
            "clientInfo": session.context.client_info,
            "permissions": sorted(session.permissions),
        }

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, id: str) -> bool:
        return id in self._sessions
