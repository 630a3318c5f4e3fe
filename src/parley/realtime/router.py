"""
Session Router

Maps session identifiers to the connections joined to them and fans
messages out to a session's members.
"""

import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog

from parley.core.models import TranscriptSegment, utcnow
from .connection import ConnectionRegistry
from .protocol import RelayMessage

logger = structlog.get_logger()


@dataclass
class Session:
    """A live meeting session."""

    session_id: str
    members: set[str] = field(default_factory=set)
    transcript: deque[TranscriptSegment] = field(default_factory=deque)
    created_at: datetime = field(default_factory=utcnow)


class SessionRouter:
    """
    Session membership and broadcast.

    Membership is kept in two places, the session's member set and the
    connection's ``session_id``; both are updated under one lock with no
    await in between, so they always agree.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        transcript_limit: int = 500,
    ) -> None:
        self.registry = registry
        self.transcript_limit = transcript_limit
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()
        registry.bind_router(self)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    # ══════════════════════════════════════════════════════════════
    # Membership
    # ══════════════════════════════════════════════════════════════

    async def join(self, session_id: str, connection_id: str) -> bool:
        """
        Add a connection to a session, creating the session if needed.

        A connection already in another session leaves it first. Returns
        False if the connection is not registered.
        """
        async with self._lock:
            connection = self.registry.get(connection_id)
            if connection is None:
                return False

            previous = connection.session_id
            if previous is not None and previous != session_id:
                self._remove_member(previous, connection_id)

            session = self._sessions.get(session_id)
            if session is None:
                session = Session(
                    session_id=session_id,
                    transcript=deque(maxlen=self.transcript_limit),
                )
                self._sessions[session_id] = session
                logger.info("Session created", session_id=session_id)

            session.members.add(connection_id)
            connection.session_id = session_id

        if previous is not None and previous != session_id:
            await connection.send(RelayMessage.session_left(previous))

        logger.info(
            "Client joined session",
            session_id=session_id,
            connection_id=connection_id,
            previous_session=previous,
        )
        await connection.send(RelayMessage.session_joined(session_id))
        return True

    async def leave(
        self,
        session_id: str,
        connection_id: str,
        notify: bool = True,
    ) -> bool:
        """
        Remove a connection from a session.

        Returns False, and sends nothing, if it was not a member.
        """
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None or connection_id not in session.members:
                return False
            self._remove_member(session_id, connection_id)
            connection = self.registry.get(connection_id)
            if connection is not None and connection.session_id == session_id:
                connection.session_id = None

        logger.info(
            "Client left session",
            session_id=session_id,
            connection_id=connection_id,
        )
        if notify and connection is not None:
            await connection.send(RelayMessage.session_left(session_id))
        return True

    def _remove_member(self, session_id: str, connection_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            return
        session.members.discard(connection_id)
        if not session.members:
            del self._sessions[session_id]
            logger.info("Session closed", session_id=session_id)

    # ══════════════════════════════════════════════════════════════
    # Fan-out
    # ══════════════════════════════════════════════════════════════

    async def broadcast(self, session_id: str, message: RelayMessage) -> int:
        """Send a message to every current member. Returns deliveries."""
        session = self._sessions.get(session_id)
        if session is None:
            return 0

        targets = []
        for connection_id in list(session.members):
            connection = self.registry.get(connection_id)
            if connection is not None:
                targets.append(connection)

        if not targets:
            return 0

        results = await asyncio.gather(*(c.send(message) for c in targets))
        delivered = sum(1 for ok in results if ok)

        logger.debug(
            "Broadcast to session",
            session_id=session_id,
            message_type=message.type.value,
            delivered=delivered,
            members=len(targets),
        )
        return delivered

    # ══════════════════════════════════════════════════════════════
    # Queries
    # ══════════════════════════════════════════════════════════════

    def members_of(self, session_id: str) -> frozenset[str]:
        session = self._sessions.get(session_id)
        return frozenset(session.members) if session else frozenset()

    def session_of(self, connection_id: str) -> str | None:
        connection = self.registry.get(connection_id)
        return connection.session_id if connection else None

    def session_ids(self) -> list[str]:
        return list(self._sessions)

    def get_session(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def record_segment(self, session_id: str, segment: TranscriptSegment) -> bool:
        """Append to a live session's transcript history."""
        session = self._sessions.get(session_id)
        if session is None:
            return False
        session.transcript.append(segment)
        return True

    def transcript_of(self, session_id: str) -> list[TranscriptSegment]:
        session = self._sessions.get(session_id)
        return list(session.transcript) if session else []

    def get_stats(self) -> dict[str, Any]:
        return {
            "active_sessions": len(self._sessions),
            "sessions": {
                session_id: len(session.members)
                for session_id, session in self._sessions.items()
            },
        }
