"""
WebSocket Connection Registry

Tracks every live relay connection, its liveness and its session.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import uuid4

import structlog
from fastapi import WebSocket
from starlette.websockets import WebSocketState

from parley.core.models import utcnow
from parley.exceptions import RegistryFullError
from .protocol import RelayMessage

if TYPE_CHECKING:
    from .router import SessionRouter

logger = structlog.get_logger()


def new_connection_id() -> str:
    return f"client_{uuid4().hex}"


@dataclass(eq=False)
class Connection:
    """A single accepted WebSocket and its relay state."""

    connection_id: str
    transport: WebSocket

    # Liveness
    is_alive: bool = True
    last_heartbeat: datetime = field(default_factory=utcnow)

    # Membership, written only by SessionRouter
    session_id: str | None = None

    connected_at: datetime = field(default_factory=utcnow)
    closed: bool = False

    def __hash__(self) -> int:
        return hash(self.connection_id)

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, Connection):
            return self.connection_id == other.connection_id
        return False

    @property
    def is_open(self) -> bool:
        return (
            not self.closed
            and self.transport.client_state == WebSocketState.CONNECTED
        )

    async def send(self, message: RelayMessage) -> bool:
        """Best-effort send. Returns False if the frame was not written."""
        if not self.is_open:
            return False
        try:
            await self.transport.send_text(message.to_json())
            return True
        except Exception as e:
            logger.warning(
                "Failed to send WebSocket message",
                connection_id=self.connection_id,
                message_type=message.type.value,
                error=str(e),
            )
            return False

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.closed:
            return
        self.closed = True
        if self.transport.client_state != WebSocketState.CONNECTED:
            return
        try:
            await self.transport.close(code=code, reason=reason)
        except Exception as e:
            logger.debug(
                "WebSocket already closed",
                connection_id=self.connection_id,
                error=str(e),
            )


class ConnectionRegistry:
    """
    Owns every Connection record.

    A record exists from accept until close or eviction. Removing one
    also removes it from its session, so membership never dangles.
    """

    def __init__(self, max_connections: int = 1000) -> None:
        self.max_connections = max_connections
        self._connections: dict[str, Connection] = {}
        self._router: "SessionRouter | None" = None
        self._lock = asyncio.Lock()

    def bind_router(self, router: "SessionRouter") -> None:
        self._router = router

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._connections

    async def register(self, transport: WebSocket) -> str:
        """
        Create a Connection for an accepted transport.

        Raises:
            RegistryFullError: max_connections records already exist.
        """
        async with self._lock:
            if len(self._connections) >= self.max_connections:
                raise RegistryFullError(
                    f"Connection limit reached ({self.max_connections})"
                )
            connection_id = new_connection_id()
            self._connections[connection_id] = Connection(
                connection_id=connection_id,
                transport=transport,
            )

        logger.info(
            "Connection registered",
            connection_id=connection_id,
            total=len(self._connections),
        )
        return connection_id

    async def unregister(self, connection_id: str) -> None:
        async with self._lock:
            connection = self._connections.pop(connection_id, None)

        if connection is None:
            return

        if connection.session_id and self._router is not None:
            await self._router.leave(
                connection.session_id, connection_id, notify=False
            )

        logger.info(
            "Connection unregistered",
            connection_id=connection_id,
            total=len(self._connections),
        )

    def get(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    def connection_ids(self) -> list[str]:
        return list(self._connections)

    def mark_alive(self, connection_id: str) -> None:
        connection = self._connections.get(connection_id)
        if connection:
            connection.is_alive = True
            connection.last_heartbeat = utcnow()

    def mark_pending(self, connection_id: str) -> None:
        connection = self._connections.get(connection_id)
        if connection:
            connection.is_alive = False

    def get_stats(self) -> dict[str, Any]:
        connections = list(self._connections.values())
        return {
            "total_connections": len(connections),
            "max_connections": self.max_connections,
            "alive": sum(1 for c in connections if c.is_alive),
            "pending": sum(1 for c in connections if not c.is_alive),
            "in_session": sum(1 for c in connections if c.session_id),
        }
