"""
Real-time session relay.

Connection tracking, session routing, heartbeats and message dispatch
for the /ws endpoint.
"""

from .connection import Connection, ConnectionRegistry
from .heartbeat import HeartbeatMonitor
from .protocol import MessageType, RelayMessage, decode_message
from .relay import RelayService, close_relay, get_relay, init_relay
from .router import Session, SessionRouter

__all__ = [
    "Connection",
    "ConnectionRegistry",
    "HeartbeatMonitor",
    "MessageType",
    "RelayMessage",
    "RelayService",
    "Session",
    "SessionRouter",
    "close_relay",
    "decode_message",
    "get_relay",
    "init_relay",
]
