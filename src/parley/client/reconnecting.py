"""
Reconnecting Relay Client

Keeps one WebSocket open to the relay, reconnecting with exponential
backoff after abnormal closes.
"""

import asyncio
import inspect
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

import structlog
import websockets

from parley.config import Settings
from parley.core.models import AnalysisType
from parley.exceptions import ProtocolError, UnknownMessageTypeError
from parley.realtime.protocol import MessageType, RelayMessage, decode_message, expects_reply

logger = structlog.get_logger()

NORMAL_CLOSURE = 1000

MessageHandler = Callable[[RelayMessage], Awaitable[None]]


class ClientState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class ClientEvent(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RECONNECTION_FAILED = "reconnection_failed"


@dataclass
class ClientConfig:
    """Reconnecting client configuration."""

    url: str = "ws://localhost:3000/ws"
    base_delay: float = 1.0
    max_attempts: int = 5
    connect_timeout: float = 10.0
    heartbeat_interval: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "ClientConfig":
        return cls(
            url=settings.relay_url,
            base_delay=settings.client_reconnect_base_delay,
            max_attempts=settings.client_max_reconnect_attempts,
            connect_timeout=settings.client_connect_timeout,
            heartbeat_interval=settings.client_heartbeat_interval,
        )


class ReconnectingClient:
    """
    Relay client with backoff reconnection.

    States: DISCONNECTED -> CONNECTING -> CONNECTED. An abnormal close
    moves to RECONNECTING and starts a new connect cycle; a normal close
    (code 1000) or ``disconnect()`` ends in DISCONNECTED.

    Each connect cycle makes at most ``max_attempts`` attempts. Waits
    between attempts start at ``base_delay`` and double. The first attempt
    of the initial ``connect()`` is immediate; after a drop even the first
    attempt waits. A cycle that runs out of attempts emits
    ``reconnection_failed`` and leaves the client DISCONNECTED.

    Usage:
        client = ReconnectingClient(ClientConfig(url="ws://relay/ws"))

        @client.on_message(MessageType.TRANSCRIPT_UPDATE)
        async def on_transcript(message):
            print(message.payload["text"])

        await client.connect()
        await client.join_session("standup")
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        connect: Callable[[str], Awaitable[Any]] | None = None,
        backoff_sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or ClientConfig()
        self._open = connect or websockets.connect
        self._backoff_sleep = backoff_sleep

        self.state = ClientState.DISCONNECTED
        self.session_id: str | None = None
        self.connect_attempts = 0
        self.dropped_chunks = 0

        self._ws: Any = None
        self._closing = False
        self._receive_task: asyncio.Task | None = None
        self._heartbeat_task: asyncio.Task | None = None

        self._handlers: dict[MessageType, MessageHandler] = {}
        self._default_handler: MessageHandler | None = None
        self._listeners: dict[ClientEvent, list[Callable]] = defaultdict(list)

    @property
    def is_connected(self) -> bool:
        return self.state == ClientState.CONNECTED and self._ws is not None

    # ══════════════════════════════════════════════════════════════
    # Handlers
    # ══════════════════════════════════════════════════════════════

    def on_message(self, message_type: MessageType | str):
        """Decorator registering a handler for one inbound message type."""

        def decorator(handler: MessageHandler) -> MessageHandler:
            self._handlers[MessageType(message_type)] = handler
            return handler

        return decorator

    def set_default_handler(self, handler: MessageHandler) -> None:
        """Handle messages that have no type-specific handler."""
        self._default_handler = handler

    def on(self, event: ClientEvent | str, callback: Callable) -> None:
        """Subscribe to connected / disconnected / reconnection_failed."""
        self._listeners[ClientEvent(event)].append(callback)

    async def _emit(self, event: ClientEvent, *args: Any) -> None:
        for callback in list(self._listeners[event]):
            try:
                result = callback(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("Client event callback failed", client_event=event.value, error=str(e))

    # ══════════════════════════════════════════════════════════════
    # Connection Lifecycle
    # ══════════════════════════════════════════════════════════════

    async def connect(self) -> bool:
        """Run the initial connect cycle. Returns True once CONNECTED."""
        if self.state != ClientState.DISCONNECTED:
            return self.is_connected
        self._closing = False
        return await self._connect_cycle(initial=True)

    async def disconnect(self) -> None:
        """Close the connection and stop reconnecting."""
        self._closing = True
        await self._stop_heartbeat()

        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close(code=NORMAL_CLOSURE)
            except Exception as e:
                logger.debug("Close failed", error=str(e))

        task, self._receive_task = self._receive_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        was_connected = self.state != ClientState.DISCONNECTED
        self.state = ClientState.DISCONNECTED
        if was_connected:
            await self._emit(ClientEvent.DISCONNECTED, NORMAL_CLOSURE)
        logger.info("Disconnected from relay", url=self.config.url)

    async def _connect_cycle(self, initial: bool) -> bool:
        delay = self.config.base_delay

        for attempt in range(1, self.config.max_attempts + 1):
            if self._closing:
                return False

            if attempt > 1 or not initial:
                if not initial:
                    self.state = ClientState.RECONNECTING
                logger.info(
                    "Waiting before connection attempt",
                    attempt=attempt,
                    max_attempts=self.config.max_attempts,
                    delay=delay,
                )
                await self._backoff_sleep(delay)
                delay *= 2
                if self._closing:
                    return False

            self.state = ClientState.CONNECTING
            self.connect_attempts += 1
            try:
                ws = await asyncio.wait_for(
                    self._open(self.config.url),
                    timeout=self.config.connect_timeout,
                )
            except asyncio.TimeoutError:
                logger.warning("Connection attempt timed out", attempt=attempt)
                continue
            except Exception as e:
                logger.warning("Connection attempt failed", attempt=attempt, error=str(e))
                continue

            await self._on_open(ws)
            return True

        self.state = ClientState.DISCONNECTED
        logger.error("Failed to connect to relay", attempts=self.config.max_attempts)
        await self._emit(ClientEvent.RECONNECTION_FAILED, self.config.max_attempts)
        return False

    async def _on_open(self, ws: Any) -> None:
        self._ws = ws
        self.state = ClientState.CONNECTED
        self._receive_task = asyncio.create_task(self._receive_loop(ws))
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        logger.info("Connected to relay", url=self.config.url)
        await self._emit(ClientEvent.CONNECTED)

    async def _on_closed(self, ws: Any) -> None:
        if ws is not self._ws:
            return
        code = getattr(ws, "close_code", None)
        self._ws = None
        await self._stop_heartbeat()

        if self._closing or code == NORMAL_CLOSURE:
            self.state = ClientState.DISCONNECTED
            logger.info("Relay connection closed", code=code)
            await self._emit(ClientEvent.DISCONNECTED, code)
            return

        self.state = ClientState.RECONNECTING
        logger.warning("Relay connection lost", code=code)
        await self._emit(ClientEvent.DISCONNECTED, code)
        await self._connect_cycle(initial=False)

    async def _receive_loop(self, ws: Any) -> None:
        try:
            async for raw in ws:
                await self._handle_raw(raw)
        except websockets.ConnectionClosed:
            pass
        await self._on_closed(ws)

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.heartbeat_interval)
            await self.send(RelayMessage.heartbeat())

    async def _stop_heartbeat(self) -> None:
        task, self._heartbeat_task = self._heartbeat_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _handle_raw(self, raw: str | bytes) -> None:
        try:
            message = decode_message(raw)
        except (ProtocolError, UnknownMessageTypeError) as e:
            logger.warning("Invalid message from relay", error=str(e))
            return

        if expects_reply(message):
            await self.send(RelayMessage.heartbeat())

        handler = self._handlers.get(message.type) or self._default_handler
        if handler is None:
            logger.debug("Unhandled message type", message_type=message.type.value)
            return
        try:
            await handler(message)
        except Exception as e:
            logger.error(
                "Message handler failed",
                message_type=message.type.value,
                error=str(e),
            )

    # ══════════════════════════════════════════════════════════════
    # Sending
    # ══════════════════════════════════════════════════════════════

    async def send(self, message: RelayMessage) -> bool:
        """Send a message. Returns False unless CONNECTED and written."""
        if not self.is_connected:
            return False
        try:
            await self._ws.send(message.to_json())
            return True
        except Exception as e:
            logger.warning("Send failed", message_type=message.type.value, error=str(e))
            return False

    async def join_session(self, session_id: str) -> bool:
        self.session_id = session_id
        return await self.send(RelayMessage.join_session(session_id))

    async def leave_session(self, session_id: str | None = None) -> bool:
        session_id = session_id or self.session_id
        if session_id is None:
            return False
        if session_id == self.session_id:
            self.session_id = None
        return await self.send(RelayMessage.leave_session(session_id))

    async def send_audio(self, audio: bytes, session_id: str | None = None) -> bool:
        """Send one audio chunk. Dropped, not buffered, unless CONNECTED."""
        session_id = session_id or self.session_id
        if session_id is None or not self.is_connected:
            self.dropped_chunks += 1
            return False
        sent = await self.send(RelayMessage.audio_chunk(session_id, audio))
        if not sent:
            self.dropped_chunks += 1
        return sent

    async def request_analysis(
        self,
        analysis_types: list[AnalysisType] | None = None,
        session_id: str | None = None,
    ) -> bool:
        session_id = session_id or self.session_id
        if session_id is None:
            return False
        return await self.send(RelayMessage.request_analysis(session_id, analysis_types))
