"""
Relay Service

Dispatches inbound frames, runs provider calls and broadcasts results to
session members.

Each connection gets an ordered mailbox. Audio chunks and analysis
requests are queued there and processed one at a time, so a connection's
results arrive in the order its chunks did, while joins, leaves and
heartbeats are handled straight away.
"""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from functools import partial
from typing import Any

import structlog
from fastapi import WebSocket

from parley.config import Settings, get_settings
from parley.core.models import DEFAULT_ANALYSIS_TYPES, AnalysisType
from parley.exceptions import (
    MailboxFullError,
    NotInSessionError,
    ProtocolError,
    UnknownMessageTypeError,
)
from parley.providers import (
    AnalysisProvider,
    TranscriptionOptions,
    TranscriptionProvider,
    create_providers,
)
from .connection import Connection, ConnectionRegistry
from .heartbeat import HeartbeatMonitor
from .protocol import (
    AnalysisRequestPayload,
    AudioChunkPayload,
    MessageType,
    RelayMessage,
    SessionPayload,
    decode_message,
    parse_payload,
)
from .router import SessionRouter

logger = structlog.get_logger()

SHUTDOWN_CLOSE_CODE = 1001
SHUTDOWN_REASON = "Server shutting down"

Job = Callable[[], Awaitable[None]]


class RelayService:
    """
    Single dispatcher for the relay.

    Owns the per-connection mailboxes and the heartbeat monitor; state
    itself lives in the registry and router.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        router: SessionRouter,
        transcription: TranscriptionProvider,
        analysis: AnalysisProvider,
        audio_format: str = "webm",
        default_analysis_types: Sequence[AnalysisType] = DEFAULT_ANALYSIS_TYPES,
        heartbeat_interval: float = 30.0,
        max_pending_jobs: int = 32,
    ) -> None:
        self.registry = registry
        self.router = router
        self.transcription = transcription
        self.analysis = analysis
        self.audio_format = audio_format
        self.default_analysis_types = list(default_analysis_types)
        self.max_pending_jobs = max_pending_jobs
        self.monitor = HeartbeatMonitor(
            registry,
            interval_seconds=heartbeat_interval,
            on_evict=self.disconnect,
        )

        self._mailboxes: dict[str, asyncio.Queue[Job | None]] = {}
        self._workers: dict[str, asyncio.Task] = {}
        self._draining: set[asyncio.Task] = set()

        self._handlers = {
            MessageType.JOIN_SESSION: self._handle_join,
            MessageType.LEAVE_SESSION: self._handle_leave,
            MessageType.AUDIO_CHUNK: self._handle_audio_chunk,
            MessageType.REQUEST_ANALYSIS: self._handle_request_analysis,
            MessageType.HEARTBEAT: self._handle_heartbeat,
        }

        self.messages_received = 0
        self.chunks_processed = 0
        self.provider_errors = 0
        self.jobs_rejected = 0

    # ══════════════════════════════════════════════════════════════
    # Connection Lifecycle
    # ══════════════════════════════════════════════════════════════

    async def connect(self, transport: WebSocket) -> Connection:
        """
        Register an accepted transport and start its worker.

        Raises:
            RegistryFullError: the registry is at capacity.
        """
        connection_id = await self.registry.register(transport)
        mailbox: asyncio.Queue[Job | None] = asyncio.Queue()
        self._mailboxes[connection_id] = mailbox
        self._workers[connection_id] = asyncio.create_task(
            self._worker(connection_id, mailbox)
        )
        return self.registry.get(connection_id)

    async def disconnect(self, connection_id: str) -> None:
        """Unregister a connection. Work already queued still runs."""
        mailbox = self._mailboxes.pop(connection_id, None)
        worker = self._workers.pop(connection_id, None)
        if mailbox is not None:
            mailbox.put_nowait(None)
        if worker is not None and not worker.done():
            self._draining.add(worker)
            worker.add_done_callback(self._draining.discard)

        await self.registry.unregister(connection_id)

    async def close(self) -> None:
        """Stop the monitor, close every connection and cancel workers."""
        await self.monitor.stop()

        connection_ids = self.registry.connection_ids()
        for connection_id in connection_ids:
            connection = self.registry.get(connection_id)
            if connection is not None:
                await connection.close(SHUTDOWN_CLOSE_CODE, SHUTDOWN_REASON)
            await self.disconnect(connection_id)

        pending = list(self._draining)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        await self.transcription.close()
        await self.analysis.close()
        logger.info("Relay closed", connections=len(connection_ids))

    async def drain(self) -> None:
        """Wait until every mailbox, including disconnected ones, is worked off."""
        await asyncio.gather(
            *(m.join() for m in list(self._mailboxes.values())),
            *list(self._draining),
        )

    async def _worker(self, connection_id: str, mailbox: asyncio.Queue) -> None:
        while True:
            job = await mailbox.get()
            try:
                if job is None:
                    return
                await job()
            except Exception as e:
                logger.exception(
                    "Connection worker job failed",
                    connection_id=connection_id,
                    error=str(e),
                )
            finally:
                mailbox.task_done()

    def _enqueue(self, connection_id: str, job: Job) -> bool:
        """Queue a job on the connection's worker.

        Raises:
            MailboxFullError: max_pending_jobs are already waiting.
        """
        mailbox = self._mailboxes.get(connection_id)
        if mailbox is None:
            return False
        # The unbounded queue keeps room for the stop sentinel.
        pending = mailbox.qsize()
        if pending >= self.max_pending_jobs:
            self.jobs_rejected += 1
            logger.warning(
                "Connection mailbox full",
                connection_id=connection_id,
                pending=pending,
            )
            raise MailboxFullError(pending)
        mailbox.put_nowait(job)
        return True

    # ══════════════════════════════════════════════════════════════
    # Dispatch
    # ══════════════════════════════════════════════════════════════

    async def dispatch(self, connection_id: str, raw: str | bytes) -> None:
        """Handle one inbound text frame."""
        connection = self.registry.get(connection_id)
        if connection is None:
            return
        self.messages_received += 1

        try:
            message = decode_message(raw)
        except UnknownMessageTypeError as e:
            logger.warning(
                "Unknown message type",
                connection_id=connection_id,
                message_type=e.message_type,
            )
            return
        except ProtocolError as e:
            await connection.send(RelayMessage.error(str(e)))
            return

        handler = self._handlers.get(message.type)
        if handler is None:
            logger.debug(
                "Ignoring server-bound message type",
                connection_id=connection_id,
                message_type=message.type.value,
            )
            return

        try:
            await handler(connection, message)
        except NotInSessionError as e:
            await connection.send(RelayMessage.error(str(e), e.session_id))
        except (ProtocolError, MailboxFullError) as e:
            await connection.send(RelayMessage.error(str(e), message.session_id))

    async def dispatch_audio_bytes(self, connection_id: str, data: bytes) -> None:
        """Treat a binary frame as audio for the connection's session."""
        connection = self.registry.get(connection_id)
        if connection is None:
            return
        self.messages_received += 1

        session_id = connection.session_id
        if session_id is None:
            await connection.send(RelayMessage.error(str(NotInSessionError())))
            return
        if not data:
            await connection.send(RelayMessage.error("Invalid audio data", session_id))
            return

        try:
            self._enqueue(
                connection_id, partial(self._process_audio, connection_id, session_id, data)
            )
        except MailboxFullError as e:
            await connection.send(RelayMessage.error(str(e), session_id))

    async def _handle_join(self, connection: Connection, message: RelayMessage) -> None:
        payload: SessionPayload = parse_payload(message)
        await self.router.join(payload.session_id, connection.connection_id)

    async def _handle_leave(self, connection: Connection, message: RelayMessage) -> None:
        payload: SessionPayload = parse_payload(message)
        left = await self.router.leave(payload.session_id, connection.connection_id)
        if not left:
            raise NotInSessionError(payload.session_id)

    async def _handle_audio_chunk(
        self, connection: Connection, message: RelayMessage
    ) -> None:
        payload: AudioChunkPayload = parse_payload(message)
        if connection.session_id != payload.session_id:
            raise NotInSessionError(payload.session_id)

        audio = payload.decode_audio()
        self._enqueue(
            connection.connection_id,
            partial(
                self._process_audio,
                connection.connection_id,
                payload.session_id,
                audio,
            ),
        )

    async def _handle_request_analysis(
        self, connection: Connection, message: RelayMessage
    ) -> None:
        payload: AnalysisRequestPayload = parse_payload(message)
        if connection.session_id != payload.session_id:
            raise NotInSessionError(payload.session_id)

        analysis_types = payload.analysis_types or self.default_analysis_types
        self._enqueue(
            connection.connection_id,
            partial(
                self._process_analysis_request,
                connection.connection_id,
                payload.session_id,
                analysis_types,
            ),
        )

    async def _handle_heartbeat(
        self, connection: Connection, message: RelayMessage
    ) -> None:
        self.monitor.record_heartbeat(connection.connection_id)
        await connection.send(RelayMessage.heartbeat())

    # ══════════════════════════════════════════════════════════════
    # Provider Work
    # ══════════════════════════════════════════════════════════════

    async def _process_audio(
        self, connection_id: str, session_id: str, audio: bytes
    ) -> None:
        try:
            segment = await self.transcription.transcribe(
                audio,
                session_id,
                TranscriptionOptions(audio_format=self.audio_format),
            )
        except Exception as e:
            self.provider_errors += 1
            logger.error(
                "Transcription failed",
                connection_id=connection_id,
                session_id=session_id,
                error=str(e),
            )
            await self._send_error(connection_id, "Transcription failed", session_id)
            return

        self.chunks_processed += 1
        if not segment.text.strip():
            logger.debug("Empty transcript, nothing to relay", session_id=session_id)
            return

        self.router.record_segment(session_id, segment)
        await self.router.broadcast(session_id, RelayMessage.transcript_update(segment))

        try:
            result = await self.analysis.analyze(
                session_id, [segment], self.default_analysis_types
            )
        except Exception as e:
            self.provider_errors += 1
            logger.error(
                "Analysis failed",
                connection_id=connection_id,
                session_id=session_id,
                error=str(e),
            )
            await self._send_error(connection_id, "Analysis failed", session_id)
            return

        await self.router.broadcast(session_id, RelayMessage.analysis_update(result))

    async def _process_analysis_request(
        self,
        connection_id: str,
        session_id: str,
        analysis_types: list[AnalysisType],
    ) -> None:
        segments = self.router.transcript_of(session_id)
        try:
            result = await self.analysis.analyze(session_id, segments, analysis_types)
        except Exception as e:
            self.provider_errors += 1
            logger.error(
                "Requested analysis failed",
                connection_id=connection_id,
                session_id=session_id,
                error=str(e),
            )
            await self._send_error(connection_id, "Analysis failed", session_id)
            return

        connection = self.registry.get(connection_id)
        if connection is not None:
            await connection.send(RelayMessage.analysis_update(result))

    async def _send_error(
        self, connection_id: str, error: str, session_id: str | None = None
    ) -> None:
        connection = self.registry.get(connection_id)
        if connection is not None:
            await connection.send(RelayMessage.error(error, session_id))

    def get_stats(self) -> dict[str, Any]:
        return {
            **self.registry.get_stats(),
            **self.router.get_stats(),
            "messages_received": self.messages_received,
            "chunks_processed": self.chunks_processed,
            "provider_errors": self.provider_errors,
            "jobs_rejected": self.jobs_rejected,
            "queued_jobs": sum(m.qsize() for m in self._mailboxes.values()),
            "evicted_total": self.monitor.evicted_total,
        }


# ══════════════════════════════════════════════════════════════
# Application Instance
# ══════════════════════════════════════════════════════════════

_relay: RelayService | None = None


def build_relay(
    settings: Settings,
    transcription: TranscriptionProvider | None = None,
    analysis: AnalysisProvider | None = None,
) -> RelayService:
    """Wire a RelayService from settings."""
    if transcription is None or analysis is None:
        default_transcription, default_analysis = create_providers(settings)
        transcription = transcription or default_transcription
        analysis = analysis or default_analysis

    registry = ConnectionRegistry(max_connections=settings.max_connections)
    router = SessionRouter(registry, transcript_limit=settings.transcript_history_limit)
    return RelayService(
        registry,
        router,
        transcription,
        analysis,
        audio_format=settings.audio_format,
        default_analysis_types=[AnalysisType(t) for t in settings.default_analysis_types],
        heartbeat_interval=settings.heartbeat_interval_seconds,
        max_pending_jobs=settings.max_pending_jobs,
    )


async def init_relay(settings: Settings | None = None) -> RelayService:
    """Initialize the application relay and start its heartbeat monitor."""
    global _relay

    _relay = build_relay(settings or get_settings())
    _relay.monitor.start()
    logger.info("Relay initialized")
    return _relay


async def close_relay() -> None:
    """Close the application relay."""
    global _relay

    if _relay:
        await _relay.close()
        _relay = None
        logger.info("Relay shut down")


def get_relay() -> RelayService:
    """Get the application relay."""
    if not _relay:
        raise RuntimeError("Relay not initialized. Call init_relay() first.")
    return _relay


__all__ = ["RelayService", "build_relay", "init_relay", "close_relay", "get_relay"]
