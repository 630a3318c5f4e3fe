"""
Unit Tests for the Reconnecting Client

Tests backoff, reconnection, heartbeats and outbound gating against a
scripted fake connector.
"""

import asyncio

import orjson
import pytest

from parley.client import ClientConfig, ClientEvent, ClientState, ReconnectingClient
from parley.config import Settings
from parley.core.models import AnalysisType, TranscriptSegment
from parley.realtime.protocol import MessageType, RelayMessage

CLOSED = object()
HANG = object()


class FakeSocket:
    """Server end of one client connection."""

    def __init__(self) -> None:
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.sent: list[dict] = []
        self.close_code: int | None = None

    async def send(self, data: str) -> None:
        self.sent.append(orjson.loads(data))

    async def close(self, code: int = 1000) -> None:
        self.drop(code)

    def push(self, message: RelayMessage) -> None:
        self.inbox.put_nowait(message.to_json())

    def drop(self, code: int) -> None:
        if self.close_code is None:
            self.close_code = code
            self.inbox.put_nowait(CLOSED)

    def sent_of(self, message_type: str) -> list[dict]:
        return [m for m in self.sent if m["type"] == message_type]

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        item = await self.inbox.get()
        if item is CLOSED:
            raise StopAsyncIteration
        return item


class FakeConnector:
    """Plays back scripted outcomes, one per connection attempt."""

    def __init__(self, *outcomes) -> None:
        self.outcomes = list(outcomes)
        self.attempts = 0
        self.sockets: list[FakeSocket] = []

    async def __call__(self, url: str):
        self.attempts += 1
        outcome = self.outcomes.pop(0) if self.outcomes else FakeSocket()
        if outcome is HANG:
            await asyncio.Event().wait()
        if isinstance(outcome, Exception):
            raise outcome
        self.sockets.append(outcome)
        return outcome


def refused(n: int) -> list[Exception]:
    return [ConnectionRefusedError("refused") for _ in range(n)]


async def eventually(predicate, timeout: float = 1.0) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.001)

    await asyncio.wait_for(poll(), timeout)


@pytest.fixture
def delays():
    return []


@pytest.fixture
def make_client(delays):
    def factory(connector, **config) -> ReconnectingClient:
        async def record_sleep(delay: float) -> None:
            delays.append(delay)

        client = ReconnectingClient(
            ClientConfig(url="ws://relay.test/ws", **config),
            connect=connector,
            backoff_sleep=record_sleep,
        )
        return client

    return factory


# ============================================================
# Backoff
# ============================================================


class TestBackoff:
    """Test the initial connect cycle."""

    @pytest.mark.asyncio
    async def test_connects_immediately(self, make_client, delays):
        connector = FakeConnector()
        client = make_client(connector)

        assert await client.connect() is True

        assert client.state == ClientState.CONNECTED
        assert connector.attempts == 1
        assert delays == []
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_four_refusals_then_success(self, make_client, delays):
        connector = FakeConnector(*refused(4), FakeSocket())
        client = make_client(connector, base_delay=1.0, max_attempts=5)

        assert await client.connect() is True

        assert client.state == ClientState.CONNECTED
        assert connector.attempts == 5
        assert delays == [1.0, 2.0, 4.0, 8.0]
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_exhaustion(self, make_client, delays):
        connector = FakeConnector(*refused(10))
        client = make_client(connector, base_delay=0.5, max_attempts=5)
        failures = []
        client.on(ClientEvent.RECONNECTION_FAILED, failures.append)

        assert await client.connect() is False

        assert client.state == ClientState.DISCONNECTED
        assert connector.attempts == 5
        assert delays == [0.5, 1.0, 2.0, 4.0]
        assert failures == [5]

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failure(self, make_client):
        connector = FakeConnector(HANG, FakeSocket())
        client = make_client(connector, connect_timeout=0.01)

        assert await client.connect() is True

        assert connector.attempts == 2
        await client.disconnect()


# ============================================================
# Reconnection
# ============================================================


class TestReconnection:
    """Test behavior after the connection drops."""

    @pytest.mark.asyncio
    async def test_abnormal_close_reconnects(self, make_client, delays):
        first, second = FakeSocket(), FakeSocket()
        connector = FakeConnector(first, second)
        client = make_client(connector, base_delay=1.0)
        events = []
        client.on("connected", lambda: events.append("connected"))
        client.on("disconnected", lambda code: events.append(("disconnected", code)))
        await client.connect()

        first.drop(1006)
        await eventually(lambda: connector.attempts == 2 and client.is_connected)

        assert delays == [1.0]
        assert events == ["connected", ("disconnected", 1006), "connected"]
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_normal_close_is_terminal(self, make_client):
        sock = FakeSocket()
        connector = FakeConnector(sock)
        client = make_client(connector)
        await client.connect()

        sock.drop(1000)
        await eventually(lambda: client.state == ClientState.DISCONNECTED)
        await asyncio.sleep(0.01)

        assert connector.attempts == 1
        assert client.state == ClientState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_reconnect_exhaustion(self, make_client, delays):
        sock = FakeSocket()
        connector = FakeConnector(sock, *refused(5))
        client = make_client(connector, base_delay=1.0, max_attempts=5)
        failures = []
        client.on(ClientEvent.RECONNECTION_FAILED, failures.append)
        await client.connect()

        sock.drop(1006)
        await eventually(lambda: failures)

        assert connector.attempts == 6
        assert delays == [1.0, 2.0, 4.0, 8.0, 16.0]
        assert client.state == ClientState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_disconnect_stops_reconnecting(self, make_client):
        sock = FakeSocket()
        connector = FakeConnector(sock)
        client = make_client(connector)
        await client.connect()

        await client.disconnect()
        await asyncio.sleep(0.01)

        assert sock.close_code == 1000
        assert client.state == ClientState.DISCONNECTED
        assert connector.attempts == 1


# ============================================================
# Outbound Messages
# ============================================================


class TestSending:
    """Test outbound gating and convenience senders."""

    @pytest.mark.asyncio
    async def test_audio_dropped_while_disconnected(self, make_client):
        client = make_client(FakeConnector())

        assert await client.send_audio(b"pcm", session_id="s1") is False

        assert client.dropped_chunks == 1

    @pytest.mark.asyncio
    async def test_no_audio_during_reconnect(self, make_client, delays):
        first = FakeSocket()
        gate = asyncio.Event()
        client = make_client(FakeConnector(first))

        async def held_sleep(delay: float) -> None:
            delays.append(delay)
            await gate.wait()

        client._backoff_sleep = held_sleep
        await client.connect()
        await client.join_session("s1")

        first.drop(1006)
        await eventually(lambda: client.state == ClientState.RECONNECTING)

        assert await client.send_audio(b"pcm") is False
        assert first.sent_of("audio_chunk") == []
        assert client.dropped_chunks == 1
        gate.set()
        await eventually(lambda: client.is_connected)
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_session_messages(self, make_client):
        connector = FakeConnector()
        client = make_client(connector)
        await client.connect()
        sock = connector.sockets[0]

        await client.join_session("s1")
        await client.send_audio(b"pcm")
        await client.request_analysis([AnalysisType.SUMMARY])
        await client.leave_session()

        types = [m["type"] for m in sock.sent]
        assert types == ["join_session", "audio_chunk", "request_analysis", "leave_session"]
        assert all(m["payload"]["sessionId"] == "s1" for m in sock.sent)
        assert sock.sent[2]["payload"]["analysisTypes"] == ["summary"]
        assert client.session_id is None
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_heartbeat_loop(self, make_client):
        connector = FakeConnector()
        client = make_client(connector, heartbeat_interval=0.01)
        await client.connect()
        sock = connector.sockets[0]

        await eventually(lambda: sock.sent_of("heartbeat"))

        assert "probe" not in sock.sent_of("heartbeat")[0]["payload"]
        await client.disconnect()


# ============================================================
# Inbound Messages
# ============================================================


class TestReceiving:
    """Test liveness replies and handler dispatch."""

    @pytest.mark.asyncio
    async def test_liveness_check_is_answered(self, make_client):
        connector = FakeConnector()
        client = make_client(connector)
        await client.connect()
        sock = connector.sockets[0]

        sock.push(RelayMessage.heartbeat(probe=True))
        await eventually(lambda: sock.sent_of("heartbeat"))

        assert "probe" not in sock.sent_of("heartbeat")[0]["payload"]
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_echo_is_not_answered(self, make_client):
        connector = FakeConnector()
        client = make_client(connector)
        seen = []
        async def default(message):
            seen.append(message.type)

        client.set_default_handler(default)
        await client.connect()
        sock = connector.sockets[0]

        sock.push(RelayMessage.heartbeat())
        await eventually(lambda: seen)

        assert sock.sent_of("heartbeat") == []
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_handlers(self, make_client):
        connector = FakeConnector()
        client = make_client(connector)
        transcripts, others = [], []

        @client.on_message(MessageType.TRANSCRIPT_UPDATE)
        async def on_transcript(message):
            transcripts.append(message.payload["text"])

        async def default(message):
            others.append(message.type)

        client.set_default_handler(default)
        await client.connect()
        sock = connector.sockets[0]

        sock.push(RelayMessage.transcript_update(TranscriptSegment(session_id="s1", text="hi")))
        sock.push(RelayMessage.session_joined("s1"))
        await eventually(lambda: transcripts and others)

        assert transcripts == ["hi"]
        assert others == [MessageType.SESSION_JOINED]
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_handler_error_does_not_stop_receiving(self, make_client):
        connector = FakeConnector()
        client = make_client(connector)
        errors = []

        @client.on_message("transcript_update")
        async def broken(message):
            raise ValueError("bad handler")

        @client.on_message("error")
        async def on_error(message):
            errors.append(message.payload["error"])

        await client.connect()
        sock = connector.sockets[0]
        sock.push(RelayMessage.transcript_update(TranscriptSegment(session_id="s1", text="x")))
        sock.push(RelayMessage.error("Not in a session"))
        await eventually(lambda: errors)

        assert errors == ["Not in a session"]
        assert client.is_connected
        await client.disconnect()


class TestClientConfig:
    """Test ClientConfig."""

    def test_from_settings(self):
        settings = Settings(
            relay_url="ws://example.test/ws",
            client_reconnect_base_delay=0.5,
            client_max_reconnect_attempts=3,
        )

        config = ClientConfig.from_settings(settings)

        assert config.url == "ws://example.test/ws"
        assert config.base_delay == 0.5
        assert config.max_attempts == 3
        assert config.connect_timeout == 10.0
