"""
Pytest Configuration and Fixtures

Shared fixtures for unit and integration tests.
"""

from collections.abc import Sequence
from unittest.mock import AsyncMock, MagicMock

import orjson
import pytest
import pytest_asyncio
from starlette.websockets import WebSocketState

from parley.api.limits import limiter
from parley.config import Settings
from parley.core.models import AnalysisResult, AnalysisType, TranscriptSegment
from parley.exceptions import ProviderError
from parley.providers import (
    AnalysisProvider,
    TranscriptionOptions,
    TranscriptionProvider,
)
from parley.realtime.connection import ConnectionRegistry
from parley.realtime.relay import RelayService
from parley.realtime.router import SessionRouter


# ══════════════════════════════════════════════════════════════
# Settings Fixtures
# ══════════════════════════════════════════════════════════════


@pytest.fixture
def test_settings() -> Settings:
    """Settings that never reach a real provider."""
    return Settings(
        app_env="development",
        debug=True,
        openai_api_key="",
        heartbeat_interval_seconds=30.0,
        max_connections=10,
        transcript_history_limit=50,
    )


@pytest.fixture(autouse=True)
def reset_rate_limits():
    """Rate limit counters are process-wide; start every test from zero."""
    limiter.reset()
    yield
    limiter.reset()


# ══════════════════════════════════════════════════════════════
# Transport Fixtures
# ══════════════════════════════════════════════════════════════


def _make_websocket() -> MagicMock:
    ws = MagicMock()
    ws.client_state = WebSocketState.CONNECTED
    ws.send_text = AsyncMock()

    async def close(code: int = 1000, reason: str | None = None) -> None:
        ws.client_state = WebSocketState.DISCONNECTED

    ws.close = AsyncMock(side_effect=close)
    return ws


@pytest.fixture
def mock_websocket() -> MagicMock:
    """An accepted FastAPI WebSocket that records what is sent to it."""
    return _make_websocket()


@pytest.fixture
def websocket_factory():
    """Build as many mock WebSockets as a test needs."""
    return _make_websocket


@pytest.fixture
def sent():
    """Decode every frame sent to a mock WebSocket, optionally by type."""

    def frames(ws: MagicMock, message_type: str | None = None) -> list[dict]:
        messages = [orjson.loads(c.args[0]) for c in ws.send_text.await_args_list]
        if message_type is None:
            return messages
        return [m for m in messages if m["type"] == message_type]

    return frames


# ══════════════════════════════════════════════════════════════
# Provider Fixtures
# ══════════════════════════════════════════════════════════════


class FakeTranscriptionProvider(TranscriptionProvider):
    """Transcribes audio bytes as their UTF-8 text."""

    name = "fake"
    languages = ("en", "es")

    def __init__(self) -> None:
        self.calls: list[tuple[bytes, str]] = []
        self.options: list[TranscriptionOptions | None] = []
        self.fail = False
        self.closed = False

    async def transcribe(
        self,
        audio: bytes,
        session_id: str,
        options: TranscriptionOptions | None = None,
    ) -> TranscriptSegment:
        self.calls.append((audio, session_id))
        self.options.append(options)
        if self.fail:
            raise ProviderError("whisper unavailable")
        return TranscriptSegment(
            session_id=session_id,
            text=audio.decode(errors="replace"),
            confidence=0.9,
        )

    async def close(self) -> None:
        self.closed = True


class FakeAnalysisProvider(AnalysisProvider):
    """Summarizes by joining segment text."""

    name = "fake"

    def __init__(self) -> None:
        self.calls: list[tuple[str, list[str], list[AnalysisType] | None]] = []
        self.fail = False
        self.closed = False

    async def analyze(
        self,
        session_id: str,
        segments: Sequence[TranscriptSegment],
        analysis_types: Sequence[AnalysisType] | None = None,
    ) -> AnalysisResult:
        texts = [s.text for s in segments]
        self.calls.append(
            (session_id, texts, list(analysis_types) if analysis_types else None)
        )
        if self.fail:
            raise ProviderError("model unavailable")
        return AnalysisResult(session_id=session_id, summary=" | ".join(texts))

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def transcription() -> FakeTranscriptionProvider:
    return FakeTranscriptionProvider()


@pytest.fixture
def analysis() -> FakeAnalysisProvider:
    return FakeAnalysisProvider()


# ══════════════════════════════════════════════════════════════
# Relay Fixtures
# ══════════════════════════════════════════════════════════════


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry(max_connections=10)


@pytest.fixture
def router(registry) -> SessionRouter:
    return SessionRouter(registry, transcript_limit=50)


@pytest_asyncio.fixture
async def relay(registry, router, transcription, analysis):
    """A RelayService over fake providers, closed after the test."""
    service = RelayService(
        registry,
        router,
        transcription,
        analysis,
        heartbeat_interval=30.0,
    )
    yield service
    await service.close()
