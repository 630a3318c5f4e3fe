"""
Relay WebSocket Protocol

Defines the message types and data structures exchanged over /ws.
"""

import base64
import binascii
from datetime import datetime
from enum import Enum
from typing import Any

import orjson
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from parley.core.models import AnalysisResult, AnalysisType, TranscriptSegment, utcnow
from parley.exceptions import ProtocolError, UnknownMessageTypeError


class MessageType(str, Enum):
    """WebSocket message types."""

    # Client -> Server
    JOIN_SESSION = "join_session"
    LEAVE_SESSION = "leave_session"
    AUDIO_CHUNK = "audio_chunk"
    REQUEST_ANALYSIS = "request_analysis"

    # Server -> Client
    SESSION_JOINED = "session_joined"
    SESSION_LEFT = "session_left"
    TRANSCRIPT_UPDATE = "transcript_update"
    ANALYSIS_UPDATE = "analysis_update"
    ERROR = "error"

    # Bidirectional
    HEARTBEAT = "heartbeat"


class RelayMessage(BaseModel):
    """Envelope for every frame on the wire.

    Instances are frozen; build a new message instead of editing one.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: MessageType
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)
    session_id: str | None = Field(default=None, alias="sessionId")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def to_json(self) -> str:
        return orjson.dumps(self.to_wire()).decode()

    # ──────────────────────────────────────────────────────────
    # Constructors
    # ──────────────────────────────────────────────────────────

    @classmethod
    def session_joined(cls, session_id: str) -> "RelayMessage":
        return cls(
            type=MessageType.SESSION_JOINED,
            payload={"sessionId": session_id},
            session_id=session_id,
        )

    @classmethod
    def session_left(cls, session_id: str) -> "RelayMessage":
        return cls(
            type=MessageType.SESSION_LEFT,
            payload={"sessionId": session_id},
            session_id=session_id,
        )

    @classmethod
    def transcript_update(cls, segment: TranscriptSegment) -> "RelayMessage":
        return cls(
            type=MessageType.TRANSCRIPT_UPDATE,
            payload=segment.to_wire(),
            session_id=segment.session_id,
        )

    @classmethod
    def analysis_update(cls, analysis: AnalysisResult) -> "RelayMessage":
        return cls(
            type=MessageType.ANALYSIS_UPDATE,
            payload=analysis.to_wire(),
            session_id=analysis.session_id,
        )

    @classmethod
    def error(cls, error: str, session_id: str | None = None) -> "RelayMessage":
        return cls(
            type=MessageType.ERROR,
            payload=ErrorPayload(error=error).model_dump(),
            session_id=session_id,
        )

    @classmethod
    def heartbeat(cls, probe: bool = False) -> "RelayMessage":
        payload: dict[str, Any] = {"timestamp": utcnow().isoformat()}
        if probe:
            payload["probe"] = True
        return cls(type=MessageType.HEARTBEAT, payload=payload)

    @classmethod
    def join_session(cls, session_id: str) -> "RelayMessage":
        return cls(
            type=MessageType.JOIN_SESSION,
            payload={"sessionId": session_id},
            session_id=session_id,
        )

    @classmethod
    def leave_session(cls, session_id: str) -> "RelayMessage":
        return cls(
            type=MessageType.LEAVE_SESSION,
            payload={"sessionId": session_id},
            session_id=session_id,
        )

    @classmethod
    def audio_chunk(cls, session_id: str, audio: bytes) -> "RelayMessage":
        return cls(
            type=MessageType.AUDIO_CHUNK,
            payload={
                "sessionId": session_id,
                "audioData": base64.b64encode(audio).decode(),
            },
            session_id=session_id,
        )

    @classmethod
    def request_analysis(
        cls,
        session_id: str,
        analysis_types: list[AnalysisType] | None = None,
    ) -> "RelayMessage":
        return cls(
            type=MessageType.REQUEST_ANALYSIS,
            payload={
                "sessionId": session_id,
                "analysisTypes": [t.value for t in analysis_types or []],
            },
            session_id=session_id,
        )


# ══════════════════════════════════════════════════════════════
# Specific Message Payloads
# ══════════════════════════════════════════════════════════════


class SessionPayload(BaseModel):
    """Payload for join_session / leave_session."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId", min_length=1)


class AudioChunkPayload(SessionPayload):
    """Payload for audio_chunk."""

    audio_data: str = Field(alias="audioData", min_length=1)

    def decode_audio(self) -> bytes:
        try:
            return base64.b64decode(self.audio_data, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ProtocolError("Invalid audio data") from e


class AnalysisRequestPayload(SessionPayload):
    """Payload for request_analysis."""

    analysis_types: list[AnalysisType] = Field(
        default_factory=list, alias="analysisTypes"
    )


class ErrorPayload(BaseModel):
    """Payload for error."""

    error: str


class HeartbeatPayload(BaseModel):
    """Payload for heartbeat.

    Server liveness probes set ``probe`` and expect a heartbeat back.
    """

    timestamp: datetime = Field(default_factory=utcnow)
    probe: bool = False


SESSION_SCOPED = {
    MessageType.JOIN_SESSION: SessionPayload,
    MessageType.LEAVE_SESSION: SessionPayload,
    MessageType.AUDIO_CHUNK: AudioChunkPayload,
    MessageType.REQUEST_ANALYSIS: AnalysisRequestPayload,
}


# ══════════════════════════════════════════════════════════════
# Decoding
# ══════════════════════════════════════════════════════════════


def decode_message(raw: str | bytes) -> RelayMessage:
    """Parse one inbound text frame into a RelayMessage.

    Session-scoped messages may carry ``sessionId`` on the envelope only;
    it is copied into the payload so handlers see one place.

    Raises:
        UnknownMessageTypeError: the frame is well formed but its type is
            not one this server knows.
        ProtocolError: anything else wrong with the frame.
    """
    try:
        data = orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        raise ProtocolError("Invalid message format") from e

    if not isinstance(data, dict):
        raise ProtocolError("Invalid message format")

    raw_type = data.get("type")
    if not isinstance(raw_type, str):
        raise ProtocolError("Invalid message format")
    try:
        message_type = MessageType(raw_type)
    except ValueError:
        raise UnknownMessageTypeError(raw_type) from None

    payload = data.get("payload") or {}
    if not isinstance(payload, dict):
        raise ProtocolError("Invalid message format")

    envelope_session = data.get("sessionId")
    if message_type in SESSION_SCOPED:
        if not payload.get("sessionId") and envelope_session:
            payload = {**payload, "sessionId": envelope_session}
        if not payload.get("sessionId"):
            raise ProtocolError("Session ID required")

    fields: dict[str, Any] = {
        "type": message_type,
        "payload": payload,
        "session_id": envelope_session or payload.get("sessionId"),
    }
    if data.get("timestamp"):
        fields["timestamp"] = data["timestamp"]

    try:
        return RelayMessage(**fields)
    except ValidationError as e:
        raise ProtocolError("Invalid message format") from e


def parse_payload(message: RelayMessage) -> BaseModel:
    """Validate a session-scoped message's payload against its schema."""
    schema = SESSION_SCOPED[message.type]
    try:
        return schema.model_validate(message.payload)
    except ValidationError as e:
        raise ProtocolError(_describe(e)) from e


def _describe(error: ValidationError) -> str:
    first = error.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ()))
    return f"Invalid payload: {field} {first.get('msg', '')}".strip()


def expects_reply(message: RelayMessage) -> bool:
    """True for a server liveness check, which expects a heartbeat back."""
    if message.type != MessageType.HEARTBEAT:
        return False
    try:
        return HeartbeatPayload.model_validate(message.payload).probe
    except ValidationError:
        return False
