"""
Unit Tests for the Relay Wire Protocol

Tests message construction, serialization and inbound frame decoding.
"""

import base64

import orjson
import pytest
from pydantic import ValidationError

from parley.core.models import AnalysisResult, AnalysisType, TranscriptSegment
from parley.exceptions import ProtocolError, UnknownMessageTypeError
from parley.realtime.protocol import (
    AnalysisRequestPayload,
    AudioChunkPayload,
    HeartbeatPayload,
    MessageType,
    RelayMessage,
    SessionPayload,
    decode_message,
    expects_reply,
    parse_payload,
)


def frame(**data) -> str:
    return orjson.dumps(data).decode()


# ============================================================
# Outbound Messages
# ============================================================


class TestRelayMessageConstructors:
    """Test server and client message constructors."""

    def test_session_joined_wire_shape(self):
        wire = RelayMessage.session_joined("s1").to_wire()

        assert wire["type"] == "session_joined"
        assert wire["payload"] == {"sessionId": "s1"}
        assert wire["sessionId"] == "s1"
        assert "timestamp" in wire

    def test_session_id_omitted_when_absent(self):
        wire = RelayMessage.error("boom").to_wire()

        assert "sessionId" not in wire
        assert wire["payload"] == {"error": "boom"}

    def test_transcript_update_uses_camel_case(self):
        segment = TranscriptSegment(
            session_id="s1", text="hello", speaker_name="Ada", confidence=0.7
        )

        wire = RelayMessage.transcript_update(segment).to_wire()

        assert wire["type"] == "transcript_update"
        assert wire["sessionId"] == "s1"
        assert wire["payload"]["sessionId"] == "s1"
        assert wire["payload"]["speakerName"] == "Ada"
        assert wire["payload"]["text"] == "hello"
        assert "speakerId" not in wire["payload"]

    def test_analysis_update_only_carries_populated_fields(self):
        result = AnalysisResult(session_id="s1", summary="short meeting")

        payload = RelayMessage.analysis_update(result).to_wire()["payload"]

        assert payload["summary"] == "short meeting"
        assert payload["sessionId"] == "s1"
        assert "generatedAt" in payload
        assert "actionItems" not in payload

    def test_heartbeat_liveness_flag(self):
        assert "probe" not in RelayMessage.heartbeat().payload
        assert RelayMessage.heartbeat(probe=True).payload["probe"] is True

    def test_audio_chunk_is_base64(self):
        message = RelayMessage.audio_chunk("s1", b"\x00\x01audio")

        assert base64.b64decode(message.payload["audioData"]) == b"\x00\x01audio"

    def test_request_analysis_types(self):
        message = RelayMessage.request_analysis(
            "s1", [AnalysisType.SUMMARY, AnalysisType.TOPICS]
        )

        assert message.payload["analysisTypes"] == ["summary", "topics"]

    def test_messages_are_frozen(self):
        message = RelayMessage.heartbeat()

        with pytest.raises(ValidationError):
            message.type = MessageType.ERROR

    def test_to_json_round_trips_through_decoder(self):
        original = RelayMessage.join_session("standup")

        decoded = decode_message(original.to_json())

        assert decoded.type == MessageType.JOIN_SESSION
        assert decoded.session_id == "standup"
        assert decoded.timestamp == original.timestamp


# ============================================================
# Inbound Decoding
# ============================================================


class TestDecodeMessage:
    """Test decode_message error handling."""

    def test_invalid_json(self):
        with pytest.raises(ProtocolError, match="Invalid message format"):
            decode_message("{not json")

    def test_non_object_frame(self):
        with pytest.raises(ProtocolError):
            decode_message("[1, 2, 3]")

    def test_missing_type(self):
        with pytest.raises(ProtocolError):
            decode_message(frame(payload={}))

    def test_unknown_type(self):
        with pytest.raises(UnknownMessageTypeError) as exc_info:
            decode_message(frame(type="screen_share", payload={}))

        assert exc_info.value.message_type == "screen_share"

    def test_payload_must_be_object(self):
        with pytest.raises(ProtocolError):
            decode_message(frame(type="heartbeat", payload="ping"))

    def test_missing_payload_defaults_to_empty(self):
        message = decode_message(frame(type="heartbeat"))

        assert message.payload == {}

    def test_session_scoped_requires_session_id(self):
        with pytest.raises(ProtocolError, match="Session ID required"):
            decode_message(frame(type="join_session", payload={}))

    def test_envelope_session_id_copied_into_payload(self):
        message = decode_message(
            frame(type="join_session", payload={}, sessionId="s1")
        )

        assert message.payload["sessionId"] == "s1"
        assert message.session_id == "s1"

    def test_bad_timestamp(self):
        with pytest.raises(ProtocolError):
            decode_message(frame(type="heartbeat", timestamp="yesterday"))

    def test_accepts_bytes(self):
        message = decode_message(b'{"type": "heartbeat", "payload": {}}')

        assert message.type == MessageType.HEARTBEAT


class TestParsePayload:
    """Test payload schema validation."""

    def test_join_payload(self):
        payload = parse_payload(RelayMessage.join_session("s1"))

        assert isinstance(payload, SessionPayload)
        assert payload.session_id == "s1"

    def test_audio_payload_decodes(self):
        payload = parse_payload(RelayMessage.audio_chunk("s1", b"pcm"))

        assert isinstance(payload, AudioChunkPayload)
        assert payload.decode_audio() == b"pcm"

    def test_audio_payload_missing_data(self):
        message = decode_message(frame(type="audio_chunk", payload={"sessionId": "s1"}))

        with pytest.raises(ProtocolError, match="audioData"):
            parse_payload(message)

    def test_undecodable_audio(self):
        payload = AudioChunkPayload(sessionId="s1", audioData="***not base64***")

        with pytest.raises(ProtocolError, match="Invalid audio data"):
            payload.decode_audio()

    def test_analysis_request_defaults_to_no_types(self):
        message = decode_message(
            frame(type="request_analysis", payload={"sessionId": "s1"})
        )

        payload = parse_payload(message)

        assert isinstance(payload, AnalysisRequestPayload)
        assert payload.analysis_types == []

    def test_analysis_request_rejects_unknown_type(self):
        message = decode_message(
            frame(
                type="request_analysis",
                payload={"sessionId": "s1", "analysisTypes": ["horoscope"]},
            )
        )

        with pytest.raises(ProtocolError, match="Invalid payload"):
            parse_payload(message)

    def test_heartbeat_payload_reads_liveness_flag(self):
        payload = HeartbeatPayload.model_validate(
            RelayMessage.heartbeat(probe=True).payload
        )

        assert payload.probe is True

    def test_expects_reply(self):
        assert expects_reply(RelayMessage.heartbeat(True)) is True
        assert expects_reply(RelayMessage.heartbeat()) is False

    def test_expects_reply_ignores_other_types(self):
        assert expects_reply(RelayMessage.session_joined("s1")) is False

    def test_expects_reply_malformed_payload(self):
        payload = {**RelayMessage.heartbeat(True).payload, "timestamp": "yesterday"}
        message = decode_message(frame(type="heartbeat", payload=payload))

        assert expects_reply(message) is False
