"""
Relay WebSocket Routes

Accepts relay connections on /ws and hands every frame to the RelayService.
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from parley.exceptions import RegistryFullError
from parley.realtime.relay import RelayService, get_relay

logger = structlog.get_logger()

router = APIRouter()

TRY_AGAIN_LATER = 1013


@router.websocket("/ws")
async def relay_websocket(
    websocket: WebSocket,
    relay: RelayService = Depends(get_relay),
):
    """
    Meeting relay WebSocket endpoint.

    Protocol:
    1. Client connects to /ws
    2. Client sends join_session {sessionId}
    3. Client streams audio_chunk {sessionId, audioData} (or binary frames)
    4. Server broadcasts transcript_update / analysis_update to the session
    5. Server probes with heartbeat {probe: true}; client answers heartbeat
    """
    await websocket.accept()

    try:
        connection = await relay.connect(websocket)
    except RegistryFullError as e:
        logger.warning("Rejecting connection", reason=str(e))
        await websocket.close(code=TRY_AGAIN_LATER, reason="Server at capacity")
        return

    connection_id = connection.connection_id

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                break

            if frame.get("text") is not None:
                await relay.dispatch(connection_id, frame["text"])
            elif frame.get("bytes") is not None:
                await relay.dispatch_audio_bytes(connection_id, frame["bytes"])

    except WebSocketDisconnect:
        pass
    finally:
        await relay.disconnect(connection_id)
        logger.info("WebSocket closed", connection_id=connection_id)


@router.get("/ws/stats")
async def relay_stats(relay: RelayService = Depends(get_relay)) -> dict[str, Any]:
    """Connection, session and throughput counters."""
    return relay.get_stats()
