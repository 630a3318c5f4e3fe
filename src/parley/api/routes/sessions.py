"""
Session Routes

Read-only views of the live sessions held by the relay.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status

from parley.core.models import ParleyModel, TranscriptSegment
from parley.realtime.relay import RelayService, get_relay

router = APIRouter()


class SessionSummary(ParleyModel):
    session_id: str
    members: int
    segments: int
    created_at: datetime


class SessionListResponse(ParleyModel):
    sessions: list[SessionSummary]
    total: int


class SessionDetail(ParleyModel):
    session_id: str
    members: list[str]
    transcript: list[TranscriptSegment]
    created_at: datetime


@router.get("", response_model=SessionListResponse)
async def list_sessions(
    relay: RelayService = Depends(get_relay),
) -> SessionListResponse:
    """List active sessions."""
    sessions = []
    for session_id in relay.router.session_ids():
        session = relay.router.get_session(session_id)
        if session is None:
            continue
        sessions.append(
            SessionSummary(
                session_id=session_id,
                members=len(session.members),
                segments=len(session.transcript),
                created_at=session.created_at,
            )
        )
    return SessionListResponse(sessions=sessions, total=len(sessions))


@router.get("/{session_id}", response_model=SessionDetail)
async def get_session(
    session_id: str,
    relay: RelayService = Depends(get_relay),
) -> SessionDetail:
    """Members and accumulated transcript of one session."""
    session = relay.router.get_session(session_id)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found",
        )
    return SessionDetail(
        session_id=session_id,
        members=sorted(session.members),
        transcript=list(session.transcript),
        created_at=session.created_at,
    )
