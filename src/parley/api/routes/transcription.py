"""
Transcription Routes

Transcribe a whole audio file over HTTP, outside any live session.
"""

import time

import structlog
from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status

from parley.api.limits import limiter
from parley.config import settings
from parley.exceptions import ProviderError
from parley.providers import AUDIO_MIME_TYPES, TranscriptionOptions
from parley.realtime.relay import RelayService, get_relay

logger = structlog.get_logger()

router = APIRouter()

FORMATS_BY_MIME = {mime: fmt for fmt, mime in AUDIO_MIME_TYPES.items()}
FORMATS_BY_MIME["audio/mp3"] = "mp3"


def resolve_format(content_type: str | None, requested: str | None) -> str:
    """Pick the audio format from the form field or the upload's MIME type."""
    if requested:
        if requested not in AUDIO_MIME_TYPES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Unsupported audio format. Allowed: {sorted(AUDIO_MIME_TYPES)}",
            )
        return requested

    mime = (content_type or "").split(";")[0].strip()
    if mime in FORMATS_BY_MIME:
        return FORMATS_BY_MIME[mime]
    if mime in ("", "application/octet-stream"):
        return settings.audio_format
    raise HTTPException(
        status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
        detail=f"Unsupported file type: {mime}",
    )


@router.post("/upload")
@limiter.limit(settings.rate_limit_upload)
async def upload_audio(
    request: Request,
    audio: UploadFile = File(...),
    session_id: str = Form("upload", alias="sessionId"),
    language: str | None = Form(None),
    audio_format: str | None = Form(None, alias="format"),
    relay: RelayService = Depends(get_relay),
) -> dict:
    """Transcribe an uploaded audio file in one provider call."""
    fmt = resolve_format(audio.content_type, audio_format)

    languages = relay.transcription.languages
    if language and languages and language not in languages:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported language: {language}",
        )

    data = await audio.read(settings.max_upload_bytes + 1)
    if not data:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No audio file provided",
        )
    if len(data) > settings.max_upload_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail="Audio file too large",
        )

    logger.info(
        "Transcription upload received",
        session_id=session_id,
        bytes=len(data),
        audio_format=fmt,
        language=language,
    )

    start = time.perf_counter()
    try:
        segment = await relay.transcription.transcribe(
            data,
            session_id,
            TranscriptionOptions(audio_format=fmt, language=language),
        )
    except ProviderError as e:
        logger.error("Upload transcription failed", session_id=session_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Transcription failed",
        ) from e

    return {
        "transcript": segment.to_wire(),
        "processingTimeMs": round((time.perf_counter() - start) * 1000, 1),
    }


@router.get("/languages")
async def list_languages(relay: RelayService = Depends(get_relay)) -> dict:
    """Language hints the transcription provider accepts."""
    return {"languages": list(relay.transcription.languages)}
