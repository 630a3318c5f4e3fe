"""Transcription and analysis providers."""

from parley.config import Settings
from .base import AnalysisProvider, TranscriptionOptions, TranscriptionProvider
from .openai_provider import (
    AUDIO_MIME_TYPES,
    WHISPER_LANGUAGES,
    OpenAIAnalysisProvider,
    OpenAITranscriptionProvider,
    estimate_confidence,
)


def create_providers(
    settings: Settings,
) -> tuple[TranscriptionProvider, AnalysisProvider]:
    """Build the configured provider pair."""
    return (
        OpenAITranscriptionProvider(settings),
        OpenAIAnalysisProvider(settings),
    )


__all__ = [
    "AUDIO_MIME_TYPES",
    "WHISPER_LANGUAGES",
    "AnalysisProvider",
    "OpenAIAnalysisProvider",
    "OpenAITranscriptionProvider",
    "TranscriptionOptions",
    "TranscriptionProvider",
    "create_providers",
    "estimate_confidence",
]
