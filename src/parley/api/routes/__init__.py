"""API Route modules."""

from . import analysis, health, relay, sessions, transcription

__all__ = ["analysis", "health", "relay", "sessions", "transcription"]
