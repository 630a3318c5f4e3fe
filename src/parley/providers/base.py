"""
Provider Interfaces

The relay calls out to a transcription provider for every audio chunk and
to an analysis provider for every new segment or analysis request.
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass

from parley.core.models import AnalysisResult, AnalysisType, TranscriptSegment


@dataclass
class TranscriptionOptions:
    """Per-call transcription hints."""

    audio_format: str = "webm"
    language: str | None = None
    speaker_id: str | None = None
    speaker_name: str | None = None


class TranscriptionProvider(ABC):
    """Turns a chunk of encoded audio into a transcript segment."""

    name: str = "base"
    # Language codes accepted as hints; empty means auto-detect only.
    languages: tuple[str, ...] = ()

    @abstractmethod
    async def transcribe(
        self,
        audio: bytes,
        session_id: str,
        options: TranscriptionOptions | None = None,
    ) -> TranscriptSegment:
        """Transcribe one audio chunk. May raise ProviderError."""
        pass

    async def close(self) -> None:
        """Release provider resources."""
        pass


class AnalysisProvider(ABC):
    """Derives summaries, action items and the like from transcript text."""

    name: str = "base"

    @abstractmethod
    async def analyze(
        self,
        session_id: str,
        segments: Sequence[TranscriptSegment],
        analysis_types: Sequence[AnalysisType] | None = None,
    ) -> AnalysisResult:
        """Analyze segments. May raise ProviderError."""
        pass

    async def close(self) -> None:
        """Release provider resources."""
        pass
