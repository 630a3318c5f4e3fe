"""
OpenAI Providers

Whisper transcription and chat-completion analysis. Each requested
analysis is a separate JSON-mode completion; they run concurrently.
"""

import asyncio
import time
from collections.abc import Sequence
from typing import Any

import orjson
import structlog
from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel, ValidationError

from parley.config import Settings
from parley.core.models import (
    DEFAULT_ANALYSIS_TYPES,
    ActionItem,
    AnalysisResult,
    AnalysisType,
    Insight,
    JargonTerm,
    SentimentAnalysis,
    SentimentScore,
    Topic,
    TranscriptSegment,
)
from parley.exceptions import ProviderError
from .base import AnalysisProvider, TranscriptionOptions, TranscriptionProvider

logger = structlog.get_logger()

AUDIO_MIME_TYPES = {
    "webm": "audio/webm",
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "ogg": "audio/ogg",
}

ENGLISH = {"en", "english"}

# ISO-639-1 codes Whisper accepts as a language hint.
WHISPER_LANGUAGES = (
    "en", "zh", "de", "es", "ru", "ko", "fr", "ja", "pt", "tr", "pl", "ca", "nl",
    "ar", "sv", "it", "id", "hi", "fi", "vi", "he", "uk", "el", "ms", "cs", "ro",
    "da", "hu", "ta", "no", "th", "ur", "hr", "bg", "lt", "la", "mi", "ml", "cy",
    "sk", "te", "fa", "lv", "bn", "sr", "az", "sl", "kn", "et", "mk", "br", "eu",
    "is", "hy", "ne", "mn", "bs", "kk", "sq", "sw", "gl", "mr", "pa", "si", "km",
    "sn", "yo", "so", "af", "oc", "ka", "be", "tg", "sd", "gu", "am", "yi", "lo",
    "uz", "fo", "ht", "ps", "tk", "nn", "mt", "sa", "lb", "my", "bo", "tl", "mg",
    "as", "tt", "haw", "ln", "ha", "ba", "jw", "su",
)


def estimate_confidence(text: str, language: str | None) -> float:
    """Whisper reports no confidence, so estimate one from the output."""
    text = text.strip()
    if not text:
        return 0.0

    confidence = 0.8
    if len(text) < 10:
        confidence -= 0.2
    elif len(text) > 100:
        confidence += 0.1

    if language and language.lower() not in ENGLISH:
        confidence -= 0.1

    return max(0.0, min(1.0, confidence))


class _OpenAIClientMixin:
    """Lazily builds the AsyncOpenAI client from settings."""

    def __init__(self, settings: Settings, client: AsyncOpenAI | None = None):
        self.settings = settings
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.settings.openai_api_key:
                raise ProviderError("OpenAI API key not configured")
            self._client = AsyncOpenAI(api_key=self.settings.openai_api_key)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


# ══════════════════════════════════════════════════════════════
# Transcription
# ══════════════════════════════════════════════════════════════


class OpenAITranscriptionProvider(_OpenAIClientMixin, TranscriptionProvider):
    """Transcribes audio chunks with the Whisper API."""

    name = "openai-whisper"
    languages = WHISPER_LANGUAGES

    async def transcribe(
        self,
        audio: bytes,
        session_id: str,
        options: TranscriptionOptions | None = None,
    ) -> TranscriptSegment:
        options = options or TranscriptionOptions(
            audio_format=self.settings.audio_format
        )
        if not audio:
            raise ProviderError("Empty audio chunk")

        fmt = options.audio_format
        kwargs: dict[str, Any] = {}
        if options.language:
            kwargs["language"] = options.language

        start = time.perf_counter()
        try:
            response = await self.client.audio.transcriptions.create(
                file=(f"audio.{fmt}", audio, AUDIO_MIME_TYPES.get(fmt, "audio/webm")),
                model=self.settings.openai_whisper_model,
                response_format="verbose_json",
                **kwargs,
            )
        except OpenAIError as e:
            logger.error("Whisper transcription failed", session_id=session_id, error=str(e))
            raise ProviderError(f"Transcription failed: {e}") from e

        text = (getattr(response, "text", "") or "").strip()
        language = getattr(response, "language", None) or options.language or "en"
        duration = getattr(response, "duration", None)

        logger.debug(
            "Audio transcribed",
            session_id=session_id,
            bytes=len(audio),
            chars=len(text),
            elapsed_ms=round((time.perf_counter() - start) * 1000, 1),
        )

        return TranscriptSegment(
            session_id=session_id,
            speaker_id=options.speaker_id,
            speaker_name=options.speaker_name,
            text=text,
            confidence=estimate_confidence(text, language),
            language=language,
            duration=duration,
        )


# ══════════════════════════════════════════════════════════════
# Analysis
# ══════════════════════════════════════════════════════════════

ANALYSIS_PROMPTS: dict[AnalysisType, tuple[str, str, int]] = {
    AnalysisType.SUMMARY: (
        "You are an expert meeting analyst. Provide clear, concise summaries.",
        'Summarize this meeting transcript in 2-4 sentences. '
        'Respond as JSON: {"summary": "..."}',
        500,
    ),
    AnalysisType.ACTION_ITEMS: (
        "You identify action items in meeting transcripts. Return only valid JSON.",
        "Extract action items with the responsible person, deadline and "
        'priority (low|medium|high|urgent) where mentioned. Respond as JSON: '
        '{"actionItems": [{"text": "...", "assignee": null, "dueDate": null, '
        '"priority": "medium", "context": "..."}]}',
        1000,
    ),
    AnalysisType.SENTIMENT: (
        "You analyze meeting sentiment objectively. Return only valid JSON.",
        "Score the overall sentiment of this transcript. positive, neutral "
        "and negative are fractions summing to 1; compound is -1 to 1. "
        'Respond as JSON: {"overall": {"positive": 0.0, "neutral": 0.0, '
        '"negative": 0.0, "compound": 0.0}}',
        300,
    ),
    AnalysisType.JARGON: (
        "You explain technical jargon simply. Return only valid JSON.",
        "List technical terms and acronyms in this transcript that need "
        'explanation. Respond as JSON: {"terms": [{"term": "...", '
        '"definition": "...", "category": "technology|business|industry|other", '
        '"confidence": 0.8}]}',
        1000,
    ),
    AnalysisType.TOPICS: (
        "You extract topics from meeting transcripts. Return only valid JSON.",
        'List the main topics discussed. Respond as JSON: {"topics": '
        '[{"name": "...", "keywords": ["..."], "relevanceScore": 0.8}]}',
        800,
    ),
    AnalysisType.INSIGHTS: (
        "You are a business analyst. Return only valid JSON.",
        "Identify decisions, concerns, opportunities, risks, follow-ups and "
        'blockers. Respond as JSON: {"insights": [{"type": "decision", '
        '"title": "...", "description": "...", "confidence": 0.8, '
        '"actionable": true}]}',
        1000,
    ),
}


def _parse_items(model: type[BaseModel], items: Any) -> list:
    parsed = []
    for item in items if isinstance(items, list) else []:
        try:
            parsed.append(model.model_validate(item))
        except ValidationError:
            logger.debug("Skipping malformed item", model=model.__name__, item=item)
    return parsed


def _parse_sentiment(data: dict[str, Any]) -> SentimentAnalysis:
    overall = data.get("overall")
    if not isinstance(overall, dict):
        logger.debug("Skipping malformed sentiment", overall=overall)
        return SentimentAnalysis(overall=SentimentScore())

    scores = {}
    for key in ("positive", "neutral", "negative"):
        value = overall.get(key)
        if isinstance(value, (int, float)):
            scores[key] = value
    # Some models answer in percentages.
    if any(v > 1 for v in scores.values()):
        scores = {k: v / 100 for k, v in scores.items()}
    try:
        score = SentimentScore(**scores, compound=overall.get("compound", 0.0))
    except ValidationError:
        score = SentimentScore()
    return SentimentAnalysis(overall=score)


class OpenAIAnalysisProvider(_OpenAIClientMixin, AnalysisProvider):
    """Runs one chat completion per requested analysis type."""

    name = "openai-chat"

    async def analyze(
        self,
        session_id: str,
        segments: Sequence[TranscriptSegment],
        analysis_types: Sequence[AnalysisType] | None = None,
    ) -> AnalysisResult:
        text = " ".join(s.text for s in segments if s.text).strip()
        if not text:
            return AnalysisResult.empty(session_id)

        types = list(dict.fromkeys(analysis_types or DEFAULT_ANALYSIS_TYPES))
        start = time.perf_counter()

        outputs = await asyncio.gather(
            *(self._complete(analysis_type, text) for analysis_type in types)
        )

        fields: dict[str, Any] = {}
        for analysis_type, data in zip(types, outputs):
            fields.update(self._to_fields(analysis_type, data))

        logger.info(
            "Analysis completed",
            session_id=session_id,
            analysis_types=[t.value for t in types],
            segments=len(segments),
            text_length=len(text),
            elapsed_ms=round((time.perf_counter() - start) * 1000, 1),
        )
        return AnalysisResult(session_id=session_id, **fields)

    async def _complete(self, analysis_type: AnalysisType, text: str) -> dict[str, Any]:
        system, instruction, max_tokens = ANALYSIS_PROMPTS[analysis_type]
        try:
            response = await self.client.chat.completions.create(
                model=self.settings.openai_model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": f"{instruction}\n\nTranscript:\n{text}"},
                ],
                response_format={"type": "json_object"},
                max_tokens=min(max_tokens, self.settings.openai_max_tokens),
                temperature=self.settings.openai_temperature,
            )
        except OpenAIError as e:
            logger.error(
                "Analysis completion failed",
                analysis_type=analysis_type.value,
                error=str(e),
            )
            raise ProviderError(f"Analysis failed: {e}") from e

        content = response.choices[0].message.content or "{}"
        try:
            data = orjson.loads(content)
        except orjson.JSONDecodeError:
            logger.warning(
                "Unparseable analysis response",
                analysis_type=analysis_type.value,
            )
            return {}
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _to_fields(analysis_type: AnalysisType, data: dict[str, Any]) -> dict[str, Any]:
        if analysis_type == AnalysisType.SUMMARY:
            return {"summary": str(data.get("summary") or "Summary unavailable")}
        if analysis_type == AnalysisType.ACTION_ITEMS:
            return {"action_items": _parse_items(ActionItem, data.get("actionItems"))}
        if analysis_type == AnalysisType.SENTIMENT:
            return {"sentiment": _parse_sentiment(data)}
        if analysis_type == AnalysisType.JARGON:
            return {"jargon_terms": _parse_items(JargonTerm, data.get("terms"))}
        if analysis_type == AnalysisType.TOPICS:
            return {"topics": _parse_items(Topic, data.get("topics"))}
        if analysis_type == AnalysisType.INSIGHTS:
            return {"insights": _parse_items(Insight, data.get("insights"))}
        return {}
