"""Core domain models."""

from .models import (
    ActionItem,
    AnalysisResult,
    AnalysisType,
    DEFAULT_ANALYSIS_TYPES,
    Insight,
    JargonTerm,
    SentimentAnalysis,
    SentimentScore,
    Topic,
    TranscriptSegment,
)

__all__ = [
    "ActionItem",
    "AnalysisResult",
    "AnalysisType",
    "DEFAULT_ANALYSIS_TYPES",
    "Insight",
    "JargonTerm",
    "SentimentAnalysis",
    "SentimentScore",
    "Topic",
    "TranscriptSegment",
]
