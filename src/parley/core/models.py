"""
Parley Core Domain Models

Pydantic models for the values the relay forwards between providers and
clients. Wire keys are camelCase; Python attributes are snake_case.
"""

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ══════════════════════════════════════════════════════════════
# Enums
# ══════════════════════════════════════════════════════════════


class AnalysisType(str, Enum):
    """Analyses an AnalysisProvider can run over a transcript."""

    SUMMARY = "summary"
    ACTION_ITEMS = "action_items"
    SENTIMENT = "sentiment"
    JARGON = "jargon"
    TOPICS = "topics"
    INSIGHTS = "insights"


DEFAULT_ANALYSIS_TYPES: tuple[AnalysisType, ...] = (
    AnalysisType.SUMMARY,
    AnalysisType.ACTION_ITEMS,
    AnalysisType.SENTIMENT,
    AnalysisType.JARGON,
)


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ActionItemStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class InsightType(str, Enum):
    DECISION = "decision"
    CONCERN = "concern"
    OPPORTUNITY = "opportunity"
    RISK = "risk"
    FOLLOW_UP = "follow_up"
    BLOCKER = "blocker"


# ══════════════════════════════════════════════════════════════
# Base Model
# ══════════════════════════════════════════════════════════════


class ParleyModel(BaseModel):
    """Base model with camelCase wire aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    def to_wire(self) -> dict:
        """Serialize for the wire, omitting unset optional fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ══════════════════════════════════════════════════════════════
# Transcript
# ══════════════════════════════════════════════════════════════


class TranscriptSegment(ParleyModel):
    """One transcribed stretch of meeting audio."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    session_id: str
    speaker_id: str | None = None
    speaker_name: str | None = None
    text: str
    timestamp: datetime = Field(default_factory=utcnow)
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    language: str | None = None
    duration: float | None = Field(default=None, ge=0.0)


# ══════════════════════════════════════════════════════════════
# Analysis
# ══════════════════════════════════════════════════════════════


class ActionItem(ParleyModel):
    id: str = Field(default_factory=lambda: uuid4().hex)
    text: str
    assignee: str | None = None
    due_date: str | None = None
    priority: Priority = Priority.MEDIUM
    status: ActionItemStatus = ActionItemStatus.PENDING
    context: str | None = None


class SentimentScore(ParleyModel):
    positive: float = Field(default=0.0, ge=0.0, le=1.0)
    neutral: float = Field(default=1.0, ge=0.0, le=1.0)
    negative: float = Field(default=0.0, ge=0.0, le=1.0)
    compound: float = Field(default=0.0, ge=-1.0, le=1.0)


class ParticipantSentiment(ParleyModel):
    participant_id: str
    sentiment: SentimentScore
    engagement: float = Field(default=0.5, ge=0.0, le=1.0)


class SentimentAnalysis(ParleyModel):
    overall: SentimentScore = Field(default_factory=SentimentScore)
    participants: list[ParticipantSentiment] = Field(default_factory=list)


class JargonTerm(ParleyModel):
    term: str
    definition: str
    category: str = "other"
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    occurrences: int = Field(default=1, ge=0)


class Topic(ParleyModel):
    name: str
    keywords: list[str] = Field(default_factory=list)
    relevance_score: float = Field(default=0.5, ge=0.0, le=1.0)


class Insight(ParleyModel):
    type: InsightType
    title: str
    description: str
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    actionable: bool = False


class AnalysisResult(ParleyModel):
    """Partial meeting analysis.

    Only the analyses that were requested are populated; the rest stay
    None and are left off the wire.
    """

    session_id: str
    summary: str | None = None
    action_items: list[ActionItem] | None = None
    sentiment: SentimentAnalysis | None = None
    jargon_terms: list[JargonTerm] | None = None
    topics: list[Topic] | None = None
    insights: list[Insight] | None = None
    generated_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def empty(cls, session_id: str) -> "AnalysisResult":
        """Analysis of a transcript with no text in it."""
        return cls(
            session_id=session_id,
            summary="No content to analyze",
            action_items=[],
            sentiment=SentimentAnalysis(),
            jargon_terms=[],
            topics=[],
            insights=[],
        )
