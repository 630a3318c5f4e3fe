"""
Analysis Routes

One-off analysis of pasted transcript text, outside any live session.
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import Field

from parley.core.models import (
    DEFAULT_ANALYSIS_TYPES,
    AnalysisType,
    ParleyModel,
    TranscriptSegment,
)
from parley.exceptions import ProviderError
from parley.realtime.relay import RelayService, get_relay

logger = structlog.get_logger()

router = APIRouter()


class AnalyzeRequest(ParleyModel):
    """Text to analyze."""

    text: str = Field(min_length=1, max_length=100_000)
    session_id: str = "adhoc"
    analysis_types: list[AnalysisType] = Field(
        default_factory=lambda: list(DEFAULT_ANALYSIS_TYPES)
    )


@router.post("/analyze")
async def analyze_text(
    request: AnalyzeRequest,
    relay: RelayService = Depends(get_relay),
) -> dict:
    """Run the analysis provider over a block of text."""
    segment = TranscriptSegment(session_id=request.session_id, text=request.text)
    try:
        result = await relay.analysis.analyze(
            request.session_id, [segment], request.analysis_types
        )
    except ProviderError as e:
        logger.error("Ad hoc analysis failed", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Analysis failed",
        ) from e
    return result.to_wire()


ANALYSIS_TYPE_INFO: dict[AnalysisType, tuple[str, str]] = {
    AnalysisType.SUMMARY: (
        "Meeting Summary",
        "Generate a concise summary of the meeting",
    ),
    AnalysisType.ACTION_ITEMS: (
        "Action Items",
        "Extract action items and tasks from the discussion",
    ),
    AnalysisType.SENTIMENT: (
        "Sentiment Analysis",
        "Analyze the emotional tone of the meeting",
    ),
    AnalysisType.JARGON: (
        "Jargon Detection",
        "Identify and explain technical terms and jargon",
    ),
    AnalysisType.TOPICS: (
        "Topic Extraction",
        "Identify main topics and themes discussed",
    ),
    AnalysisType.INSIGHTS: (
        "Business Insights",
        "Generate actionable business insights",
    ),
}


@router.get("/types")
async def list_analysis_types() -> dict:
    """Analysis types the provider understands; defaults run on every chunk."""
    return {
        "analysisTypes": [
            {
                "type": analysis_type.value,
                "name": ANALYSIS_TYPE_INFO[analysis_type][0],
                "description": ANALYSIS_TYPE_INFO[analysis_type][1],
                "default": analysis_type in DEFAULT_ANALYSIS_TYPES,
            }
            for analysis_type in AnalysisType
        ]
    }
