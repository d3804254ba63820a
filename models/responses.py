from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


INDUSTRIES = [
    "education",
    "local_government",
    "state_government",
    "federal_government",
    "healthcare",
    "msp",
    "technology",
    "finance",
    "manufacturing",
    "retail",
    "nonprofit",
    "other",
]


class DecisionProcess(BaseModel):
    stakeholders: List[str] = Field(default_factory=list)
    timeline: Optional[str] = None
    budget_signals: Optional[str] = None


# ── Structured fields folded from per-call analyses ──

class CriticalGapSummary(BaseModel):
    category: str
    description: str
    impact: Optional[str] = None
    suggested_question: Optional[str] = None


class CompetitorSummary(BaseModel):
    name: str
    status: Optional[str] = None
    positioning: Optional[str] = Field(None, description="Winning / Losing / Neutral / At Risk")


class CoachingTrend(BaseModel):
    # Most recent grade, not a computed average
    avg_grade: Optional[str] = None
    primary_focus_area: Optional[str] = None
    recent_grades: List[str] = Field(default_factory=list, description="Newest first")


class HeatSnapshot(BaseModel):
    call_id: str
    heat_score: Optional[float] = None
    temperature: Optional[str] = None
    trend: Optional[str] = None
    winning_probability: Optional[str] = None
    recommended_action: Optional[str] = None
    estimated_close_date: Optional[str] = None


class NarrativeInsights(BaseModel):
    """The AI-written part of the snapshot."""
    business_context: str = ""
    pain_points: List[str] = Field(default_factory=list)
    decision_process: DecisionProcess = Field(default_factory=DecisionProcess)
    competitors_mentioned: List[str] = Field(default_factory=list)
    communication_summary: str = ""
    key_opportunities: List[str] = Field(default_factory=list)
    relationship_health: str = ""
    industry: Optional[str] = None


class AccountInsightSnapshot(NarrativeInsights):
    """Account-level insight record. Replaced wholesale on every regeneration."""
    last_analyzed_at: Optional[datetime] = None
    critical_gaps_summary: List[CriticalGapSummary] = Field(default_factory=list, max_length=5)
    competitors_summary: List[CompetitorSummary] = Field(default_factory=list, max_length=5)
    prospect_persona: Optional[str] = None
    coaching_trend: Optional[CoachingTrend] = None
    latest_heat_analysis: Optional[HeatSnapshot] = None


class RegenerateInsightsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    insights: Optional[AccountInsightSnapshot] = None
    message: Optional[str] = None
    error: Optional[str] = None
    is_rate_limited: Optional[bool] = Field(None, alias="isRateLimited")
    retry_after: Optional[int] = None


class ErrorResponse(BaseModel):
    error: str
    detail: Optional[str] = None
