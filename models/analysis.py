"""
Versioned schemas for stored per-call analysis output.

Every analysis kind has a legacy (V1) and a current (V2) shape. Records
written by the first analysis pipeline stay in storage indefinitely, so both
shapes must keep validating. The ordered descriptor lists that drive the
fallback live in services/schema_validator.py.
"""
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator


PassFail = Literal["Pass", "Fail"]
Severity = Literal["High", "Medium", "Low"]
Sentiment = Literal["Positive", "Neutral", "Negative", "Skeptical"]


# ═══════════════════════════════════════════════════════════
#  Metadata (call facts)
# ═══════════════════════════════════════════════════════════

class Participant(BaseModel):
    name: str
    role: str
    is_decision_maker: bool
    sentiment: Sentiment


class Logistics(BaseModel):
    platform: Optional[str] = None
    duration_minutes: float
    video_on: bool


class UserCounts(BaseModel):
    it_users: Optional[int] = None
    end_users: Optional[int] = None
    source_quote: Optional[str] = None


class CallMetadataV1(BaseModel):
    summary: str
    topics: List[str]
    participants: List[Participant]


class CallMetadataV2(BaseModel):
    summary: str
    topics: List[str]
    participants: List[Participant]
    logistics: Logistics
    user_counts: UserCounts


# ═══════════════════════════════════════════════════════════
#  Behavior (talk-track scoring)
# ═══════════════════════════════════════════════════════════

class Interruption(BaseModel):
    interrupted_speaker: str
    interrupter: str
    context: str
    severity: Literal["Minor", "Moderate", "Severe"]


class PatienceMetric(BaseModel):
    score: float
    interruption_count: int
    status: Literal["Excellent", "Good", "Fair", "Poor"]
    interruptions: Optional[List[Interruption]] = None


class QuestionCounts(BaseModel):
    """V1 question quality: open vs closed question counts."""
    score: float
    open_ended_count: int
    closed_count: int
    explanation: str
    open_ended_questions: Optional[List[str]] = None
    closed_questions: Optional[List[str]] = None


class QuestionLeverage(BaseModel):
    """V2 question quality: leverage / yield metrics."""
    score: float
    explanation: str
    no_questions_reason: Optional[Literal["no_discovery_attempted", "poor_engagement"]] = None
    average_question_length: float
    average_answer_length: float
    high_leverage_count: int
    low_leverage_count: int
    high_leverage_examples: List[str]
    low_leverage_examples: List[str]
    total_sales_questions: int
    yield_ratio: float


class MonologueMetric(BaseModel):
    score: float
    longest_turn_word_count: int
    violation_count: int


class TalkListenMetric(BaseModel):
    score: float
    rep_talk_percentage: float


class NextStepsMetric(BaseModel):
    score: float
    secured: bool
    details: str


class BehaviorMetricsV1(BaseModel):
    patience: PatienceMetric
    question_quality: QuestionCounts
    monologue: MonologueMetric
    talk_listen_ratio: TalkListenMetric
    next_steps: NextStepsMetric


class BehaviorMetricsV2(BaseModel):
    patience: PatienceMetric
    question_quality: QuestionLeverage
    monologue: MonologueMetric
    talk_listen_ratio: TalkListenMetric
    next_steps: NextStepsMetric


class BehaviorScoreV1(BaseModel):
    overall_score: float = Field(ge=0, le=100)
    grade: PassFail
    metrics: BehaviorMetricsV1


class BehaviorScoreV2(BaseModel):
    overall_score: float = Field(ge=0, le=100)
    grade: PassFail
    metrics: BehaviorMetricsV2


# ═══════════════════════════════════════════════════════════
#  Strategy (pain-to-pitch threading + deal gaps)
# ═══════════════════════════════════════════════════════════

class RelevanceMapping(BaseModel):
    pain_identified: str
    pain_type: Optional[Literal["Explicit", "Implicit"]] = None
    pain_severity: Optional[Severity] = None
    feature_pitched: str
    is_relevant: bool
    reasoning: str


class MissedOpportunity(BaseModel):
    """Missed opportunities were bare strings in old records and objects in new ones.

    Both normalize to this shape: bare strings become structured=False.
    """
    text: str
    structured: bool = True
    severity: Optional[Literal["High", "Medium"]] = None
    suggested_pitch: Optional[str] = None
    talk_track: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data):
        if isinstance(data, str):
            return {"text": data, "structured": False}
        if isinstance(data, dict) and "text" not in data and "pain" in data:
            return {
                "text": data.get("pain"),
                "structured": True,
                "severity": data.get("severity"),
                "suggested_pitch": data.get("suggested_pitch"),
                "talk_track": data.get("talk_track"),
            }
        return data


class ScoreBreakdown(BaseModel):
    high_pains_addressed: int
    high_pains_total: int
    medium_pains_addressed: int
    medium_pains_total: int
    spray_and_pray_count: int


class StrategicThreadingV1(BaseModel):
    score: float
    grade: PassFail
    relevance_map: List[RelevanceMapping]
    missed_opportunities: List[MissedOpportunity]


class StrategicThreadingV2(BaseModel):
    score: float
    grade: PassFail
    strategic_summary: str
    score_breakdown: ScoreBreakdown
    relevance_map: List[RelevanceMapping]
    missed_opportunities: List[MissedOpportunity]


class CriticalGap(BaseModel):
    category: Literal["Budget", "Authority", "Need", "Timeline", "Competition", "Technical"]
    description: str
    impact: Severity
    suggested_question: str


class ObjectionDetected(BaseModel):
    objection: str
    category: Literal["Price", "Competitor", "Authority", "Need", "Timing", "Feature"]
    rep_response: str
    handling_rating: Literal["Great", "Okay", "Bad"]
    coaching_tip: str


class ObjectionHandling(BaseModel):
    score: float = Field(ge=0, le=100)
    grade: PassFail
    objections_detected: List[ObjectionDetected]


# ═══════════════════════════════════════════════════════════
#  Competitive intel
# ═══════════════════════════════════════════════════════════

UsageStatus = Literal["Current Vendor", "Past Vendor", "Evaluating", "Mentioned"]


class CompetitorIntelV1(BaseModel):
    competitor_name: str
    usage_status: UsageStatus
    strengths_mentioned: List[str]
    weaknesses_mentioned: List[str]
    silver_bullet_question: str


class CompetitorIntelV2(BaseModel):
    competitor_name: str
    usage_status: UsageStatus
    strengths_mentioned: List[str]
    weaknesses_mentioned: List[str]
    evidence_quote: str
    competitive_position: Literal["Winning", "Losing", "Neutral", "At Risk"]
    positioning_strategy: str
    silver_bullet_question: str
    question_timing: str


def _wrap_bare_list(data):
    # Some producers stored the entry list without the enclosing object
    if isinstance(data, list):
        return {"competitive_intel": data}
    return data


class CompetitiveIntelV1(BaseModel):
    competitive_intel: List[CompetitorIntelV1]

    @model_validator(mode="before")
    @classmethod
    def _accept_list(cls, data):
        return _wrap_bare_list(data)


class CompetitiveIntelV2(BaseModel):
    competitive_intel: List[CompetitorIntelV2]

    @model_validator(mode="before")
    @classmethod
    def _accept_list(cls, data):
        return _wrap_bare_list(data)


class StrategyAuditV1(BaseModel):
    strategic_threading: StrategicThreadingV1
    critical_gaps: List[CriticalGap]


class StrategyAuditV2(BaseModel):
    strategic_threading: StrategicThreadingV2
    critical_gaps: List[CriticalGap]
    objection_handling: Optional[ObjectionHandling] = None
    competitive_intel: Optional[List[CompetitorIntelV2]] = None


# ═══════════════════════════════════════════════════════════
#  Psychology (prospect profile)
# ═══════════════════════════════════════════════════════════

DiscProfile = Literal[
    "D - Dominance", "I - Influence", "S - Steadiness", "C - Compliance", "Unknown",
]


class CommunicationStyle(BaseModel):
    tone: str
    preference: str


class DosAndDonts(BaseModel):
    do: List[str]
    dont: List[str]


class ProspectProfileV1(BaseModel):
    prospect_persona: str
    disc_profile: DiscProfile
    communication_style: CommunicationStyle
    dos_and_donts: DosAndDonts


class ProspectProfileV2(BaseModel):
    primary_speaker_name: str
    prospect_persona: str
    disc_profile: DiscProfile
    evidence_quote: str
    communication_style: CommunicationStyle
    dos_and_donts: DosAndDonts
    suggested_email_subject: str


# ═══════════════════════════════════════════════════════════
#  Coaching (synthesis grade)
# ═══════════════════════════════════════════════════════════

Grade = Literal["A+", "A", "B", "C", "D", "F"]
FocusArea = Literal[
    "Discovery Depth",
    "Behavioral Polish",
    "Closing/Next Steps",
    "Objection Handling",
    "Strategic Alignment",
]


class CoachingV1(BaseModel):
    overall_grade: Grade
    executive_summary: str
    top_3_strengths: List[str]
    top_3_areas_for_improvement: List[str]
    grade_reasoning: str


class CoachingV2(BaseModel):
    overall_grade: Grade
    executive_summary: str
    top_3_strengths: List[str]
    top_3_areas_for_improvement: List[str]
    primary_focus_area: FocusArea
    coaching_prescription: str
    coaching_drill: Optional[str] = None
    immediate_action: Optional[str] = None
    grade_reasoning: str


# ═══════════════════════════════════════════════════════════
#  Deal heat
# ═══════════════════════════════════════════════════════════

class HeatFactor(BaseModel):
    factor: str
    impact: Literal["Positive", "Negative"]
    reasoning: str


class DealHeatV1(BaseModel):
    heat_score: float = Field(ge=0, le=100)
    temperature: Literal["Hot", "Warm", "Lukewarm", "Cold"]
    trend: Literal["Heating Up", "Cooling Down", "Stagnant"]
    key_factors: List[HeatFactor]
    winning_probability: str
    recommended_action: str


class DealHeatV2(BaseModel):
    heat_score: float = Field(ge=0, le=100)
    temperature: Literal["Hot", "Warm", "Lukewarm", "Cold"]
    trend: Literal["Heating Up", "Cooling Down", "Stagnant"]
    key_factors: List[HeatFactor]
    winning_probability: str
    recommended_action: str
    estimated_close_date: str
    close_date_evidence: str
