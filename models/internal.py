from datetime import date
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class AnalysisKind(str, Enum):
    BEHAVIOR = "behavior"
    STRATEGY = "strategy"
    METADATA = "metadata"
    PSYCHOLOGY = "psychology"
    COACHING = "coaching"
    DEAL_HEAT = "deal_heat"
    COMPETITIVE_INTEL = "competitive_intel"


class AnalysisFrame(BaseModel):
    """One decoded SSE unit. Lives only for the duration of a decode."""
    event_kind: Literal["delta", "done", "comment"]
    payload: str = ""


# Degraded reasons
NOT_YET_ANALYZED = "not_yet_analyzed"
SCHEMA_DRIFT = "schema_drift"
INVALID_FIELDS = "invalid_fields"
INVALID = "invalid"


class ValidatedAnalysis(BaseModel):
    """Result of validating one stored blob against its kind's schemas.

    status "ok" carries a fully valid current-version value. status "degraded"
    carries either a partial current-shape value (fields the source did not
    provide are None) or no value at all, plus the reason.
    """
    kind: AnalysisKind
    status: Literal["ok", "degraded"]
    value: Optional[Any] = None
    reason: Optional[str] = None
    schema_version: Optional[int] = None
    invalid_fields: List[str] = []

    @property
    def is_ok(self) -> bool:
        return self.status == "ok"

    @property
    def usable(self) -> bool:
        return self.value is not None

    @classmethod
    def ok(cls, kind: AnalysisKind, value: Any, version: int) -> "ValidatedAnalysis":
        return cls(kind=kind, status="ok", value=value, schema_version=version)

    @classmethod
    def degraded(
        cls,
        kind: AnalysisKind,
        value: Any,
        reason: str,
        version: Optional[int] = None,
        invalid_fields: Optional[List[str]] = None,
    ) -> "ValidatedAnalysis":
        return cls(
            kind=kind,
            status="degraded",
            value=value,
            reason=reason,
            schema_version=version,
            invalid_fields=invalid_fields or [],
        )


# ── Storage records ──

class AccountRecord(BaseModel):
    id: str
    account_name: Optional[str] = None
    prospect_name: Optional[str] = None
    status: Optional[str] = None
    industry: Optional[str] = None
    heat_score: Optional[float] = None
    potential_revenue: Optional[float] = None
    insights: Optional[Dict[str, Any]] = None


class CallRecord(BaseModel):
    id: str
    call_date: date
    call_type: Optional[str] = None
    raw_text: str = ""


class RawAnalysisRecord(BaseModel):
    """One call's stored AI output, keyed by analysis kind. Absent kinds are missing."""
    call_id: str
    blobs: Dict[AnalysisKind, Any] = Field(default_factory=dict)


class StakeholderRecord(BaseModel):
    id: str
    name: str
    job_title: Optional[str] = None
    influence_level: Optional[str] = None
    champion_score: Optional[float] = None
    is_primary_contact: bool = False
    email: Optional[str] = None


class EmailLogRecord(BaseModel):
    id: str
    direction: str  # "incoming" or "outgoing"
    subject: Optional[str] = None
    body: str = ""
    email_date: date
    contact_name: Optional[str] = None
    stakeholder_id: Optional[str] = None


class CallAnalysisBundle(BaseModel):
    """A call plus the validated analyses of every kind."""
    call: CallRecord
    analyses: Dict[AnalysisKind, ValidatedAnalysis] = Field(default_factory=dict)

    def value(self, kind: AnalysisKind):
        result = self.analyses.get(kind)
        return result.value if result else None


class AccountContext(BaseModel):
    """Everything gathered before synthesis."""
    account: AccountRecord
    calls: List[CallRecord] = []
    stakeholders: List[StakeholderRecord] = []
    emails: List[EmailLogRecord] = []
    raw_analyses: Dict[str, RawAnalysisRecord] = {}
    degraded_sections: List[str] = []

    @property
    def has_history(self) -> bool:
        return bool(self.calls) or bool(self.emails)
