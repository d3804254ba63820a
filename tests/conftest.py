"""
Shared fixtures for the insight engine tests.

FakeStore and FakeGateway stand in for SQLite and the AI gateway: both
record every call so tests can assert on what the pipeline touched.
"""
from datetime import date, datetime, timezone
from typing import Dict, List, Optional

import pytest

from models.internal import (
    AccountRecord,
    AnalysisKind,
    CallRecord,
    EmailLogRecord,
    RawAnalysisRecord,
    StakeholderRecord,
)
from tests import samples

ACCOUNT_ID = "8f14e45f-ceea-467a-9a8e-2b4e1d5c6f70"
FIXED_NOW = datetime(2026, 10, 16, 12, 0, tzinfo=timezone.utc)

NARRATIVE_ARGS = {
    "business_context": "Regional school district replacing a legacy helpdesk.",
    "pain_points": ["Manual ticket triage takes 4 hours daily"],
    "decision_process": {
        "stakeholders": ["Dana Ruiz (IT Director)"],
        "timeline": "Live before spring term",
        "budget_signals": "Budget approved in Q3",
    },
    "competitors_mentioned": ["Zendesk"],
    "communication_summary": "Positive email thread; awaiting pricing.",
    "key_opportunities": ["Bundle onboarding with the pilot"],
    "relationship_health": "Healthy, single-threaded",
    "industry": "education",
}


class FakeStore:
    def __init__(
        self,
        account: Optional[AccountRecord] = None,
        calls: Optional[List[CallRecord]] = None,
        analyses: Optional[Dict[str, Dict[AnalysisKind, object]]] = None,
        stakeholders: Optional[List[StakeholderRecord]] = None,
        emails: Optional[List[EmailLogRecord]] = None,
        failures: Optional[Dict[str, Exception]] = None,
    ):
        self.account = account
        self.calls = calls or []
        self.analyses = analyses or {}
        self.stakeholders = stakeholders or []
        self.emails = emails or []
        self.failures = failures or {}
        self.saved = []
        self.calls_made: List[str] = []

    def _maybe_fail(self, name: str):
        self.calls_made.append(name)
        if name in self.failures:
            raise self.failures[name]

    async def fetch_account(self, account_id):
        self._maybe_fail("account")
        return self.account

    async def fetch_calls(self, account_id):
        self._maybe_fail("calls")
        return list(self.calls)

    async def fetch_call_analyses(self, call_ids):
        self._maybe_fail("analyses")
        return [
            RawAnalysisRecord(call_id=cid, blobs=self.analyses[cid])
            for cid in call_ids
            if cid in self.analyses
        ]

    async def fetch_stakeholders(self, account_id):
        self._maybe_fail("stakeholders")
        return list(self.stakeholders)

    async def fetch_email_logs(self, account_id):
        self._maybe_fail("emails")
        return list(self.emails)

    async def save_account_insights(self, account_id, snapshot, industry=None):
        self._maybe_fail("save")
        self.saved.append((account_id, snapshot, industry))


class FakeGateway:
    def __init__(self, tool_result=None, deltas=None, error: Optional[Exception] = None):
        self.tool_result = tool_result if tool_result is not None else dict(NARRATIVE_ARGS)
        self.deltas = deltas or []
        self.error = error
        self.tool_calls = []
        self.stream_calls = []

    async def invoke_tool(self, system_prompt, user_prompt, tool):
        self.tool_calls.append((system_prompt, user_prompt, tool))
        if self.error:
            raise self.error
        return self.tool_result

    async def stream_text(self, system_prompt, user_prompt):
        self.stream_calls.append((system_prompt, user_prompt))
        for delta in self.deltas:
            yield delta
        if self.error:
            raise self.error


@pytest.fixture
def account():
    return AccountRecord(
        id=ACCOUNT_ID,
        account_name="Lakeside Unified",
        prospect_name="Dana Ruiz",
        status="active",
        heat_score=7,
        potential_revenue=48000,
    )


@pytest.fixture
def stakeholders():
    return [
        StakeholderRecord(
            id="s-1",
            name="Dana Ruiz",
            job_title="IT Director",
            influence_level="final_dm",
            champion_score=8,
            is_primary_contact=True,
        ),
        StakeholderRecord(id="s-2", name="Lee Park", job_title="Procurement"),
    ]


@pytest.fixture
def emails():
    return [
        EmailLogRecord(
            id="e-1",
            direction="outgoing",
            subject="Pricing follow-up",
            body="Attached is the pricing we discussed.",
            email_date=date(2026, 10, 3),
            stakeholder_id="s-1",
        ),
        EmailLogRecord(
            id="e-2",
            direction="incoming",
            subject="Re: Pricing follow-up",
            body="Thanks, reviewing with procurement.",
            email_date=date(2026, 10, 5),
            contact_name="Lee",
        ),
    ]


@pytest.fixture
def populated_store(account, stakeholders, emails):
    """Two calls (older v1 analyses, newer v2 analyses), stakeholders and emails."""
    calls = [
        samples.call("call-old", date(2026, 9, 1), raw_text="Old call transcript"),
        samples.call("call-new", date(2026, 10, 1), raw_text="New call transcript"),
    ]
    analyses = {
        "call-old": samples.full_v1_blobs(),
        "call-new": samples.full_v2_blobs(),
    }
    return FakeStore(account=account, calls=calls, analyses=analyses, stakeholders=stakeholders, emails=emails)


@pytest.fixture
def gateway():
    return FakeGateway()
