import asyncio
import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import partial
from typing import Any, Dict, List, Optional, Sequence

from config import settings
from models.internal import (
    AccountRecord,
    AnalysisKind,
    CallRecord,
    EmailLogRecord,
    RawAnalysisRecord,
    StakeholderRecord,
)
from models.responses import AccountInsightSnapshot

logger = logging.getLogger(__name__)

DB_PATH = settings.database_path
if not os.path.isabs(DB_PATH):
    DB_PATH = os.path.join(os.path.dirname(__file__), DB_PATH)

# Stored column per analysis kind on ai_call_analysis
ANALYSIS_COLUMNS: Dict[AnalysisKind, str] = {
    AnalysisKind.METADATA: "analysis_metadata",
    AnalysisKind.BEHAVIOR: "analysis_behavior",
    AnalysisKind.STRATEGY: "analysis_strategy",
    AnalysisKind.PSYCHOLOGY: "analysis_psychology",
    AnalysisKind.COACHING: "analysis_coaching",
    AnalysisKind.DEAL_HEAT: "deal_heat_analysis",
    AnalysisKind.COMPETITIVE_INTEL: "analysis_competitive_intel",
}

SCHEMA = """
    CREATE TABLE IF NOT EXISTS prospects (
        id TEXT PRIMARY KEY,
        account_name TEXT,
        prospect_name TEXT,
        status TEXT,
        industry TEXT,
        heat_score REAL,
        potential_revenue REAL,
        ai_extracted_info TEXT,
        updated_at TEXT DEFAULT (datetime('now'))
    );
    CREATE TABLE IF NOT EXISTS call_transcripts (
        id TEXT PRIMARY KEY,
        prospect_id TEXT NOT NULL,
        call_date TEXT NOT NULL,
        call_type TEXT,
        raw_text TEXT NOT NULL DEFAULT ''
    );
    CREATE TABLE IF NOT EXISTS ai_call_analysis (
        call_id TEXT PRIMARY KEY,
        analysis_metadata TEXT,
        analysis_behavior TEXT,
        analysis_strategy TEXT,
        analysis_psychology TEXT,
        analysis_coaching TEXT,
        deal_heat_analysis TEXT,
        analysis_competitive_intel TEXT
    );
    CREATE TABLE IF NOT EXISTS stakeholders (
        id TEXT PRIMARY KEY,
        prospect_id TEXT NOT NULL,
        name TEXT NOT NULL,
        job_title TEXT,
        influence_level TEXT,
        champion_score REAL,
        is_primary_contact INTEGER NOT NULL DEFAULT 0,
        email TEXT
    );
    CREATE TABLE IF NOT EXISTS email_logs (
        id TEXT PRIMARY KEY,
        prospect_id TEXT NOT NULL,
        direction TEXT NOT NULL,
        subject TEXT,
        body TEXT NOT NULL DEFAULT '',
        email_date TEXT NOT NULL,
        contact_name TEXT,
        stakeholder_id TEXT
    );
"""


def init_db(path: Optional[str] = None):
    conn = sqlite3.connect(path or DB_PATH)
    conn.executescript(SCHEMA)
    conn.commit()
    conn.close()


@contextmanager
def get_db(path: Optional[str] = None):
    conn = sqlite3.connect(path or DB_PATH)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


def _load_json(value: Optional[str]) -> Any:
    # Malformed blobs are passed through as text and judged by the validator
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


class SqliteRecordStore:
    """Storage collaborator backed by SQLite. Blocking calls run in the default executor."""

    def __init__(self, path: Optional[str] = None):
        self.path = path or DB_PATH

    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(fn, *args))

    # ── Reads ──

    def _fetch_account(self, account_id: str) -> Optional[AccountRecord]:
        with get_db(self.path) as conn:
            row = conn.execute("SELECT * FROM prospects WHERE id = ?", (account_id,)).fetchone()
        if row is None:
            return None
        insights = _load_json(row["ai_extracted_info"])
        return AccountRecord(
            id=row["id"],
            account_name=row["account_name"],
            prospect_name=row["prospect_name"],
            status=row["status"],
            industry=row["industry"],
            heat_score=row["heat_score"],
            potential_revenue=row["potential_revenue"],
            insights=insights if isinstance(insights, dict) else None,
        )

    def _fetch_calls(self, account_id: str) -> List[CallRecord]:
        with get_db(self.path) as conn:
            rows = conn.execute(
                "SELECT id, call_date, call_type, raw_text FROM call_transcripts "
                "WHERE prospect_id = ? ORDER BY call_date DESC",
                (account_id,),
            ).fetchall()
        return [CallRecord(**dict(row)) for row in rows]

    def _fetch_call_analyses(self, call_ids: Sequence[str]) -> List[RawAnalysisRecord]:
        if not call_ids:
            return []
        placeholders = ",".join("?" for _ in call_ids)
        with get_db(self.path) as conn:
            rows = conn.execute(
                f"SELECT * FROM ai_call_analysis WHERE call_id IN ({placeholders})",
                list(call_ids),
            ).fetchall()
        records = []
        for row in rows:
            blobs = {}
            for kind, column in ANALYSIS_COLUMNS.items():
                value = _load_json(row[column])
                if value is not None:
                    blobs[kind] = value
            records.append(RawAnalysisRecord(call_id=row["call_id"], blobs=blobs))
        return records

    def _fetch_stakeholders(self, account_id: str) -> List[StakeholderRecord]:
        with get_db(self.path) as conn:
            rows = conn.execute(
                "SELECT id, name, job_title, influence_level, champion_score, is_primary_contact, email "
                "FROM stakeholders WHERE prospect_id = ?",
                (account_id,),
            ).fetchall()
        return [StakeholderRecord(**{**dict(row), "is_primary_contact": bool(row["is_primary_contact"])}) for row in rows]

    def _fetch_email_logs(self, account_id: str) -> List[EmailLogRecord]:
        with get_db(self.path) as conn:
            rows = conn.execute(
                "SELECT id, direction, subject, body, email_date, contact_name, stakeholder_id "
                "FROM email_logs WHERE prospect_id = ? ORDER BY email_date DESC",
                (account_id,),
            ).fetchall()
        return [EmailLogRecord(**dict(row)) for row in rows]

    async def fetch_account(self, account_id: str) -> Optional[AccountRecord]:
        return await self._run(self._fetch_account, account_id)

    async def fetch_calls(self, account_id: str) -> List[CallRecord]:
        return await self._run(self._fetch_calls, account_id)

    async def fetch_call_analyses(self, call_ids: Sequence[str]) -> List[RawAnalysisRecord]:
        return await self._run(self._fetch_call_analyses, list(call_ids))

    async def fetch_stakeholders(self, account_id: str) -> List[StakeholderRecord]:
        return await self._run(self._fetch_stakeholders, account_id)

    async def fetch_email_logs(self, account_id: str) -> List[EmailLogRecord]:
        return await self._run(self._fetch_email_logs, account_id)

    # ── Write ──

    def _save_account_insights(
        self,
        account_id: str,
        snapshot: AccountInsightSnapshot,
        industry: Optional[str],
    ) -> None:
        payload = snapshot.model_dump_json()
        now = datetime.now(timezone.utc).isoformat()
        with get_db(self.path) as conn:
            if industry:
                # Only fills an empty industry, never overwrites an explicit one
                cur = conn.execute(
                    "UPDATE prospects SET ai_extracted_info = ?, updated_at = ?, "
                    "industry = COALESCE(NULLIF(industry, ''), ?) WHERE id = ?",
                    (payload, now, industry, account_id),
                )
            else:
                cur = conn.execute(
                    "UPDATE prospects SET ai_extracted_info = ?, updated_at = ? WHERE id = ?",
                    (payload, now, account_id),
                )
            if cur.rowcount == 0:
                raise LookupError(f"Account {account_id} vanished before insights could be saved")
            conn.commit()

    async def save_account_insights(
        self,
        account_id: str,
        snapshot: AccountInsightSnapshot,
        industry: Optional[str] = None,
    ) -> None:
        await self._run(self._save_account_insights, account_id, snapshot, industry)
