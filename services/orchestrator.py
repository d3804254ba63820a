import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, Dict, List, Optional, Tuple
from models.internal import NOT_YET_ANALYZED, AccountContext, CallAnalysisBundle, RawAnalysisRecord
from models.responses import AccountInsightSnapshot
from services.aggregation import build_snapshot, sort_newest_first
from services.errors import AccountNotFound, HistoryUnavailable, SnapshotWriteFailed
from services.schema_validator import validate_record
from services.synthesis import stream_account_brief, synthesize_narrative
from pydantic import ValidationError
import asyncio
import logging

logger = logging.getLogger(__name__)


@dataclass
class RegenerationResult:
    snapshot: Optional[AccountInsightSnapshot]
    status: str  # "regenerated" or "unchanged"


async def gather_account_context(account_id: str, store) -> AccountContext:
    """
    Fetch everything synthesis needs. Account is mandatory; calls, stakeholders,
    emails and analyses degrade to empty on failure and are recorded on the context.
    """
    account, calls, stakeholders, emails = await asyncio.gather(
        store.fetch_account(account_id),
        store.fetch_calls(account_id),
        store.fetch_stakeholders(account_id),
        store.fetch_email_logs(account_id),
        return_exceptions=True,
    )

    if isinstance(account, BaseException):
        logger.error(f"Account fetch failed for {account_id}: {account}")
        raise AccountNotFound(account_id) from account
    if account is None:
        raise AccountNotFound(account_id)

    degraded: List[str] = []

    def _section(name: str, result):
        if isinstance(result, BaseException):
            logger.warning(f"{name} fetch failed for {account_id}, continuing without it: {result}")
            degraded.append(name)
            return []
        return list(result or [])

    calls = _section("calls", calls)
    stakeholders = _section("stakeholders", stakeholders)
    emails = _section("emails", emails)

    raw_analyses: Dict[str, RawAnalysisRecord] = {}
    if calls:
        try:
            records = await store.fetch_call_analyses([c.id for c in calls])
            raw_analyses = {r.call_id: r for r in records}
        except Exception as e:
            logger.warning(f"analyses fetch failed for {account_id}, continuing without it: {e}")
            degraded.append("analyses")

    calls = sorted(calls, key=lambda c: c.call_date, reverse=True)
    emails = sorted(emails, key=lambda e: e.email_date, reverse=True)

    logger.info(
        f"Context for {account_id}: {len(calls)} calls, {len(raw_analyses)} analyses, "
        f"{len(stakeholders)} stakeholders, {len(emails)} emails"
        + (f", degraded={degraded}" if degraded else "")
    )
    return AccountContext(
        account=account,
        calls=calls,
        stakeholders=stakeholders,
        emails=emails,
        raw_analyses=raw_analyses,
        degraded_sections=degraded,
    )


def validate_calls(context: AccountContext) -> List[CallAnalysisBundle]:
    """Validate each call's stored analyses. Calls without a record get all kinds not_yet_analyzed."""
    bundles = []
    for call in context.calls:
        record = context.raw_analyses.get(call.id)
        analyses = validate_record(record.blobs if record else {})
        degraded = [k.value for k, v in analyses.items() if not v.is_ok and v.reason != NOT_YET_ANALYZED]
        if degraded:
            logger.info(f"Call {call.id}: degraded analyses {degraded}")
        bundles.append(CallAnalysisBundle(call=call, analyses=analyses))
    return sort_newest_first(bundles)


def _existing_snapshot(context: AccountContext) -> Optional[AccountInsightSnapshot]:
    if not context.account.insights:
        return None
    try:
        return AccountInsightSnapshot.model_validate(context.account.insights)
    except ValidationError as e:
        logger.warning(f"Stored insights for {context.account.id} do not parse, returning none: {e.error_count()} error(s)")
        return None


async def regenerate_account_insights(
    account_id: str,
    store,
    gateway,
    now: Optional[datetime] = None,
) -> RegenerationResult:
    """
    Recompute the account's insight snapshot from all of its source records.

    Safe to call repeatedly: nothing accumulates between runs. An AI failure
    propagates before anything is written, so the stored snapshot stays the
    last good one.
    """
    start_time = time.time()
    context = await gather_account_context(account_id, store)

    if not context.has_history:
        unread = [s for s in ("calls", "emails") if s in context.degraded_sections]
        if unread:
            raise HistoryUnavailable(account_id, unread)
        logger.info(f"No calls or emails for {account_id}, keeping existing insights")
        return RegenerationResult(snapshot=_existing_snapshot(context), status="unchanged")

    bundles = validate_calls(context)
    narrative = await synthesize_narrative(context, bundles, gateway)
    snapshot = build_snapshot(narrative, bundles, now=now or datetime.now(timezone.utc))

    industry = None
    if snapshot.industry and not context.account.industry:
        industry = snapshot.industry
        logger.info(f"Auto-populating industry for {account_id}: {industry}")

    try:
        await store.save_account_insights(account_id, snapshot, industry=industry)
    except Exception as e:
        logger.error(f"Failed to save insights for {account_id}: {e}", exc_info=True)
        raise SnapshotWriteFailed(f"Failed to save insights for {account_id}") from e

    logger.info(f"Regenerated insights for {account_id} in {time.time() - start_time:.1f}s")
    return RegenerationResult(snapshot=snapshot, status="regenerated")


async def prepare_brief(account_id: str, store, gateway) -> Tuple[AccountContext, AsyncIterator[str]]:
    """Gather context and open the brief stream. Raises AccountNotFound before any AI call."""
    context = await gather_account_context(account_id, store)
    bundles = validate_calls(context)
    return context, stream_account_brief(context, bundles, gateway)
