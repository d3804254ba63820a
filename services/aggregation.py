"""
Deterministic fold of validated per-call analyses into account-level fields.

Every function here takes call bundles ordered newest first and treats that
order as a precondition; "latest" always means the first match in that
sequence. Nothing in this module talks to the AI or to storage.
"""
import logging
from datetime import datetime, timezone
from typing import Callable, Iterable, Iterator, List, Optional, Sequence, TypeVar

from config import settings
from models.internal import AnalysisKind, CallAnalysisBundle
from models.responses import (
    AccountInsightSnapshot,
    CoachingTrend,
    CompetitorSummary,
    CriticalGapSummary,
    HeatSnapshot,
    NarrativeInsights,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def ensure_newest_first(bundles: Sequence[CallAnalysisBundle]) -> None:
    for newer, older in zip(bundles, bundles[1:]):
        if newer.call.call_date < older.call.call_date:
            raise ValueError(
                f"Call bundles must be ordered newest first: {newer.call.id} ({newer.call.call_date}) "
                f"precedes {older.call.id} ({older.call.call_date})"
            )


def sort_newest_first(bundles: Iterable[CallAnalysisBundle]) -> List[CallAnalysisBundle]:
    # Stable, so same-day calls keep the order storage returned them in
    return sorted(bundles, key=lambda b: b.call.call_date, reverse=True)


def first_non_null(values: Iterable[Optional[T]]) -> Optional[T]:
    return next((v for v in values if v is not None), None)


def dedup_first(items: Iterable[T], key: Callable[[T], object], limit: int) -> List[T]:
    seen = set()
    result = []
    for item in items:
        k = key(item)
        if k in seen:
            continue
        seen.add(k)
        result.append(item)
        if len(result) >= limit:
            break
    return result


# ═══════════════════════════════════════════════════════════
#  Critical gaps
# ═══════════════════════════════════════════════════════════

def _gaps_newest_first(bundles: Sequence[CallAnalysisBundle]) -> Iterator[CriticalGapSummary]:
    for bundle in bundles:
        strategy = bundle.value(AnalysisKind.STRATEGY)
        gaps = getattr(strategy, "critical_gaps", None) or []
        # Within one call, later entries are treated as newer and win the
        # dedup. This is a chosen ordering: stored gaps carry no timestamp.
        for gap in reversed(gaps):
            if not getattr(gap, "category", None) or not getattr(gap, "description", None):
                continue
            yield CriticalGapSummary(
                category=gap.category,
                description=gap.description,
                impact=gap.impact,
                suggested_question=gap.suggested_question,
            )


def fold_critical_gaps(bundles: Sequence[CallAnalysisBundle], limit: Optional[int] = None) -> List[CriticalGapSummary]:
    ensure_newest_first(bundles)
    return dedup_first(
        _gaps_newest_first(bundles),
        key=lambda g: (g.category, g.description),
        limit=limit or settings.max_summary_items,
    )


# ═══════════════════════════════════════════════════════════
#  Competitors
# ═══════════════════════════════════════════════════════════

def _competitor_entries(bundle: CallAnalysisBundle) -> list:
    entries = []
    intel = bundle.value(AnalysisKind.COMPETITIVE_INTEL)
    entries.extend(getattr(intel, "competitive_intel", None) or [])
    strategy = bundle.value(AnalysisKind.STRATEGY)
    entries.extend(getattr(strategy, "competitive_intel", None) or [])
    return entries


def _competitors_newest_first(bundles: Sequence[CallAnalysisBundle]) -> Iterator[CompetitorSummary]:
    for bundle in bundles:
        for entry in _competitor_entries(bundle):
            name = (getattr(entry, "competitor_name", None) or "").strip()
            if not name:
                continue
            yield CompetitorSummary(
                name=name,
                status=getattr(entry, "usage_status", None),
                positioning=getattr(entry, "competitive_position", None),
            )


def fold_competitors(bundles: Sequence[CallAnalysisBundle], limit: Optional[int] = None) -> List[CompetitorSummary]:
    ensure_newest_first(bundles)
    return dedup_first(
        _competitors_newest_first(bundles),
        key=lambda c: c.name.lower(),
        limit=limit or settings.max_summary_items,
    )


# ═══════════════════════════════════════════════════════════
#  Latest-wins fields
# ═══════════════════════════════════════════════════════════

def fold_coaching_trend(bundles: Sequence[CallAnalysisBundle]) -> Optional[CoachingTrend]:
    ensure_newest_first(bundles)
    coaching = [bundle.value(AnalysisKind.COACHING) for bundle in bundles]
    coaching = [c for c in coaching if c is not None]
    grades = [c.overall_grade for c in coaching if getattr(c, "overall_grade", None)]
    if not grades:
        return None
    return CoachingTrend(
        avg_grade=grades[0],
        primary_focus_area=first_non_null(getattr(c, "primary_focus_area", None) for c in coaching),
        recent_grades=grades,
    )


def latest_persona(bundles: Sequence[CallAnalysisBundle]) -> Optional[str]:
    ensure_newest_first(bundles)
    return first_non_null(
        getattr(bundle.value(AnalysisKind.PSYCHOLOGY), "prospect_persona", None) or None
        for bundle in bundles
    )


def latest_heat(bundles: Sequence[CallAnalysisBundle]) -> Optional[HeatSnapshot]:
    ensure_newest_first(bundles)
    for bundle in bundles:
        heat = bundle.value(AnalysisKind.DEAL_HEAT)
        if heat is None:
            continue
        return HeatSnapshot(
            call_id=bundle.call.id,
            heat_score=heat.heat_score,
            temperature=heat.temperature,
            trend=getattr(heat, "trend", None),
            winning_probability=getattr(heat, "winning_probability", None),
            recommended_action=getattr(heat, "recommended_action", None),
            estimated_close_date=getattr(heat, "estimated_close_date", None),
        )
    return None


# ═══════════════════════════════════════════════════════════
#  Merge
# ═══════════════════════════════════════════════════════════

def build_snapshot(
    narrative: NarrativeInsights,
    bundles: Sequence[CallAnalysisBundle],
    now: Optional[datetime] = None,
) -> AccountInsightSnapshot:
    """Combine AI narrative fields with the structured fold into one snapshot."""
    ensure_newest_first(bundles)
    snapshot = AccountInsightSnapshot(
        **narrative.model_dump(),
        last_analyzed_at=now or datetime.now(timezone.utc),
        critical_gaps_summary=fold_critical_gaps(bundles),
        competitors_summary=fold_competitors(bundles),
        prospect_persona=latest_persona(bundles),
        coaching_trend=fold_coaching_trend(bundles),
        latest_heat_analysis=latest_heat(bundles),
    )
    logger.info(
        f"Folded {len(bundles)} calls: {len(snapshot.critical_gaps_summary)} gaps, "
        f"{len(snapshot.competitors_summary)} competitors, "
        f"heat={'yes' if snapshot.latest_heat_analysis else 'no'}"
    )
    return snapshot
