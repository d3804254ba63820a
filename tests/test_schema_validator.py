"""Tests for versioned validation of stored analysis blobs."""
import copy
import json

import pytest

from models.analysis import (
    BehaviorScoreV2,
    CoachingV2,
    MissedOpportunity,
    QuestionLeverage,
    StrategyAuditV2,
)
from models.internal import (
    AnalysisKind,
    INVALID,
    INVALID_FIELDS,
    NOT_YET_ANALYZED,
    SCHEMA_DRIFT,
)
from services.schema_validator import SCHEMAS, validate, validate_record
from tests import samples


V2_SAMPLES = samples.full_v2_blobs()
V1_SAMPLES = samples.full_v1_blobs()


def test_every_kind_has_a_newest_first_chain():
    for kind in AnalysisKind:
        versions = [d.version for d in SCHEMAS[kind]]
        assert versions == sorted(versions, reverse=True)
        assert len(versions) >= 2


def test_missing_blob_is_not_yet_analyzed():
    result = validate(AnalysisKind.COACHING, None)
    assert result.status == "degraded"
    assert result.reason == NOT_YET_ANALYZED
    assert result.value is None


@pytest.mark.parametrize("kind", list(AnalysisKind))
def test_current_records_validate_ok(kind):
    result = validate(kind, V2_SAMPLES[kind])
    assert result.is_ok
    assert result.schema_version == 2
    assert result.reason is None


@pytest.mark.parametrize("kind", list(AnalysisKind))
def test_legacy_records_degrade_to_schema_drift(kind):
    result = validate(kind, V1_SAMPLES[kind])
    assert result.status == "degraded"
    assert result.reason == SCHEMA_DRIFT
    assert result.schema_version == 1
    assert result.usable
    assert isinstance(result.value, SCHEMAS[kind][0].model)


def test_legacy_coaching_keeps_old_fields_and_nulls_new_ones():
    result = validate(AnalysisKind.COACHING, samples.coaching_v1("C"))
    value = result.value
    assert isinstance(value, CoachingV2)
    assert value.overall_grade == "C"
    assert value.top_3_strengths == ["Rapport", "Listening", "Preparation"]
    assert value.primary_focus_area is None
    assert value.coaching_prescription is None


def test_legacy_behavior_upgrades_nested_question_quality():
    result = validate(AnalysisKind.BEHAVIOR, samples.behavior_v1(score=64))
    value = result.value
    assert isinstance(value, BehaviorScoreV2)
    assert value.overall_score == 64
    question_quality = value.metrics.question_quality
    assert isinstance(question_quality, QuestionLeverage)
    assert question_quality.score == 15
    assert question_quality.explanation == "Mostly closed questions early on"
    assert question_quality.high_leverage_count is None
    assert value.metrics.next_steps.secured is True


def test_legacy_strategy_normalizes_bare_string_missed_opportunities():
    result = validate(AnalysisKind.STRATEGY, samples.strategy_v1())
    value = result.value
    assert isinstance(value, StrategyAuditV2)
    assert value.strategic_threading.strategic_summary is None
    assert value.strategic_threading.score_breakdown is None
    assert value.objection_handling is None
    missed = value.strategic_threading.missed_opportunities
    assert missed == [MissedOpportunity(text="Never asked about the audit deadline", structured=False)]
    assert value.critical_gaps[0].category == "Budget"


def test_structured_missed_opportunity_normalizes_to_text():
    result = validate(AnalysisKind.STRATEGY, samples.strategy_v2())
    missed = result.value.strategic_threading.missed_opportunities[0]
    assert missed.structured is True
    assert missed.text == "Audit deadline in March"
    assert missed.severity == "High"
    assert missed.talk_track.startswith("You mentioned")


def test_json_string_blobs_are_decoded():
    result = validate(AnalysisKind.DEAL_HEAT, json.dumps(samples.deal_heat_v2()))
    assert result.is_ok
    assert result.value.heat_score == 74


@pytest.mark.parametrize("raw", ["{not json", 42, "\"a string\"", b"\x00\x01"])
def test_undecodable_or_non_object_blobs_are_invalid(raw):
    result = validate(AnalysisKind.METADATA, raw)
    assert result.reason == INVALID
    assert result.value is None


def test_unknown_fields_are_ignored():
    blob = samples.psychology_v2()
    blob["mood_ring"] = "teal"
    result = validate(AnalysisKind.PSYCHOLOGY, blob)
    assert result.is_ok
    assert not hasattr(result.value, "mood_ring")


def test_bare_competitor_list_is_accepted():
    result = validate(AnalysisKind.COMPETITIVE_INTEL, [samples.competitor_v2("Zendesk")])
    assert result.is_ok
    assert result.value.competitive_intel[0].competitor_name == "Zendesk"


def test_malformed_noncritical_fields_are_salvaged():
    blob = samples.coaching_v2()
    blob["top_3_strengths"] = "Rapport"
    del blob["grade_reasoning"]
    result = validate(AnalysisKind.COACHING, blob)

    assert result.status == "degraded"
    assert result.reason == INVALID_FIELDS
    assert set(result.invalid_fields) == {"top_3_strengths", "grade_reasoning"}
    assert result.value.overall_grade == "A"
    assert result.value.primary_focus_area == "Closing/Next Steps"
    assert result.value.top_3_strengths is None


def test_salvage_gives_up_when_a_critical_field_is_bad():
    blob = samples.deal_heat_v2()
    blob["heat_score"] = 140
    blob["key_factors"] = "hot"
    result = validate(AnalysisKind.DEAL_HEAT, blob)

    assert result.reason == INVALID
    assert result.value is None
    assert "heat_score" in result.invalid_fields


def test_input_is_never_mutated():
    blob = samples.strategy_v1()
    before = copy.deepcopy(blob)
    validate(AnalysisKind.STRATEGY, blob)
    assert blob == before


def test_validate_record_covers_every_kind():
    results = validate_record({AnalysisKind.METADATA: samples.metadata_v2()})
    assert set(results) == set(AnalysisKind)
    assert results[AnalysisKind.METADATA].is_ok
    assert results[AnalysisKind.DEAL_HEAT].reason == NOT_YET_ANALYZED


def test_malformed_optional_field_keeps_current_version_data():
    blob = samples.strategy_v2(competitors=[samples.competitor_v2("Zendesk")])
    blob["objection_handling"] = "not an object"
    result = validate(AnalysisKind.STRATEGY, blob)

    assert result.reason == INVALID_FIELDS
    assert result.schema_version == 2
    assert result.invalid_fields == ["objection_handling"]
    value = result.value
    assert value.objection_handling is None
    assert value.strategic_threading.strategic_summary.startswith("Pitched to the right pain")
    assert value.strategic_threading.score_breakdown.high_pains_total == 2
    assert [c.competitor_name for c in value.competitive_intel] == ["Zendesk"]


def test_malformed_coaching_drill_keeps_focus_area():
    blob = samples.coaching_v2()
    blob["coaching_drill"] = 7
    result = validate(AnalysisKind.COACHING, blob)

    assert result.reason == INVALID_FIELDS
    assert result.schema_version == 2
    assert result.invalid_fields == ["coaching_drill"]
    assert result.value.primary_focus_area == "Closing/Next Steps"
    assert result.value.coaching_prescription == "End every call with a dated next step."
    assert result.value.coaching_drill is None


def test_legacy_match_picks_up_fields_that_fit_the_current_schema():
    # No coaching_prescription, so this is still a drifted record
    blob = samples.coaching_v1("B")
    blob["primary_focus_area"] = "Discovery Depth"
    result = validate(AnalysisKind.COACHING, blob)

    assert result.reason == SCHEMA_DRIFT
    assert result.schema_version == 1
    assert result.value.primary_focus_area == "Discovery Depth"
    assert result.value.coaching_prescription is None


def test_legacy_record_with_a_bad_gap_is_salvaged_against_its_own_version():
    blob = samples.strategy_v1(gaps=[samples.gap("Budget", "no budget owner"), {"category": "Bogus"}])
    result = validate(AnalysisKind.STRATEGY, blob)

    assert result.reason == INVALID_FIELDS
    assert result.schema_version == 1
    assert result.invalid_fields == ["critical_gaps"]
    value = result.value
    assert isinstance(value, StrategyAuditV2)
    assert [(g.category, g.description) for g in value.critical_gaps] == [("Budget", "no budget owner")]
    assert value.strategic_threading.score == 60
    assert value.strategic_threading.strategic_summary is None


def test_bad_entries_are_dropped_from_current_lists():
    blob = samples.strategy_v2(gaps=[{"category": "Bogus"}, samples.gap("Timeline", "no go-live date")])
    result = validate(AnalysisKind.STRATEGY, blob)

    assert result.reason == INVALID_FIELDS
    assert result.schema_version == 2
    assert [g.category for g in result.value.critical_gaps] == ["Timeline"]
    assert result.value.strategic_threading.strategic_summary is not None
