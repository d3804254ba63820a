"""
Validation of stored per-call analysis blobs.

Each analysis kind has an ordered list of schema descriptors, newest first.
A blob is tried against the current schema, then against older ones; an
older match is upgraded to the current shape with the fields it never had
left as None. If nothing validates, fields are salvaged one by one against
each version, newest first, and the record is kept as long as the kind's
critical fields survive.

Callers only ever see the current shape, whatever version wrote the record.
"""
import json
import logging
from dataclasses import dataclass
from typing import Annotated, Any, Dict, FrozenSet, List, Optional, Tuple, Type, Union, get_args, get_origin

from pydantic import BaseModel, TypeAdapter, ValidationError

from models.analysis import (
    BehaviorScoreV1,
    BehaviorScoreV2,
    CallMetadataV1,
    CallMetadataV2,
    CoachingV1,
    CoachingV2,
    CompetitiveIntelV1,
    CompetitiveIntelV2,
    DealHeatV1,
    DealHeatV2,
    ProspectProfileV1,
    ProspectProfileV2,
    StrategyAuditV1,
    StrategyAuditV2,
)
from models.internal import (
    AnalysisKind,
    INVALID,
    INVALID_FIELDS,
    NOT_YET_ANALYZED,
    SCHEMA_DRIFT,
    ValidatedAnalysis,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SchemaDescriptor:
    version: int
    model: Type[BaseModel]


SCHEMAS: Dict[AnalysisKind, List[SchemaDescriptor]] = {
    AnalysisKind.METADATA: [SchemaDescriptor(2, CallMetadataV2), SchemaDescriptor(1, CallMetadataV1)],
    AnalysisKind.BEHAVIOR: [SchemaDescriptor(2, BehaviorScoreV2), SchemaDescriptor(1, BehaviorScoreV1)],
    AnalysisKind.STRATEGY: [SchemaDescriptor(2, StrategyAuditV2), SchemaDescriptor(1, StrategyAuditV1)],
    AnalysisKind.PSYCHOLOGY: [SchemaDescriptor(2, ProspectProfileV2), SchemaDescriptor(1, ProspectProfileV1)],
    AnalysisKind.COACHING: [SchemaDescriptor(2, CoachingV2), SchemaDescriptor(1, CoachingV1)],
    AnalysisKind.DEAL_HEAT: [SchemaDescriptor(2, DealHeatV2), SchemaDescriptor(1, DealHeatV1)],
    AnalysisKind.COMPETITIVE_INTEL: [
        SchemaDescriptor(2, CompetitiveIntelV2),
        SchemaDescriptor(1, CompetitiveIntelV1),
    ],
}

# Without these the record is useless to the UI, so salvage gives up.
CRITICAL_FIELDS: Dict[AnalysisKind, FrozenSet[str]] = {
    AnalysisKind.METADATA: frozenset({"summary"}),
    AnalysisKind.BEHAVIOR: frozenset({"overall_score", "grade"}),
    AnalysisKind.STRATEGY: frozenset({"strategic_threading"}),
    AnalysisKind.PSYCHOLOGY: frozenset({"prospect_persona"}),
    AnalysisKind.COACHING: frozenset({"overall_grade"}),
    AnalysisKind.DEAL_HEAT: frozenset({"heat_score", "temperature"}),
    AnalysisKind.COMPETITIVE_INTEL: frozenset({"competitive_intel"}),
}


def validate(kind: AnalysisKind, raw: Any) -> ValidatedAnalysis:
    """Validate one stored blob of the given kind. Never raises on bad data."""
    kind = AnalysisKind(kind)
    if raw is None:
        return ValidatedAnalysis.degraded(kind, None, NOT_YET_ANALYZED)

    payload = _decode_payload(raw)
    if payload is None:
        logger.warning(f"{kind.value}: stored blob is not a JSON object ({type(raw).__name__})")
        return ValidatedAnalysis.degraded(kind, None, INVALID)

    current, *older = SCHEMAS[kind]
    try:
        value = current.model.model_validate(payload)
        return ValidatedAnalysis.ok(kind, value, current.version)
    except ValidationError as e:
        current_error = e

    for descriptor in older:
        try:
            legacy = descriptor.model.model_validate(payload)
        except ValidationError:
            continue
        return _from_legacy(kind, current, descriptor, legacy, payload)

    current_invalid: List[str] = []
    for descriptor in SCHEMAS[kind]:
        partial, invalid_fields = _salvage(descriptor.model, payload, CRITICAL_FIELDS[kind])
        if descriptor is current:
            current_invalid = invalid_fields
        if partial is None:
            continue
        if descriptor is not current:
            partial = upgrade(partial, current.model)
        logger.info(f"{kind.value}: salvaged v{descriptor.version} record, dropped fields {invalid_fields}")
        return ValidatedAnalysis.degraded(
            kind,
            partial,
            INVALID_FIELDS,
            version=descriptor.version,
            invalid_fields=invalid_fields,
        )

    logger.warning(
        f"{kind.value}: unusable record, {current_error.error_count()} error(s) "
        f"on current schema (invalid: {current_invalid})"
    )
    return ValidatedAnalysis.degraded(kind, None, INVALID, invalid_fields=current_invalid)


def _from_legacy(
    kind: AnalysisKind,
    current: SchemaDescriptor,
    descriptor: SchemaDescriptor,
    legacy: BaseModel,
    payload: Any,
) -> ValidatedAnalysis:
    """Turn a legacy-schema match into a current-shape result.

    Older schemas ignore keys they do not know, so a current record with a
    malformed newer field also matches them. Such a record is reported as
    invalid_fields at the current version. Otherwise it is schema drift, and
    any field that validates against the current schema on its own replaces
    the upgraded value.
    """
    upgraded = upgrade(legacy, current.model)
    if not isinstance(payload, dict):
        logger.info(f"{kind.value}: accepted as v{descriptor.version} record (current v{current.version})")
        return ValidatedAnalysis.degraded(kind, upgraded, SCHEMA_DRIFT, version=descriptor.version)

    values, invalid = _field_values(current.model, payload)
    legacy_fields = type(legacy).model_fields
    if invalid and all(name not in legacy_fields and payload.get(name) is not None for name in invalid):
        logger.info(f"{kind.value}: v{current.version} record with malformed fields {invalid}")
        return ValidatedAnalysis.degraded(
            kind,
            current.model.model_construct(**values),
            INVALID_FIELDS,
            version=current.version,
            invalid_fields=invalid,
        )

    merged = {
        name: values[name] if name not in invalid and values[name] is not None else getattr(upgraded, name)
        for name in current.model.model_fields
    }
    logger.info(f"{kind.value}: accepted as v{descriptor.version} record (current v{current.version})")
    return ValidatedAnalysis.degraded(
        kind,
        current.model.model_construct(**merged),
        SCHEMA_DRIFT,
        version=descriptor.version,
    )


def validate_record(blobs: Dict[AnalysisKind, Any]) -> Dict[AnalysisKind, ValidatedAnalysis]:
    """Validate every kind for one call; kinds missing from the record come back not_yet_analyzed."""
    return {kind: validate(kind, blobs.get(kind)) for kind in AnalysisKind}


def _decode_payload(raw: Any) -> Optional[Any]:
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            return None
    if isinstance(raw, (dict, list)):
        return raw
    return None


# ═══════════════════════════════════════════════════════════
#  Upgrade: older validated model -> current shape
# ═══════════════════════════════════════════════════════════

def _unwrap_optional(annotation):
    if get_origin(annotation) is Union:
        args = [a for a in get_args(annotation) if a is not type(None)]
        if len(args) == 1:
            return args[0]
    return annotation


def _as_model(annotation) -> Optional[Type[BaseModel]]:
    annotation = _unwrap_optional(annotation)
    if isinstance(annotation, type) and issubclass(annotation, BaseModel):
        return annotation
    return None


def _as_list_of_model(annotation) -> Optional[Type[BaseModel]]:
    annotation = _unwrap_optional(annotation)
    if get_origin(annotation) in (list, List):
        args = get_args(annotation)
        if args:
            return _as_model(args[0])
    return None


def _convert(value: Any, annotation) -> Any:
    target = _as_model(annotation)
    if target is not None and isinstance(value, BaseModel) and not isinstance(value, target):
        return upgrade(value, target)
    item_target = _as_list_of_model(annotation)
    if item_target is not None and isinstance(value, list):
        return [
            upgrade(v, item_target) if isinstance(v, BaseModel) and not isinstance(v, item_target) else v
            for v in value
        ]
    return value


def upgrade(legacy: BaseModel, target: Type[BaseModel]) -> BaseModel:
    """Build a target-shaped value from an older model.

    Fields shared by name are carried over (recursively for nested models);
    fields the older version never had are None, not defaulted.
    """
    values = {}
    for name, field in target.model_fields.items():
        if name in type(legacy).model_fields:
            values[name] = _convert(getattr(legacy, name), field.annotation)
        else:
            values[name] = None
    return target.model_construct(**values)


# ═══════════════════════════════════════════════════════════
#  Field-level salvage
# ═══════════════════════════════════════════════════════════

def _field_adapter(field) -> TypeAdapter:
    annotation = field.annotation
    if field.metadata:
        annotation = Annotated[(annotation, *field.metadata)]
    return TypeAdapter(annotation)


def _field_value(field, raw: Any) -> Tuple[Any, bool]:
    """Validate one field. A list of models that fails as a whole keeps its valid entries."""
    try:
        return _field_adapter(field).validate_python(raw), True
    except ValidationError:
        pass

    item_model = _as_list_of_model(field.annotation)
    if item_model is None or not isinstance(raw, list):
        return None, False
    kept = []
    for item in raw:
        try:
            kept.append(item_model.model_validate(item))
        except ValidationError:
            continue
    return kept or None, False


def _field_values(model: Type[BaseModel], payload: dict) -> Tuple[Dict[str, Any], List[str]]:
    values: Dict[str, Any] = {}
    invalid: List[str] = []
    for name, field in model.model_fields.items():
        raw = payload.get(name)
        if raw is None:
            values[name] = None
            if field.is_required():
                invalid.append(name)
            continue
        values[name], valid = _field_value(field, raw)
        if not valid:
            invalid.append(name)
    return values, invalid


def _salvage(
    model: Type[BaseModel],
    payload: Any,
    critical: FrozenSet[str],
) -> Tuple[Optional[BaseModel], List[str]]:
    if not isinstance(payload, dict):
        return None, []

    values, invalid = _field_values(model, payload)
    if any(values[name] is None for name in critical):
        return None, invalid
    return model.model_construct(**values), invalid
