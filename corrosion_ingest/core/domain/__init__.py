"""Modelos de dominio del pipeline de corrosión."""

from .analytics import (
    DEFAULT_POLICY,
    AnalyticsRow,
    AssetInfo,
    AssetLedgerRow,
    AssetSummary,
    PlantCrStats,
    RiskEvaluation,
    RiskLevel,
    RiskPolicy,
    TopAssetRow,
)
from .events import EventPayload, EventType, IngestionEvent, make_idempotency_key
from .measurement import (
    LastPoint,
    MeasurementPoint,
    ValidatedBatch,
    build_points_json,
    ensure_utc,
    parse_points_json,
)

__all__ = [
    "DEFAULT_POLICY",
    "AnalyticsRow",
    "AssetInfo",
    "AssetLedgerRow",
    "AssetSummary",
    "PlantCrStats",
    "RiskEvaluation",
    "RiskLevel",
    "RiskPolicy",
    "TopAssetRow",
    "EventPayload",
    "EventType",
    "IngestionEvent",
    "make_idempotency_key",
    "LastPoint",
    "MeasurementPoint",
    "ValidatedBatch",
    "build_points_json",
    "ensure_utc",
    "parse_points_json",
]
