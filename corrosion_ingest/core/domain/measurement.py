"""Modelo de dominio para mediciones de espesor.

Un MeasurementPoint es inmutable una vez aceptado. El JSON canónico de un
batch usa las claves ``label``/``ts``/``thickness``/``note`` y ordena los
puntos por timestamp.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, List, Optional, Tuple

from ..errors import ValidationError


def ensure_utc(value: datetime) -> datetime:
    """Naive timestamps are taken as UTC; aware ones are converted."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str) and value.strip():
        return ensure_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
    raise ValueError(f"invalid timestamp: {value!r}")


def parse_decimal(value: Any) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ValueError(f"invalid number: {value!r}")
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValueError(f"invalid number: {value!r}")
    if not result.is_finite():
        raise ValueError(f"invalid number: {value!r}")
    return result


def normalize_optional(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    trimmed = str(value).strip()
    return trimmed or None


@dataclass(frozen=True)
class MeasurementPoint:
    label: str
    taken_at: datetime
    thickness: Decimal
    note: Optional[str] = None

    @classmethod
    def create(
        cls,
        label: Optional[str],
        taken_at: Any,
        thickness: Any,
        note: Optional[str] = None,
        index: Optional[int] = None,
    ) -> "MeasurementPoint":
        """Normaliza y valida un punto individual.

        Raises:
            ValidationError: INVALID_POINT si falta label, timestamp o espesor > 0
        """
        clean_label = normalize_optional(label)
        if clean_label is None:
            raise ValidationError(ValidationError.INVALID_POINT, "label is required", index)
        try:
            ts = parse_timestamp(taken_at)
            thk = parse_decimal(thickness)
        except ValueError as e:
            raise ValidationError(ValidationError.INVALID_POINT, str(e), index)
        if thk <= 0:
            raise ValidationError(
                ValidationError.INVALID_POINT,
                f"thickness must be > 0 (got {thk})",
                index,
            )
        return cls(label=clean_label, taken_at=ts, thickness=thk, note=normalize_optional(note))

    @classmethod
    def from_dict(cls, data: Any, index: Optional[int] = None) -> "MeasurementPoint":
        if not isinstance(data, dict):
            raise ValidationError(ValidationError.INVALID_POINT, "point must be an object", index)
        return cls.create(
            label=data.get("label"),
            taken_at=data.get("ts", data.get("taken_at")),
            thickness=data.get("thickness"),
            note=data.get("note"),
            index=index,
        )

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "ts": self.taken_at.isoformat(),
            "thickness": float(self.thickness),
            "note": self.note,
        }


@dataclass(frozen=True)
class LastPoint:
    """Último punto aceptado de un activo (espesor + fecha)."""
    thickness: Decimal
    date: datetime


@dataclass(frozen=True)
class ValidatedBatch:
    """Batch que pasó el validador, con el par prev/last ya calculado."""
    site_id: str
    asset_code: str
    points: Tuple[MeasurementPoint, ...]
    prev: Optional[LastPoint]
    last: LastPoint

    @property
    def last_point(self) -> MeasurementPoint:
        return self.points[-1]


def parse_points_json(points_json: Any) -> List[MeasurementPoint]:
    """Parsea el JSON de un batch (string, bytes o lista ya decodificada).

    El orden de entrada se conserva: el validador decide si es monótono.
    """
    data = points_json
    if isinstance(points_json, (str, bytes, bytearray)):
        try:
            data = json.loads(points_json)
        except json.JSONDecodeError as e:
            raise ValidationError(ValidationError.INVALID_POINT, f"points is not valid JSON: {e}")
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list):
        raise ValidationError(ValidationError.INVALID_POINT, "points must be a JSON array")
    return [MeasurementPoint.from_dict(item, index=i) for i, item in enumerate(data)]


def build_points_json(points: Iterable[MeasurementPoint], sort_by_timestamp: bool = True) -> str:
    items = list(points)
    if not items:
        raise ValidationError(ValidationError.EMPTY_BATCH, "at least one measurement point is required")
    if sort_by_timestamp:
        items.sort(key=lambda p: p.taken_at)
    return json.dumps([p.to_dict() for p in items], separators=(",", ":"))
