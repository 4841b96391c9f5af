"""Eventos de ingesta que viajan sitio -> cola central -> procesador."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from ..errors import MalformedEventError
from .measurement import ValidatedBatch, ensure_utc, parse_decimal, parse_timestamp


class EventType(str, Enum):
    MEASUREMENT_BATCH = "MEASUREMENT_BATCH"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _dec_text(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def _opt_str(data: Mapping[str, Any], key: str, event_id: Optional[int]) -> Optional[str]:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise MalformedEventError(event_id, f"{key} must be a string or null")
    return value


def make_idempotency_key(site_id: str, asset_code: str, last_date: datetime) -> str:
    """``SITE:ASSET:lastDate``. Unique because the validator forbids equal timestamps per asset."""
    return f"{site_id}:{asset_code}:{ensure_utc(last_date).isoformat()}"


@dataclass(frozen=True)
class EventPayload:
    """Delta de un batch: el par prev/last más label y nota del último punto."""
    asset_code: str
    site_id: str
    last_thickness: Decimal
    last_date: datetime
    prev_thickness: Optional[Decimal] = None
    prev_date: Optional[datetime] = None
    label: Optional[str] = None
    note: Optional[str] = None

    @classmethod
    def from_batch(cls, batch: ValidatedBatch) -> "EventPayload":
        last_point = batch.last_point
        return cls(
            asset_code=batch.asset_code,
            site_id=batch.site_id,
            last_thickness=batch.last.thickness,
            last_date=batch.last.date,
            prev_thickness=batch.prev.thickness if batch.prev else None,
            prev_date=batch.prev.date if batch.prev else None,
            label=last_point.label,
            note=last_point.note,
        )

    @property
    def idempotency_key(self) -> str:
        return make_idempotency_key(self.site_id, self.asset_code, self.last_date)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset_code": self.asset_code,
            "site_id": self.site_id,
            "prev_thk": _dec_text(self.prev_thickness),
            "prev_date": _iso(self.prev_date),
            "last_thk": _dec_text(self.last_thickness),
            "last_date": _iso(self.last_date),
            "label": self.label,
            "note": self.note,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_json(cls, raw: Any, event_id: Optional[int] = None) -> "EventPayload":
        """Decodifica el payload de un evento.

        Raises:
            MalformedEventError: JSON inválido, campos faltantes o tipos erróneos
        """
        try:
            data = json.loads(raw) if isinstance(raw, (str, bytes, bytearray)) else raw
        except json.JSONDecodeError as e:
            raise MalformedEventError(event_id, f"invalid JSON: {e}")
        if not isinstance(data, dict):
            raise MalformedEventError(event_id, "payload must be a JSON object")

        asset_code = data.get("asset_code")
        if not isinstance(asset_code, str) or not asset_code.strip():
            raise MalformedEventError(event_id, "asset_code missing")
        asset_code = asset_code.strip()

        try:
            last_thk = parse_decimal(data.get("last_thk"))
            last_date = parse_timestamp(data.get("last_date"))
            prev_raw, prev_date_raw = data.get("prev_thk"), data.get("prev_date")
            prev_thk = parse_decimal(prev_raw) if prev_raw is not None else None
            prev_date = parse_timestamp(prev_date_raw) if prev_date_raw is not None else None
        except ValueError as e:
            raise MalformedEventError(event_id, str(e))

        if (prev_thk is None) != (prev_date is None):
            raise MalformedEventError(event_id, "prev_thk and prev_date must both be set or both be null")

        site_id = _opt_str(data, "site_id", event_id)
        label = _opt_str(data, "label", event_id)
        note = _opt_str(data, "note", event_id)

        return cls(
            asset_code=asset_code,
            site_id=(site_id or "").strip().upper(),
            last_thickness=last_thk,
            last_date=last_date,
            prev_thickness=prev_thk,
            prev_date=prev_date,
            label=label,
            note=note,
        )


@dataclass(frozen=True)
class IngestionEvent:
    id: int
    event_type: str
    source_site: str
    payload_json: str
    created_at: datetime
    processed: bool = False
    processed_at: Optional[datetime] = None
    error: Optional[str] = None
    attempts: int = 0
    idempotency_key: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "IngestionEvent":
        payload = row["payload"]
        if not isinstance(payload, str):
            # jsonb columns come back already decoded
            payload = json.dumps(payload)
        processed_at = row.get("processed_at")
        return cls(
            id=int(row["id"]),
            event_type=row["event_type"],
            source_site=row.get("source_site") or "",
            payload_json=payload,
            created_at=ensure_utc(row["created_at"]),
            processed=processed_at is not None,
            processed_at=ensure_utc(processed_at) if processed_at else None,
            error=row.get("error"),
            attempts=int(row.get("attempts") or 0),
            idempotency_key=row.get("idempotency_key"),
        )

    def payload(self) -> EventPayload:
        return EventPayload.from_json(self.payload_json, event_id=self.id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "source_site": self.source_site,
            "payload_json": self.payload_json,
            "created_at": _iso(self.created_at),
            "processed": self.processed,
            "processed_at": _iso(self.processed_at),
            "error": self.error,
            "attempts": self.attempts,
        }
