from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class MeasurementPointIn(BaseModel):
    label: str
    ts: datetime
    thickness: Decimal
    note: Optional[str] = None


class MeasurementBatchIn(BaseModel):
    points: List[MeasurementPointIn] = Field(default_factory=list)


class BatchAccepted(BaseModel):
    site_id: str
    asset_code: str
    rows: int


class PolicyIn(BaseModel):
    threshold_low: Decimal
    threshold_med: Decimal
    threshold_high: Decimal


class PolicyOut(BaseModel):
    name: str
    threshold_low: float
    threshold_med: float
    threshold_high: float


class AssetIn(BaseModel):
    name: Optional[str] = None
    type: Optional[str] = None
    plant_code: Optional[str] = None


class AssetOut(BaseModel):
    asset_code: str
    name: Optional[str] = None
    type: Optional[str] = None
    plant_code: Optional[str] = None


class EventOut(BaseModel):
    id: int
    event_type: str
    source_site: str
    payload_json: str
    created_at: Optional[datetime] = None
    processed: bool
    processed_at: Optional[datetime] = None
    error: Optional[str] = None
    attempts: int = 0


class IngestIn(BaseModel):
    limit: Optional[int] = Field(default=None, ge=1)
    max_attempts: Optional[int] = Field(default=None, ge=1)
    flush_sites: bool = True


class IngestResult(BaseModel):
    passes: int
    claimed: int
    processed: int
    stale: int
    skipped: int
    skipped_ids: List[int] = Field(default_factory=list)
    published: int = 0
    exhausted: bool = False
    at: Optional[str] = None


class RequeueIn(BaseModel):
    ids: List[int] = Field(default_factory=list)


class CleanupIn(BaseModel):
    older_than_days: float = Field(default=30.0, gt=0)


class CountResult(BaseModel):
    affected: int
