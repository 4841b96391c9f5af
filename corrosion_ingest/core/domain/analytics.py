"""Filas tipadas del lado central: ledger, analytics, políticas y read models.

Cada operación de lectura se decodifica una sola vez en la frontera
(``from_row``); el resto del código nunca accede a columnas por string.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from ..errors import PolicyValidationError
from .measurement import ensure_utc


class RiskLevel(str, Enum):
    OK = "OK"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    UNKNOWN = "UNKNOWN"


def _dec(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _dt(value: Any) -> Optional[datetime]:
    return ensure_utc(value) if value is not None else None


def _num(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class RiskPolicy:
    name: str
    threshold_low: Decimal
    threshold_med: Decimal
    threshold_high: Decimal

    def validate(self) -> "RiskPolicy":
        """Rechaza umbrales negativos o desordenados (low <= med <= high).

        Raises:
            PolicyValidationError
        """
        if not self.name or not self.name.strip():
            raise PolicyValidationError("policy name is required")
        for field_name in ("threshold_low", "threshold_med", "threshold_high"):
            if getattr(self, field_name) < 0:
                raise PolicyValidationError(f"{field_name} must be >= 0")
        if not (self.threshold_low <= self.threshold_med <= self.threshold_high):
            raise PolicyValidationError(
                "thresholds must satisfy low <= med <= high "
                f"(got {self.threshold_low}/{self.threshold_med}/{self.threshold_high})"
            )
        return self

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "RiskPolicy":
        return cls(
            name=row["name"],
            threshold_low=_dec(row["threshold_low"]),
            threshold_med=_dec(row["threshold_med"]),
            threshold_high=_dec(row["threshold_high"]),
        )

    def to_params(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "threshold_low": self.threshold_low,
            "threshold_med": self.threshold_med,
            "threshold_high": self.threshold_high,
        }


DEFAULT_POLICY = RiskPolicy(
    name="default",
    threshold_low=Decimal("0.01"),
    threshold_med=Decimal("0.05"),
    threshold_high=Decimal("0.08"),
)


@dataclass(frozen=True)
class AssetLedgerRow:
    """Ventana de los dos últimos puntos de un activo (central)."""
    asset_code: str
    site_id: Optional[str]
    prev_thickness: Optional[Decimal]
    prev_date: Optional[datetime]
    last_thickness: Optional[Decimal]
    last_date: Optional[datetime]
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "AssetLedgerRow":
        return cls(
            asset_code=row["asset_code"],
            site_id=row.get("site_id"),
            prev_thickness=_dec(row.get("prev_thk")),
            prev_date=_dt(row.get("prev_date")),
            last_thickness=_dec(row.get("last_thk")),
            last_date=_dt(row.get("last_date")),
            updated_at=_dt(row.get("updated_at")),
        )

    def to_params(self) -> Dict[str, Any]:
        return {
            "asset_code": self.asset_code,
            "site_id": self.site_id,
            "prev_thk": self.prev_thickness,
            "prev_date": self.prev_date,
            "last_thk": self.last_thickness,
            "last_date": self.last_date,
        }


@dataclass(frozen=True)
class AnalyticsRow:
    asset_code: str
    corrosion_rate: Optional[Decimal]
    risk_level: RiskLevel
    policy_name: Optional[str]
    updated_at: datetime

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "AnalyticsRow":
        return cls(
            asset_code=row["asset_code"],
            corrosion_rate=_dec(row.get("cr")),
            risk_level=RiskLevel(row.get("risk_level") or RiskLevel.UNKNOWN.value),
            policy_name=row.get("policy_name"),
            updated_at=_dt(row["updated_at"]),
        )

    def to_params(self) -> Dict[str, Any]:
        return {
            "asset_code": self.asset_code,
            "cr": self.corrosion_rate,
            "risk_level": self.risk_level.value,
            "policy_name": self.policy_name,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class AssetInfo:
    asset_code: str
    name: Optional[str] = None
    asset_type: Optional[str] = None
    plant_code: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "AssetInfo":
        return cls(
            asset_code=row["asset_code"],
            name=row.get("name"),
            asset_type=row.get("asset_type"),
            plant_code=row.get("plant_code"),
        )


@dataclass(frozen=True)
class RiskEvaluation:
    asset_code: str
    corrosion_rate: Optional[Decimal]
    level: RiskLevel
    policy: RiskPolicy

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset_code": self.asset_code,
            "cr": _num(self.corrosion_rate),
            "level": self.level.value,
            "threshold_low": _num(self.policy.threshold_low),
            "threshold_med": _num(self.policy.threshold_med),
            "threshold_high": _num(self.policy.threshold_high),
        }


@dataclass(frozen=True)
class TopAssetRow:
    asset_code: str
    corrosion_rate: Optional[Decimal]
    risk_level: RiskLevel
    updated_at: Optional[datetime]

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "TopAssetRow":
        return cls(
            asset_code=row["asset_code"],
            corrosion_rate=_dec(row.get("cr")),
            risk_level=RiskLevel(row.get("risk_level") or RiskLevel.UNKNOWN.value),
            updated_at=_dt(row.get("updated_at")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset_code": self.asset_code,
            "cr": _num(self.corrosion_rate),
            "risk_level": self.risk_level.value,
            "updated_at": _iso(self.updated_at),
        }


@dataclass(frozen=True)
class PlantCrStats:
    plant: str
    date_from: datetime
    date_to: datetime
    cr_mean: Optional[Decimal]
    cr_p90: Optional[Decimal]
    assets_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plant": self.plant,
            "from": _iso(self.date_from),
            "to": _iso(self.date_to),
            "cr_mean": _num(self.cr_mean),
            "cr_p90": _num(self.cr_p90),
            "assets_count": self.assets_count,
        }


@dataclass(frozen=True)
class AssetSummary:
    """Read model por activo: bloques ``asset``, ``analytics`` y ``risk``.

    Los tres bloques siempre están presentes; los valores ausentes se
    serializan como ``null`` explícito, nunca como clave faltante.
    """
    asset: AssetInfo
    ledger: Optional[AssetLedgerRow]
    analytics: Optional[AnalyticsRow]
    evaluation: RiskEvaluation

    def to_dict(self) -> Dict[str, Any]:
        ledger = self.ledger
        analytics = self.analytics
        return {
            "asset": {
                "asset_code": self.asset.asset_code,
                "name": self.asset.name,
                "type": self.asset.asset_type,
                "plant_code": self.asset.plant_code,
            },
            "analytics": {
                "prev_thk": _num(ledger.prev_thickness) if ledger else None,
                "prev_date": _iso(ledger.prev_date) if ledger else None,
                "last_thk": _num(ledger.last_thickness) if ledger else None,
                "last_date": _iso(ledger.last_date) if ledger else None,
                "cr": _num(self.evaluation.corrosion_rate),
                "updated_at": _iso(analytics.updated_at) if analytics else None,
            },
            "risk": {
                "level": self.evaluation.level.value,
                "policy": self.evaluation.policy.name,
                "threshold_low": _num(self.evaluation.policy.threshold_low),
                "threshold_med": _num(self.evaluation.policy.threshold_med),
                "threshold_high": _num(self.evaluation.policy.threshold_high),
                "cr": _num(self.evaluation.corrosion_rate),
            },
        }
