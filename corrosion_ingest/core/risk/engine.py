"""Motor de corrosión y riesgo: funciones puras.

Política de precisión:
- Espesores y tasas: ``Decimal`` (coinciden con NUMERIC del store central)
- Tasa de corrosión: 6 decimales, redondeo half-away-from-zero
- Piso de 1 día entre mediciones para evitar explosión en re-mediciones del mismo día

El motor NO re-valida la entrada: una tasa negativa solo es posible si se
saltó el validador del sitio.
"""

from __future__ import annotations

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List, Optional

from ..domain.analytics import AssetLedgerRow, RiskLevel, RiskPolicy

CR_PRECISION = 6
MIN_INTERVAL_DAYS = Decimal("1.0")

_SECONDS_PER_DAY = Decimal(86400)
_CR_QUANTUM = Decimal(1).scaleb(-CR_PRECISION)


def calc_corrosion_rate(
    prev_thickness: Optional[Decimal],
    prev_date: Optional[datetime],
    last_thickness: Optional[Decimal],
    last_date: Optional[datetime],
) -> Optional[Decimal]:
    """Espesor perdido por día entre dos lecturas fechadas.

    Returns:
        Tasa redondeada a 6 decimales, o None si falta alguno de los cuatro valores
    """
    if prev_thickness is None or prev_date is None or last_thickness is None or last_date is None:
        return None

    elapsed = Decimal(str((last_date - prev_date).total_seconds())) / _SECONDS_PER_DAY
    days = max(MIN_INTERVAL_DAYS, elapsed)
    rate = (Decimal(prev_thickness) - Decimal(last_thickness)) / days
    return rate.quantize(_CR_QUANTUM, rounding=ROUND_HALF_UP)


def calc_ledger_rate(ledger: Optional[AssetLedgerRow]) -> Optional[Decimal]:
    if ledger is None:
        return None
    return calc_corrosion_rate(
        ledger.prev_thickness, ledger.prev_date, ledger.last_thickness, ledger.last_date,
    )


def eval_risk(rate: Optional[Decimal], policy: RiskPolicy) -> RiskLevel:
    """Nivel de riesgo de una tasa bajo una política. Empates suben de nivel (``>=``)."""
    if rate is None:
        return RiskLevel.UNKNOWN
    if rate >= policy.threshold_high:
        return RiskLevel.HIGH
    if rate >= policy.threshold_med:
        return RiskLevel.MEDIUM
    if rate >= policy.threshold_low:
        return RiskLevel.LOW
    return RiskLevel.OK


def percentile_cont(values: Iterable[Decimal], fraction: float) -> Optional[Decimal]:
    """Percentil con interpolación lineal (misma semántica que ``percentile_cont`` de Postgres)."""
    ordered: List[Decimal] = sorted(values)
    if not ordered:
        return None
    if len(ordered) == 1:
        return ordered[0]
    position = Decimal(str(fraction)) * (len(ordered) - 1)
    lower = int(position)
    upper = min(lower + 1, len(ordered) - 1)
    weight = position - lower
    return ordered[lower] + (ordered[upper] - ordered[lower]) * weight


def mean(values: Iterable[Decimal]) -> Optional[Decimal]:
    items = list(values)
    if not items:
        return None
    return sum(items, Decimal(0)) / len(items)
