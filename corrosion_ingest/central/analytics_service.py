"""Consultas analíticas del lado central.

Read models que se recalculan a partir del ledger (nunca de filas sueltas):
- Resumen por activo (bloques asset/analytics/risk siempre presentes)
- Evaluación de riesgo bajo una política arbitraria
- Top de activos por tasa de corrosión
- Estadísticas de tasa por planta (media y P90)
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from common.config import normalize_site

from ..core.domain.analytics import (
    AnalyticsRow,
    AssetInfo,
    AssetLedgerRow,
    AssetSummary,
    PlantCrStats,
    RiskEvaluation,
    RiskPolicy,
    TopAssetRow,
)
from ..core.domain.measurement import ensure_utc, normalize_optional
from ..core.errors import MissingAssetCodeError
from ..core.risk import calc_corrosion_rate, calc_ledger_rate, eval_risk, mean, percentile_cont
from ..infrastructure.persistence.operations import OperationNames as Op
from ..infrastructure.persistence.storage_port import StoragePort
from .policies import PolicyStore

logger = logging.getLogger(__name__)

P90 = 0.9


class AnalyticsService:
    def __init__(self, storage: StoragePort, policies: PolicyStore):
        self._storage = storage
        self._policies = policies

    @property
    def policies(self) -> PolicyStore:
        return self._policies

    async def upsert_asset(
        self,
        asset_code: str,
        name: Optional[str] = None,
        asset_type: Optional[str] = None,
        plant_code: Optional[str] = None,
    ) -> AssetInfo:
        code = normalize_optional(asset_code)
        if code is None:
            raise MissingAssetCodeError()
        asset = AssetInfo(
            asset_code=code,
            name=normalize_optional(name),
            asset_type=normalize_optional(asset_type),
            plant_code=normalize_site(plant_code),
        )
        await self._storage.execute_command(Op.ASSET_UPSERT, {
            "asset_code": asset.asset_code,
            "name": asset.name,
            "asset_type": asset.asset_type,
            "plant_code": asset.plant_code,
        })
        return await self.get_asset(code) or asset

    async def get_asset(self, asset_code: str) -> Optional[AssetInfo]:
        rows = await self._storage.execute_query(Op.ASSET_GET, {"asset_code": asset_code})
        return AssetInfo.from_row(rows[0]) if rows else None

    async def get_ledger(self, asset_code: str) -> Optional[AssetLedgerRow]:
        rows = await self._storage.execute_query(Op.LEDGER_GET, {"asset_code": asset_code})
        return AssetLedgerRow.from_row(rows[0]) if rows else None

    async def get_analytics(self, asset_code: str) -> Optional[AnalyticsRow]:
        rows = await self._storage.execute_query(Op.ANALYTICS_GET, {"asset_code": asset_code})
        return AnalyticsRow.from_row(rows[0]) if rows else None

    @staticmethod
    def calc_cr(prev_thk, prev_date, last_thk, last_date) -> Optional[Decimal]:
        return calc_corrosion_rate(
            prev_thk,
            ensure_utc(prev_date) if prev_date else None,
            last_thk,
            ensure_utc(last_date) if last_date else None,
        )

    async def eval_risk(
        self, asset_code: Optional[str] = None, policy_name: Optional[str] = None,
    ) -> List[RiskEvaluation]:
        """Evalúa riesgo sobre el ledger actual (un activo o todos).

        Args:
            asset_code: Activo puntual; None evalúa todos los del ledger
            policy_name: Política a aplicar; None usa la activa
        """
        policy = await self._policies.get(policy_name)
        code = normalize_optional(asset_code)
        if code is not None:
            ledger = await self.get_ledger(code)
            ledgers = [ledger] if ledger else []
        else:
            rows = await self._storage.execute_query(Op.LEDGER_LIST, {})
            ledgers = [AssetLedgerRow.from_row(r) for r in rows]
        return [self._evaluate(row.asset_code, row, policy) for row in ledgers]

    async def asset_summary(
        self, asset_code: str, policy_name: Optional[str] = None,
    ) -> Optional[AssetSummary]:
        """Resumen del activo; None si central no conoce el activo."""
        code = normalize_optional(asset_code)
        if code is None:
            raise MissingAssetCodeError()

        asset = await self.get_asset(code)
        ledger = await self.get_ledger(code)
        if asset is None and ledger is None:
            return None
        analytics = await self.get_analytics(code)
        policy = await self._policies.get(policy_name)

        return AssetSummary(
            asset=asset or AssetInfo(asset_code=code, plant_code=ledger.site_id if ledger else None),
            ledger=ledger,
            analytics=analytics,
            evaluation=self._evaluate(code, ledger, policy),
        )

    async def top_assets_by_cr(self, limit: int = 10) -> List[TopAssetRow]:
        rows = await self._storage.execute_query(
            Op.ANALYTICS_TOP_ASSETS_BY_CR, {"limit": max(0, int(limit))},
        )
        return [TopAssetRow.from_row(r) for r in rows]

    async def plant_cr_stats(
        self, plant: str, date_from: datetime, date_to: datetime,
    ) -> PlantCrStats:
        plant_code = normalize_site(plant)
        start, end = ensure_utc(date_from), ensure_utc(date_to)
        rows = await self._storage.execute_query(Op.ANALYTICS_PLANT_RATES, {
            "plant": plant_code,
            "date_from": start,
            "date_to": end,
        })
        rates = [r["cr"] if isinstance(r["cr"], Decimal) else Decimal(str(r["cr"])) for r in rows]
        return PlantCrStats(
            plant=plant_code or "",
            date_from=start,
            date_to=end,
            cr_mean=_round(mean(rates)),
            cr_p90=_round(percentile_cont(rates, P90)),
            assets_count=len(rates),
        )

    @staticmethod
    def _evaluate(
        asset_code: str, ledger: Optional[AssetLedgerRow], policy: RiskPolicy,
    ) -> RiskEvaluation:
        rate = calc_ledger_rate(ledger)
        return RiskEvaluation(
            asset_code=asset_code,
            corrosion_rate=rate,
            level=eval_risk(rate, policy),
            policy=policy,
        )


def _round(value: Optional[Decimal]) -> Optional[Decimal]:
    if value is None:
        return None
    return value.quantize(Decimal("0.000001"))
