"""Aplica un evento de la cola sobre el ledger y la analítica central.

Pipeline por evento (dentro de la transacción/savepoint del drain):

1. Decodificar payload (MalformedEventError si no se puede)
2. Guard de orden: si el ledger ya tiene ``last_date >= event.last_date`` el
   evento es viejo o duplicado; se marca procesado sin tocar nada
3. Registrar el activo si no existe y upsert condicional del ledger
4. Tasa + nivel de riesgo bajo la política activa -> upsert de analytics
5. Marcar el evento procesado

El orden de llegada no importa: el ledger solo avanza por ``last_date``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import InvalidOperation
from typing import Optional

from ..core.domain.analytics import AnalyticsRow, AssetLedgerRow
from ..core.domain.events import EventPayload, EventType, IngestionEvent
from ..core.errors import MalformedEventError, StaleEventError
from ..core.risk import calc_corrosion_rate, eval_risk
from ..infrastructure.persistence.operations import OperationNames as Op
from ..infrastructure.persistence.storage_port import StorageSession
from .event_queue import ProcessOutcome
from .policies import PolicyStore

logger = logging.getLogger(__name__)


class IngestionProcessor:
    def __init__(self, policies: PolicyStore, policy_name: Optional[str] = None):
        self._policies = policies
        self._policy_name = policy_name

        # Stats
        self.applied = 0
        self.stale = 0

    async def process(self, event: IngestionEvent, session: StorageSession) -> str:
        if event.event_type != EventType.MEASUREMENT_BATCH.value:
            raise MalformedEventError(event.id, f"unsupported event_type '{event.event_type}'")
        payload = event.payload()
        now = datetime.now(timezone.utc)

        try:
            await self._check_order(payload, session)
            await self._apply(payload, event, session, now)
        except StaleEventError as e:
            logger.info("[INGEST] stale event id=%s: %s", event.id, e)
            await session.execute_command(Op.EVENTS_MARK_PROCESSED, {"id": event.id, "processed_at": now})
            self.stale += 1
            return ProcessOutcome.STALE

        await session.execute_command(Op.EVENTS_MARK_PROCESSED, {"id": event.id, "processed_at": now})
        self.applied += 1
        return ProcessOutcome.APPLIED

    async def _check_order(self, payload: EventPayload, session: StorageSession) -> None:
        rows = await session.execute_query(Op.LEDGER_GET, {"asset_code": payload.asset_code})
        if not rows:
            return
        ledger = AssetLedgerRow.from_row(rows[0])
        if ledger.last_date is not None and ledger.last_date >= payload.last_date:
            raise StaleEventError(payload.asset_code, payload.last_date, ledger.last_date)

    async def _apply(
        self, payload: EventPayload, event: IngestionEvent, session: StorageSession, now: datetime,
    ) -> None:
        site_id = payload.site_id or event.source_site
        await session.execute_command(Op.ASSET_ENSURE, {
            "asset_code": payload.asset_code,
            "plant_code": site_id or None,
        })

        ledger = AssetLedgerRow(
            asset_code=payload.asset_code,
            site_id=site_id,
            prev_thickness=payload.prev_thickness,
            prev_date=payload.prev_date,
            last_thickness=payload.last_thickness,
            last_date=payload.last_date,
            updated_at=now,
        )
        written = await session.execute_command(
            Op.LEDGER_UPSERT, {**ledger.to_params(), "updated_at": now},
        )
        if written == 0:
            # A concurrent drain advanced the ledger between read and write.
            raise StaleEventError(payload.asset_code, payload.last_date, None)

        policy = await self._policies.get(self._policy_name, session=session)
        try:
            rate = calc_corrosion_rate(
                ledger.prev_thickness, ledger.prev_date, ledger.last_thickness, ledger.last_date,
            )
        except InvalidOperation:
            raise MalformedEventError(event.id, "thickness values out of range for corrosion rate")
        level = eval_risk(rate, policy)
        await session.execute_command(Op.ANALYTICS_UPSERT, AnalyticsRow(
            asset_code=payload.asset_code,
            corrosion_rate=rate,
            risk_level=level,
            policy_name=policy.name,
            updated_at=now,
        ).to_params())

        logger.debug(
            "[INGEST] event id=%s asset=%s cr=%s level=%s policy=%s",
            event.id, payload.asset_code, rate, level.value, policy.name,
        )
