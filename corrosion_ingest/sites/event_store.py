"""Store local de mediciones de una planta + outbox de eventos.

Cada batch aceptado se escribe en una sola transacción del sitio:

1. Lock por activo (serializa envíos concurrentes del mismo activo)
2. Lectura del último punto aceptado
3. Validación monótona contra ese punto
4. Inserción de los puntos
5. Inserción del evento serializado en ``events_outbox``

Si el proceso muere entre el append y la publicación a central, el evento
queda pendiente en el outbox y el TransportBridge lo publica después.
El store no reintenta: falla rápido con un error definido.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Sequence

from ..core.domain.events import EventPayload, EventType
from ..core.domain.measurement import (
    LastPoint,
    MeasurementPoint,
    ValidatedBatch,
    ensure_utc,
    parse_decimal,
)
from ..core.validation import validate_batch
from ..infrastructure.persistence.operations import OperationNames as Op
from ..infrastructure.persistence.storage_port import StoragePort, StorageSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppendResult:
    rows_written: int
    payload: EventPayload
    outbox_inserted: bool


class SiteEventStore:
    def __init__(self, storage: StoragePort):
        self._storage = storage

    @property
    def site_id(self) -> str:
        return self._storage.site_id

    async def latest(
        self, asset_code: str, session: Optional[StorageSession] = None,
    ) -> Optional[LastPoint]:
        """Último punto aceptado del activo, o None si no tiene historia."""
        executor = session or self._storage
        rows = await executor.execute_query(Op.SITE_LATEST_MEASUREMENT, {"asset_code": asset_code})
        if not rows:
            return None
        row = rows[0]
        return LastPoint(thickness=parse_decimal(row["thickness"]), date=ensure_utc(row["taken_at"]))

    async def append(
        self, batch: ValidatedBatch, session: Optional[StorageSession] = None,
    ) -> AppendResult:
        """Escribe los puntos y el evento de outbox en la misma transacción.

        Args:
            batch: Batch ya validado
            session: Transacción abierta; si es None se abre una propia

        Returns:
            AppendResult con filas escritas y el payload encolado
        """
        if session is None:
            async with self._storage.transaction() as tx:
                return await self._append(batch, tx)
        return await self._append(batch, session)

    async def submit(
        self, asset_code: str, points: Sequence[MeasurementPoint], site_id: Optional[str] = None,
    ) -> AppendResult:
        """Lock + latest + validate + append, todo en una transacción.

        Raises:
            ValidationError: el batch viola las reglas monótonas
        """
        site = site_id or self.site_id
        async with self._storage.transaction() as tx:
            await tx.execute_query(Op.SITE_ASSET_LOCK, {"asset_code": asset_code})
            existing = await self.latest(asset_code, session=tx)
            batch = validate_batch(existing, points, asset_code, site).unwrap()
            return await self._append(batch, tx)

    async def _append(self, batch: ValidatedBatch, tx: StorageSession) -> AppendResult:
        written = 0
        for point in batch.points:
            written += await tx.execute_command(Op.SITE_MEASUREMENT_INSERT, {
                "asset_code": batch.asset_code,
                "site_id": batch.site_id,
                "label": point.label,
                "taken_at": point.taken_at,
                "thickness": point.thickness,
                "note": point.note,
            })

        payload = EventPayload.from_batch(batch)
        inserted = await tx.execute_command(Op.SITE_OUTBOX_INSERT, {
            "event_type": EventType.MEASUREMENT_BATCH.value,
            "source_site": batch.site_id,
            "payload": payload.to_json(),
            "idempotency_key": payload.idempotency_key,
            "created_at": datetime.now(timezone.utc),
        })

        logger.info(
            "[SITE] site=%s asset=%s points=%d last=%s outbox=%s",
            batch.site_id, batch.asset_code, written,
            batch.last.date.isoformat(), "new" if inserted else "dup",
        )
        return AppendResult(rows_written=written, payload=payload, outbox_inserted=bool(inserted))
