"""Puente planta -> cola central (push explícito desde el outbox).

Central nunca recibe credenciales de planta: cada sitio empuja sus filas de
outbox pendientes al inbox central. Cada evento viaja con la idempotency key
``SITE:ASSET:lastDate``, así que reintentar un publish ya aplicado devuelve
el mismo id central sin duplicar.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional

from ..central.event_queue import CentralEventQueue
from ..core.errors import StorageError, TransportError
from ..infrastructure.persistence.operations import OperationNames as Op
from ..infrastructure.persistence.storage_port import StoragePort

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutboxRecord:
    id: int
    event_type: str
    source_site: str
    payload_json: str
    idempotency_key: str

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "OutboxRecord":
        payload = row["payload"]
        if not isinstance(payload, str):
            payload = json.dumps(payload)
        return cls(
            id=int(row["id"]),
            event_type=row["event_type"],
            source_site=row["source_site"],
            payload_json=payload,
            idempotency_key=row["idempotency_key"],
        )


@dataclass
class FlushResult:
    site_id: str
    published: int = 0
    failed: int = 0
    central_ids: List[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "site_id": self.site_id,
            "published": self.published,
            "failed": self.failed,
            "central_ids": list(self.central_ids),
        }


class TransportBridge:
    def __init__(self, queue: CentralEventQueue, batch_size: int = 100):
        self._queue = queue
        self._batch_size = batch_size

        # Stats
        self.published = 0
        self.failures = 0

    async def publish(self, record: OutboxRecord) -> int:
        """Publica un evento en el inbox central. Idempotente por key.

        Returns:
            Id del evento central (nuevo o existente)

        Raises:
            TransportError: el enqueue falló; reintentar con el mismo record es seguro
        """
        try:
            event_id = await self._queue.enqueue(
                record.event_type,
                record.source_site,
                record.payload_json,
                idempotency_key=record.idempotency_key,
            )
        except TransportError:
            self.failures += 1
            raise
        self.published += 1
        return event_id

    async def flush(self, site: StoragePort, limit: Optional[int] = None) -> FlushResult:
        """Empuja las filas pendientes del outbox de un sitio a central.

        Se detiene en el primer fallo para conservar el orden del outbox.

        Raises:
            TransportError: solo si no se pudo ni leer el outbox
        """
        result = FlushResult(site_id=site.site_id)
        try:
            rows = await site.execute_query(
                Op.SITE_OUTBOX_PENDING, {"limit": limit or self._batch_size},
            )
        except StorageError as e:
            raise TransportError(f"cannot read outbox site={site.site_id}: {e}") from e

        for row in rows:
            record = OutboxRecord.from_row(row)
            try:
                central_id = await self.publish(record)
            except TransportError as e:
                logger.warning("[BRIDGE] publish failed site=%s outbox_id=%s: %s", site.site_id, record.id, e)
                result.failed += 1
                break

            await site.execute_command(Op.SITE_OUTBOX_MARK_PUBLISHED, {
                "id": record.id,
                "published_at": datetime.now(timezone.utc),
                "central_event_id": central_id,
            })
            result.published += 1
            result.central_ids.append(central_id)

        if result.published or result.failed:
            logger.info(
                "[BRIDGE] flush site=%s published=%d failed=%d",
                site.site_id, result.published, result.failed,
            )
        return result
