"""Cola central de eventos de ingesta (inbox).

Única estructura escrita concurrentemente por varios productores (plantas).

Garantías:
- ``peek`` es FIFO por id y no destructivo (incluye eventos con error)
- ``drain`` reclama, aplica y marca dentro de UNA transacción; cada evento se
  aplica en su propio savepoint. Si la tarea se cancela a mitad de camino el
  rollback devuelve todos los claims a pendiente.
- Un payload malformado no aborta el drain: el evento queda sin procesar con
  ``error`` seteado y los claims siguientes lo saltan hasta un ``requeue``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, List, Optional, Protocol

from ..core.domain.events import IngestionEvent
from ..core.errors import MalformedEventError, StorageError, TransportError
from ..core.notifications.channel import EVENTS_ENQUEUED, EVENTS_INGESTED
from ..infrastructure.persistence.operations import OperationNames as Op
from ..infrastructure.persistence.storage_port import StoragePort, StorageSession

logger = logging.getLogger(__name__)


class EventProcessor(Protocol):
    async def process(self, event: IngestionEvent, session: StorageSession) -> "ProcessOutcome":
        ...


class ProcessOutcome:
    APPLIED = "applied"
    STALE = "stale"


@dataclass
class SkippedEvent:
    event_id: int
    reason: str

    def to_dict(self) -> dict:
        return {"id": self.event_id, "reason": self.reason}


@dataclass
class DrainResult:
    """Resumen de un pase de drain (conteos, nunca excepciones crudas)."""
    claimed: int = 0
    applied: int = 0
    stale: int = 0
    skipped: List[SkippedEvent] = field(default_factory=list)

    @property
    def processed(self) -> int:
        """Eventos marcados como procesados (aplicados + descartados por orden)."""
        return self.applied + self.stale

    def to_dict(self) -> dict:
        return {
            "claimed": self.claimed,
            "processed": self.processed,
            "applied": self.applied,
            "stale": self.stale,
            "skipped": len(self.skipped),
            "skipped_events": [s.to_dict() for s in self.skipped],
        }


class CentralEventQueue:
    def __init__(self, storage: StoragePort):
        self._storage = storage

    @property
    def storage(self) -> StoragePort:
        return self._storage

    async def enqueue(
        self,
        event_type: str,
        source_site: str,
        payload_json: Any,
        idempotency_key: Optional[str] = None,
    ) -> int:
        """Inserta un evento. No valida la semántica del payload, solo que sea JSON.

        Con una idempotency key ya presente devuelve el id existente sin insertar.

        Raises:
            TransportError: payload no es JSON válido o el store falló
        """
        payload = _ensure_json_text(payload_json)
        params = {
            "event_type": event_type,
            "source_site": source_site,
            "payload": payload,
            "idempotency_key": idempotency_key,
            "created_at": datetime.now(timezone.utc),
        }
        try:
            rows = await self._storage.execute_query(Op.EVENTS_ENQUEUE, params)
            if rows:
                event_id = int(rows[0]["id"])
                logger.debug("[QUEUE] enqueued id=%s site=%s key=%s", event_id, source_site, idempotency_key)
            else:
                existing = await self._storage.execute_query(
                    Op.EVENTS_FIND_BY_KEY, {"idempotency_key": idempotency_key},
                )
                if not existing:
                    raise TransportError(f"enqueue returned no id for key={idempotency_key}")
                event_id = int(existing[0]["id"])
                logger.info("[QUEUE] duplicate key=%s -> existing id=%s", idempotency_key, event_id)
                return event_id
        except StorageError as e:
            raise TransportError(f"enqueue failed site={source_site}: {e}") from e

        await self._storage.notifications.publish(EVENTS_ENQUEUED, {"id": event_id, "site": source_site})
        return event_id

    async def peek(self, limit: int = 50) -> List[IngestionEvent]:
        rows = await self._storage.execute_query(Op.EVENTS_PEEK, {"limit": max(0, int(limit))})
        return [IngestionEvent.from_row(r) for r in rows]

    async def drain(self, limit: int, processor: EventProcessor) -> DrainResult:
        """Reclama hasta ``limit`` eventos pendientes y los aplica.

        Returns:
            DrainResult; ``processed`` es 0 cuando la cola está vacía
        """
        result = DrainResult()
        if limit <= 0:
            return result

        async with self._storage.transaction() as tx:
            rows = await tx.execute_query(Op.EVENTS_CLAIM, {"limit": int(limit)})
            events = sorted((IngestionEvent.from_row(r) for r in rows), key=lambda e: e.id)
            result.claimed = len(events)

            for event in events:
                try:
                    async with tx.savepoint():
                        outcome = await processor.process(event, tx)
                except MalformedEventError as e:
                    await self._mark_failed(tx, event, e.reason)
                    result.skipped.append(SkippedEvent(event.id, e.reason))
                    continue
                except StorageError as e:
                    if e.transient:
                        raise
                    await self._mark_failed(tx, event, str(e))
                    result.skipped.append(SkippedEvent(event.id, str(e)))
                    continue
                except Exception as e:
                    logger.exception("[QUEUE] event id=%s failed while applying", event.id)
                    reason = f"{type(e).__name__}: {e}"
                    await self._mark_failed(tx, event, reason)
                    result.skipped.append(SkippedEvent(event.id, reason))
                    continue

                if outcome == ProcessOutcome.STALE:
                    result.stale += 1
                else:
                    result.applied += 1

        if result.claimed:
            logger.info(
                "[QUEUE] drain claimed=%d applied=%d stale=%d skipped=%d",
                result.claimed, result.applied, result.stale, len(result.skipped),
            )
            await self._storage.notifications.publish(EVENTS_INGESTED, {
                "processed": result.processed,
                "skipped": len(result.skipped),
                "at": datetime.now(timezone.utc).isoformat(),
            })
        return result

    async def requeue(self, ids: Iterable[int]) -> int:
        """Devuelve eventos procesados o fallidos a pendiente."""
        id_list = sorted({int(i) for i in ids})
        if not id_list:
            return 0
        affected = await self._storage.execute_command(Op.EVENTS_REQUEUE, {"ids": id_list})
        logger.info("[QUEUE] requeued %d/%d events", affected, len(id_list))
        return affected

    async def cleanup(self, older_than: timedelta) -> int:
        """Borra eventos procesados más viejos que ``older_than``. Nunca toca pendientes."""
        cutoff = datetime.now(timezone.utc) - older_than
        deleted = await self._storage.execute_command(Op.EVENTS_CLEANUP, {"cutoff": cutoff})
        logger.info("[QUEUE] cleanup cutoff=%s deleted=%d", cutoff.isoformat(), deleted)
        return deleted

    async def counts(self) -> dict:
        rows = await self._storage.execute_query(Op.EVENTS_COUNTS, {})
        row = rows[0] if rows else {}
        return {k: int(row.get(k) or 0) for k in ("pending", "failed", "processed")}

    @staticmethod
    async def _mark_failed(tx: StorageSession, event: IngestionEvent, reason: str) -> None:
        logger.warning("[QUEUE] skipping event id=%s: %s", event.id, reason)
        await tx.execute_command(Op.EVENTS_MARK_FAILED, {"id": event.id, "error": reason[:500]})


def _ensure_json_text(payload: Any) -> str:
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8")
    if isinstance(payload, str):
        try:
            json.loads(payload)
        except json.JSONDecodeError as e:
            raise TransportError(f"payload is not valid JSON: {e}") from e
        return payload
    try:
        return json.dumps(payload, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise TransportError(f"payload is not JSON serialisable: {e}") from e
