"""Loop de drain acotado: re-ejecuta pases hasta que uno no reclame eventos.

1. Flush del outbox de todas las plantas (opcional)
2. Pases de drain con retry ante errores transitorios del store
3. Corte cuando un pase no reclama nada o se agota el presupuesto de pases
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, List, Optional

from .event_queue import DrainResult
from .retry import call_with_retry

if TYPE_CHECKING:
    from ..kernel import CorrosionKernel

logger = logging.getLogger(__name__)


@dataclass
class DrainSummary:
    passes: int = 0
    claimed: int = 0
    processed: int = 0
    stale: int = 0
    skipped: int = 0
    published: int = 0
    skipped_ids: List[int] = field(default_factory=list)
    exhausted: bool = False
    finished_at: Optional[datetime] = None

    def add(self, result: DrainResult) -> None:
        self.passes += 1
        self.claimed += result.claimed
        self.processed += result.processed
        self.stale += result.stale
        self.skipped += len(result.skipped)
        self.skipped_ids.extend(s.event_id for s in result.skipped)

    def to_dict(self) -> dict:
        return {
            "passes": self.passes,
            "claimed": self.claimed,
            "processed": self.processed,
            "stale": self.stale,
            "skipped": self.skipped,
            "skipped_ids": list(self.skipped_ids),
            "published": self.published,
            "exhausted": self.exhausted,
            "at": self.finished_at.isoformat() if self.finished_at else None,
        }


async def run_drain_loop(
    kernel: "CorrosionKernel",
    batch_size: int,
    max_attempts: int,
    flush_sites: bool = True,
    max_retries: int = 3,
) -> DrainSummary:
    """Drena hasta que un pase no reclame nada o se agoten ``max_attempts`` pases.

    Args:
        kernel: Kernel abierto (o abrible)
        batch_size: Eventos por pase
        max_attempts: Presupuesto de pases
        flush_sites: Publicar antes el outbox de todas las plantas
        max_retries: Reintentos por pase ante StorageError transitorio

    Returns:
        DrainSummary acumulado
    """
    await kernel.open()
    summary = DrainSummary()

    if flush_sites:
        for flush in await kernel.flush_all():
            summary.published += flush.published

    for _ in range(max(1, max_attempts)):
        result = await call_with_retry(lambda: kernel.ingest(batch_size), max_retries=max_retries)
        summary.add(result)
        if result.claimed == 0:
            break
    else:
        summary.exhausted = True
        logger.warning("[DRAIN] attempt budget exhausted after %d passes", summary.passes)

    summary.finished_at = datetime.now(timezone.utc)
    logger.info(
        "[DRAIN] done passes=%d processed=%d stale=%d skipped=%d published=%d",
        summary.passes, summary.processed, summary.stale, summary.skipped, summary.published,
    )
    return summary
