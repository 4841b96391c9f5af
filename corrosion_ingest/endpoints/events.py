"""Operación de la cola central: peek, ingest (drain), requeue y cleanup."""

from __future__ import annotations

from datetime import timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ..central.drain import run_drain_loop
from ..core.errors import CorrosionError
from ..kernel import CorrosionKernel
from ..schemas import CleanupIn, CountResult, EventOut, IngestIn, IngestResult, RequeueIn
from .deps import get_kernel, http_error

router = APIRouter(prefix="/api/events", tags=["events"])


@router.get("/peek", response_model=List[EventOut])
async def peek(
    limit: int = Query(default=50, ge=1, le=1000),
    kernel: CorrosionKernel = Depends(get_kernel),
):
    """Eventos pendientes (incluye los fallidos, con su ``error``)."""
    try:
        events = await kernel.peek(limit)
    except CorrosionError as e:
        raise http_error(e) from e
    return [EventOut(**e.to_dict()) for e in events]


@router.get("/counts")
async def counts(kernel: CorrosionKernel = Depends(get_kernel)):
    try:
        return await kernel.queue_counts()
    except CorrosionError as e:
        raise http_error(e) from e


@router.post("/ingest", response_model=IngestResult)
async def ingest(
    payload: Optional[IngestIn] = None,
    kernel: CorrosionKernel = Depends(get_kernel),
):
    """Flush de outboxes + drain acotado. Devuelve conteos, nunca excepciones por evento."""
    body = payload or IngestIn()
    settings = kernel.settings
    try:
        summary = await run_drain_loop(
            kernel,
            batch_size=body.limit or settings.drain_batch,
            max_attempts=body.max_attempts or settings.drain_max_attempts,
            flush_sites=body.flush_sites,
        )
    except CorrosionError as e:
        raise http_error(e) from e
    return IngestResult(**summary.to_dict())


@router.post("/requeue", response_model=CountResult)
async def requeue(payload: RequeueIn, kernel: CorrosionKernel = Depends(get_kernel)):
    try:
        affected = await kernel.requeue(payload.ids)
    except CorrosionError as e:
        raise http_error(e) from e
    return CountResult(affected=affected)


@router.post("/cleanup", response_model=CountResult)
async def cleanup(payload: Optional[CleanupIn] = None, kernel: CorrosionKernel = Depends(get_kernel)):
    body = payload or CleanupIn()
    try:
        deleted = await kernel.cleanup(timedelta(days=body.older_than_days))
    except CorrosionError as e:
        raise http_error(e) from e
    return CountResult(affected=deleted)
