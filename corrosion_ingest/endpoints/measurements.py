"""Envío de batches de mediciones desde una planta."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from common.config import normalize_site

from ..core.errors import CorrosionError
from ..kernel import CorrosionKernel
from ..schemas import BatchAccepted, MeasurementBatchIn
from .deps import get_kernel, http_error

router = APIRouter(prefix="/api", tags=["measurements"])


@router.post(
    "/sites/{site_id}/assets/{asset_code}/measurements",
    response_model=BatchAccepted,
    status_code=201,
)
async def submit_measurements(
    site_id: str,
    asset_code: str,
    payload: MeasurementBatchIn,
    kernel: CorrosionKernel = Depends(get_kernel),
):
    """Valida y persiste el batch en la planta; el evento viaja a central vía outbox."""
    points = [p.model_dump() for p in payload.points]
    try:
        rows = await kernel.insert_measurement_batch(asset_code, points, site_id)
    except CorrosionError as e:
        raise http_error(e) from e
    return BatchAccepted(site_id=normalize_site(site_id) or site_id, asset_code=asset_code.strip(), rows=rows)
