"""Read models analíticos: resumen por activo, top por tasa, riesgo y estadísticas por planta."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..core.errors import CorrosionError
from ..kernel import CorrosionKernel
from ..schemas import AssetIn, AssetOut
from .deps import get_kernel, http_error

router = APIRouter(prefix="/api", tags=["analytics"])


@router.get("/assets/{asset_code}/summary")
async def asset_summary(
    asset_code: str,
    policy: Optional[str] = Query(default=None),
    kernel: CorrosionKernel = Depends(get_kernel),
):
    try:
        summary = await kernel.asset_summary(asset_code, policy)
    except CorrosionError as e:
        raise http_error(e) from e
    if summary is None:
        raise HTTPException(status_code=404, detail="asset not found")
    return summary


@router.put("/assets/{asset_code}", response_model=AssetOut)
async def upsert_asset(
    asset_code: str,
    payload: AssetIn,
    kernel: CorrosionKernel = Depends(get_kernel),
):
    try:
        asset = await kernel.upsert_asset(asset_code, payload.name, payload.type, payload.plant_code)
    except CorrosionError as e:
        raise http_error(e) from e
    return AssetOut(
        asset_code=asset.asset_code, name=asset.name, type=asset.asset_type, plant_code=asset.plant_code,
    )


@router.get("/analytics/top")
async def top_assets_by_cr(
    limit: int = Query(default=10, ge=1, le=500),
    kernel: CorrosionKernel = Depends(get_kernel),
):
    try:
        rows = await kernel.top_assets_by_cr(limit)
    except CorrosionError as e:
        raise http_error(e) from e
    return [r.to_dict() for r in rows]


@router.get("/analytics/risk")
async def eval_risk(
    asset: Optional[str] = Query(default=None),
    policy: Optional[str] = Query(default=None),
    kernel: CorrosionKernel = Depends(get_kernel),
):
    try:
        rows = await kernel.eval_risk(asset, policy)
    except CorrosionError as e:
        raise http_error(e) from e
    return [r.to_dict() for r in rows]


@router.get("/analytics/plants/{plant}/cr")
async def plant_cr_stats(
    plant: str,
    date_from: Optional[datetime] = Query(default=None, alias="from"),
    date_to: Optional[datetime] = Query(default=None, alias="to"),
    kernel: CorrosionKernel = Depends(get_kernel),
):
    end = date_to or datetime.now(timezone.utc)
    start = date_from or (end - timedelta(days=365))
    try:
        stats = await kernel.plant_cr_stats(plant, start, end)
    except CorrosionError as e:
        raise http_error(e) from e
    return stats.to_dict()
