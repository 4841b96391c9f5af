"""Políticas de riesgo."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ..core.domain.analytics import RiskPolicy
from ..core.errors import CorrosionError
from ..kernel import CorrosionKernel
from ..schemas import PolicyIn, PolicyOut
from .deps import get_kernel, http_error

router = APIRouter(prefix="/api", tags=["policies"])


def _out(policy: RiskPolicy) -> PolicyOut:
    return PolicyOut(
        name=policy.name,
        threshold_low=float(policy.threshold_low),
        threshold_med=float(policy.threshold_med),
        threshold_high=float(policy.threshold_high),
    )


@router.put("/policies/{name}", response_model=PolicyOut)
async def upsert_policy(name: str, payload: PolicyIn, kernel: CorrosionKernel = Depends(get_kernel)):
    """Crea/actualiza una política. Umbrales negativos o desordenados -> 422."""
    try:
        policy = await kernel.upsert_policy(
            name, payload.threshold_low, payload.threshold_med, payload.threshold_high,
        )
    except CorrosionError as e:
        raise http_error(e) from e
    return _out(policy)


@router.get("/policies/{name}", response_model=PolicyOut)
async def get_policy(name: str, kernel: CorrosionKernel = Depends(get_kernel)):
    try:
        policy = await kernel.get_policy(name)
    except CorrosionError as e:
        raise http_error(e) from e
    return _out(policy)
