"""Health and readiness endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from ..core.errors import CorrosionError
from ..kernel import CorrosionKernel
from .deps import get_kernel

router = APIRouter(tags=["health"])
logger = logging.getLogger(__name__)


@router.get("/health")
def health():
    """Liveness probe: ok while the process is running."""
    return {"status": "ok"}


@router.get("/ready")
async def ready(kernel: CorrosionKernel = Depends(get_kernel)):
    """Readiness probe: central store reachable."""
    try:
        if await kernel.ping():
            return {"status": "ready", "sites": kernel.router.known_sites()}
    except CorrosionError as e:
        logger.warning("[API] readiness check failed: %s", e)
    raise HTTPException(status_code=503, detail="not ready")


@router.get("/stats")
def stats(kernel: CorrosionKernel = Depends(get_kernel)):
    return kernel.stats
