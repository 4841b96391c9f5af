"""Dependencias compartidas de los endpoints: kernel y mapeo de errores."""

from __future__ import annotations

import logging

from fastapi import HTTPException, Request

from ..core.errors import (
    CorrosionError,
    MalformedEventError,
    PolicyValidationError,
    StorageError,
    TransportError,
    UnknownSiteError,
    ValidationError,
)
from ..kernel import CorrosionKernel

logger = logging.getLogger(__name__)


def get_kernel(request: Request) -> CorrosionKernel:
    kernel = getattr(request.app.state, "kernel", None)
    if kernel is None:
        raise HTTPException(status_code=503, detail="service not initialised")
    return kernel


def http_error(e: CorrosionError) -> HTTPException:
    """Traduce errores del core a HTTPException (sin filtrar detalles del driver)."""
    if isinstance(e, ValidationError):
        return HTTPException(status_code=422, detail=e.to_dict())
    if isinstance(e, PolicyValidationError):
        return HTTPException(status_code=422, detail={"code": "INVALID_POLICY", "message": str(e)})
    if isinstance(e, UnknownSiteError):
        return HTTPException(status_code=404, detail={"code": "UNKNOWN_SITE", "message": str(e)})
    if isinstance(e, MalformedEventError):
        return HTTPException(status_code=422, detail={"code": "MALFORMED_EVENT", "message": str(e)})
    if isinstance(e, (TransportError, StorageError)):
        logger.exception("[API] store/transport failure")
        return HTTPException(status_code=503, detail={"code": "UNAVAILABLE", "message": "store unavailable"})
    logger.exception("[API] unexpected core error")
    return HTTPException(status_code=500, detail={"code": "INTERNAL", "message": type(e).__name__})
