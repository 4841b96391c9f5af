"""Excepciones del pipeline de ingesta y analítica de corrosión.

Taxonomía:
- ValidationError: rechazo síncrono al enviar un batch (nunca entra a la cola)
- TransportError: fallo al publicar/encolar (el caller reintenta con la misma key)
- MalformedEventError: payload ilegible durante drain (se salta, no aborta el batch)
- StaleEventError: evento viejo/duplicado (lo absorbe el guard de orden)
- UnknownSiteError: el router no puede resolver el sitio (fatal, sin retry)
"""

from __future__ import annotations

from typing import Optional


class CorrosionError(Exception):
    """Base de todos los errores del core."""


class ValidationError(CorrosionError):
    """Batch de mediciones rechazado en el sitio de origen."""

    MISSING_ASSET_CODE = "MISSING_ASSET_CODE"
    MISSING_SITE_ID = "MISSING_SITE_ID"
    EMPTY_BATCH = "EMPTY_BATCH"
    NON_MONOTONIC_TIME = "NON_MONOTONIC_TIME"
    THICKNESS_INCREASED = "THICKNESS_INCREASED"
    INVALID_POINT = "INVALID_POINT"

    def __init__(self, code: str, message: str, index: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.index = index

    def to_dict(self) -> dict:
        return {"code": self.code, "message": str(self), "index": self.index}


class MissingAssetCodeError(ValidationError):
    def __init__(self, message: str = "asset_code is required"):
        super().__init__(ValidationError.MISSING_ASSET_CODE, message)


class NonMonotonicTimeError(ValidationError):
    def __init__(self, message: str, index: Optional[int] = None):
        super().__init__(ValidationError.NON_MONOTONIC_TIME, message, index)


class ThicknessIncreasedError(ValidationError):
    def __init__(self, message: str, index: Optional[int] = None):
        super().__init__(ValidationError.THICKNESS_INCREASED, message, index)


class PolicyValidationError(CorrosionError):
    """Umbrales de política inválidos (negativos o desordenados)."""


class TransportError(CorrosionError):
    """No se pudo publicar un evento hacia la cola central."""


class MalformedEventError(CorrosionError):
    def __init__(self, event_id: Optional[int], reason: str):
        super().__init__(f"event {event_id}: {reason}")
        self.event_id = event_id
        self.reason = reason


class StaleEventError(CorrosionError):
    """El ledger ya tiene un estado igual o más reciente para el activo."""

    def __init__(self, asset_code: str, event_last_date, ledger_last_date):
        super().__init__(
            f"asset {asset_code}: event last_date={event_last_date} "
            f"<= ledger last_date={ledger_last_date}"
        )
        self.asset_code = asset_code


class UnknownSiteError(CorrosionError):
    def __init__(self, site_id: Optional[str]):
        super().__init__(f"unknown site '{site_id}'")
        self.site_id = site_id


class StorageError(CorrosionError):
    """Fallo del store transaccional (driver, conexión, operación desconocida)."""

    def __init__(self, message: str, transient: bool = False):
        super().__init__(message)
        self.transient = transient
