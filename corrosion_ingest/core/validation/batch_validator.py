"""Guard rails monótonos para batches de mediciones.

Se aplican sobre el último punto aceptado del activo concatenado con los
puntos candidatos, en orden:

- ``taken_at`` estrictamente creciente (sin empates ni regresiones)
- ``thickness`` nunca aumenta respecto al punto anterior (la corrosión solo quita material)

Principios (igual que el resto de guards de ingesta):
- Fail fast: se rechaza el batch completo en la primera violación
- Razón explícita (``code`` + índice del punto)
- Nunca se "clampa" un valor fuera de rango
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from ..domain.measurement import LastPoint, MeasurementPoint, ValidatedBatch, normalize_optional
from ..errors import (
    MissingAssetCodeError,
    NonMonotonicTimeError,
    ThicknessIncreasedError,
    ValidationError,
)

logger = logging.getLogger(__name__)


@dataclass
class BatchValidationResult:
    """Resultado de validar un batch."""
    is_valid: bool
    batch: Optional[ValidatedBatch] = None
    error: Optional[ValidationError] = None

    @property
    def reason(self) -> str:
        return self.error.code if self.error else "OK"

    def unwrap(self) -> ValidatedBatch:
        if self.error is not None:
            raise self.error
        return self.batch


def validate_batch(
    existing_last: Optional[LastPoint],
    candidate: Sequence[MeasurementPoint],
    asset_code: Optional[str],
    site_id: Optional[str],
) -> BatchValidationResult:
    """Valida un batch contra el último punto aceptado del activo.

    Args:
        existing_last: Último punto aceptado (None si el activo no tiene historia)
        candidate: Puntos candidatos, en el orden en que se aplicarán
        asset_code: Código del activo (obligatorio)
        site_id: Planta de origen (obligatorio)

    Returns:
        BatchValidationResult con el batch validado y el par prev/last
    """
    try:
        batch = _validate(existing_last, candidate, asset_code, site_id)
    except ValidationError as e:
        logger.info(
            "[VALIDATOR] rejected asset=%s site=%s code=%s index=%s reason=%s",
            asset_code, site_id, e.code, e.index, e,
        )
        return BatchValidationResult(is_valid=False, error=e)
    return BatchValidationResult(is_valid=True, batch=batch)


def _validate(
    existing_last: Optional[LastPoint],
    candidate: Sequence[MeasurementPoint],
    asset_code: Optional[str],
    site_id: Optional[str],
) -> ValidatedBatch:
    code = normalize_optional(asset_code)
    if code is None:
        raise MissingAssetCodeError()

    site = normalize_optional(site_id)
    if site is None:
        raise ValidationError(ValidationError.MISSING_SITE_ID, "site_id is required")

    if not candidate:
        raise ValidationError(
            ValidationError.EMPTY_BATCH, "at least one measurement point is required"
        )

    previous = existing_last
    prev_pair: Optional[LastPoint] = existing_last
    for index, point in enumerate(candidate):
        if previous is not None:
            if point.taken_at <= previous.date:
                raise NonMonotonicTimeError(
                    f"point {index} taken_at={point.taken_at.isoformat()} is not after "
                    f"{previous.date.isoformat()}",
                    index,
                )
            if point.thickness > previous.thickness:
                raise ThicknessIncreasedError(
                    f"point {index} thickness={point.thickness} exceeds previous "
                    f"{previous.thickness}",
                    index,
                )
        prev_pair = previous
        previous = LastPoint(thickness=point.thickness, date=point.taken_at)

    return ValidatedBatch(
        site_id=site.upper(),
        asset_code=code,
        points=tuple(candidate),
        prev=prev_pair,
        last=previous,
    )
