"""Validación de batches en el sitio de origen."""

from .batch_validator import BatchValidationResult, validate_batch

__all__ = ["BatchValidationResult", "validate_batch"]
