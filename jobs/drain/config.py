"""Drain runner configuration."""

from __future__ import annotations

from dataclasses import dataclass

from common.config import Settings


@dataclass(frozen=True)
class DrainConfig:
    """Configuración del loop de drain."""
    batch_size: int = 100
    max_attempts: int = 10
    sleep_seconds: float = 30.0
    flush_sites: bool = True
    max_retries: int = 3

    @classmethod
    def from_settings(cls, settings: Settings, **overrides) -> "DrainConfig":
        values = dict(
            batch_size=settings.drain_batch,
            max_attempts=settings.drain_max_attempts,
        )
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
