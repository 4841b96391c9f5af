"""Drain runner orchestrator (una iteración o loop de servicio)."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from corrosion_ingest.central.drain import DrainSummary, run_drain_loop
from corrosion_ingest.kernel import CorrosionKernel

from .config import DrainConfig

logger = logging.getLogger(__name__)


async def run_once(kernel: CorrosionKernel, cfg: DrainConfig) -> DrainSummary:
    return await run_drain_loop(
        kernel,
        batch_size=cfg.batch_size,
        max_attempts=cfg.max_attempts,
        flush_sites=cfg.flush_sites,
        max_retries=cfg.max_retries,
    )


async def run_forever(
    kernel: CorrosionKernel, cfg: DrainConfig, stop: Optional[asyncio.Event] = None,
) -> None:
    """Loop de servicio: drena, espera ``sleep_seconds`` y repite hasta ``stop``."""
    stop = stop or asyncio.Event()
    logger.info(
        "[DRAIN] runner started batch=%d max_attempts=%d sleep=%.1fs",
        cfg.batch_size, cfg.max_attempts, cfg.sleep_seconds,
    )
    while not stop.is_set():
        try:
            await run_once(kernel, cfg)
        except Exception as e:
            logger.error("[DRAIN] Error en iteración: %s", e)
            logger.info("[DRAIN] Continuando con siguiente iteración...")
        try:
            await asyncio.wait_for(stop.wait(), timeout=cfg.sleep_seconds)
        except asyncio.TimeoutError:
            pass
