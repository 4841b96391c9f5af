"""Retry helper para errores transitorios del store (deadlock, conexión)."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

from ..core.errors import StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay_ms: int = 200,
    max_delay_ms: int = 5000,
) -> T:
    """Ejecuta ``fn`` con retry + exponential backoff para StorageError transitorios."""
    for attempt in range(1, max_retries + 1):
        try:
            return await fn()
        except StorageError as e:
            if e.transient and attempt < max_retries:
                delay = min(base_delay_ms * (2 ** (attempt - 1)), max_delay_ms)
                jitter = random.uniform(0, delay * 0.1)
                total_delay = (delay + jitter) / 1000.0
                logger.warning(
                    "[RETRY] transient store error (intento %d/%d), reintentando en %.2fs: %s",
                    attempt, max_retries, total_delay, e,
                )
                await asyncio.sleep(total_delay)
                continue
            logger.error("[RETRY] store error (intento %d/%d): %s", attempt, max_retries, e)
            raise
    raise StorageError("max retries exceeded")
