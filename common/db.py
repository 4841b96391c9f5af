from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine


logger = logging.getLogger(__name__)

MEMORY_SCHEME = "memory"


def is_memory_url(url: Optional[str]) -> bool:
    return bool(url) and url.split(":", 1)[0].lower() == MEMORY_SCHEME


def mask_url(url: str) -> str:
    """Host/database part of a URL, safe for logs."""
    if is_memory_url(url):
        return url
    try:
        return make_url(url).render_as_string(hide_password=True).split("@")[-1]
    except Exception:
        return "<unparseable url>"


def build_async_url(url: str) -> str:
    # Plain postgresql:// URLs (the form most .env files carry) get the async driver.
    parsed = make_url(url)
    if parsed.drivername in ("postgresql", "postgres"):
        parsed = parsed.set(drivername="postgresql+asyncpg")
    return parsed.render_as_string(hide_password=False)


def create_engine_for(url: str, timeout_sec: int = 30) -> AsyncEngine:
    async_url = build_async_url(url)

    logger.info("[DB] Crear engine async target=%s timeout=%ss", mask_url(url), timeout_sec)

    connect_args = {}
    if async_url.startswith("postgresql+asyncpg"):
        connect_args = {"command_timeout": timeout_sec}

    return create_async_engine(
        async_url,
        pool_pre_ping=True,
        pool_recycle=300,
        connect_args=connect_args,
    )
