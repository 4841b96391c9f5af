"""App factory de la API HTTP del pipeline de corrosión.

Uso:
    uvicorn corrosion_ingest.main:app --host 0.0.0.0 --port 8080
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from common.config import Settings, get_settings

from . import __version__
from .core.errors import CorrosionError
from .endpoints import (
    analytics_router,
    events_router,
    health_router,
    measurements_router,
    policies_router,
)
from .infrastructure.persistence import StorageRouter
from .kernel import CorrosionKernel

logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    logging.basicConfig(
        level=os.getenv("CORROSION_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def create_app(
    settings: Optional[Settings] = None,
    kernel: Optional[CorrosionKernel] = None,
    auto_migrate: Optional[bool] = None,
) -> FastAPI:
    """Construye la app. El kernel se crea en el lifespan si no se inyecta.

    Args:
        settings: Settings explícitos (default: ``get_settings()`` al arrancar)
        kernel: Kernel ya construido (tests)
        auto_migrate: Aplicar migraciones SQL al abrir endpoints
            (default: env ``CORROSION_AUTO_MIGRATE``)
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _configure_logging()
        active = kernel
        if active is None:
            cfg = settings or get_settings()
            migrate = auto_migrate
            if migrate is None:
                migrate = os.getenv("CORROSION_AUTO_MIGRATE", "").strip().lower() in ("1", "true", "yes", "on")
            active = CorrosionKernel(StorageRouter(cfg, auto_migrate=migrate), cfg)

        try:
            await active.open()
        except CorrosionError as e:
            # /ready reports 503 until central is reachable
            logger.warning("[API] central store not available at startup: %s", e)

        app.state.kernel = active
        logger.info("[API] Corrosion ingest API %s started", __version__)
        try:
            yield
        finally:
            await active.close()
            app.state.kernel = None
            logger.info("[API] stopped")

    app = FastAPI(title="Corrosion Ingest Service", version=__version__, lifespan=lifespan)
    app.include_router(health_router)
    app.include_router(measurements_router)
    app.include_router(analytics_router)
    app.include_router(policies_router)
    app.include_router(events_router)
    return app


app = create_app()
