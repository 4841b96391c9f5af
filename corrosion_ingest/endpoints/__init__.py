"""Módulo de endpoints HTTP.

Contiene todos los endpoints de la API organizados por función.
"""

from .analytics import router as analytics_router
from .events import router as events_router
from .health import router as health_router
from .measurements import router as measurements_router
from .policies import router as policies_router

__all__ = [
    "analytics_router",
    "events_router",
    "health_router",
    "measurements_router",
    "policies_router",
]
