"""Multi-site storage router.

Resuelve un identificador lógico de sitio (``CENTRAL`` o una planta) al
endpoint físico correcto y lo entrega conectado y listo para usar.

Orden de resolución:
1. Configuración explícita por sitio (``Settings.site_urls``)
2. Convención de nombres de entorno (``CORROSION_DB_URL_<SITE>``, ``OIL_ERP_PG_<SITE>``)
3. UnknownSiteError

El router reutiliza conexiones (un endpoint por sitio) y es dueño de su
ciclo de vida: los callers nunca abren ni cierran endpoints.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, List, Optional

from common.config import CENTRAL_SITE, Settings, normalize_site
from common.db import create_engine_for, is_memory_url, mask_url

from ...core.errors import UnknownSiteError
from ...core.notifications.channel import NotificationChannel
from .memory_storage import MemoryStorage
from .schema import ROLE_CENTRAL, ROLE_SITE, ensure_schema
from .sql_storage import SqlStorage
from .storage_port import StoragePort

logger = logging.getLogger(__name__)

EndpointFactory = Callable[[str, str], StoragePort]


class StorageRouter:
    def __init__(
        self,
        settings: Settings,
        auto_migrate: bool = False,
        factory: Optional[EndpointFactory] = None,
        notifications: Optional[NotificationChannel] = None,
    ):
        """Inicializa el router.

        Args:
            settings: Settings con URLs central/plantas
            auto_migrate: Aplicar migraciones SQL al abrir cada endpoint SQL
            factory: Constructor alternativo ``(site_id, url) -> StoragePort``
            notifications: Canal compartido por todos los endpoints (uno nuevo si es None)
        """
        self._settings = settings
        self._auto_migrate = auto_migrate
        self._factory = factory
        self.notifications = notifications or NotificationChannel()
        self._endpoints: Dict[str, StoragePort] = {}
        self._lock = asyncio.Lock()

    @property
    def settings(self) -> Settings:
        return self._settings

    def known_sites(self) -> List[str]:
        """Plantas configuradas (sin incluir central)."""
        sites = {normalize_site(s) for s in self._settings.sites}
        sites.update(normalize_site(s) for s in self._settings.site_urls)
        sites.discard(CENTRAL_SITE)
        sites.discard(None)
        return sorted(sites)

    def open_sites(self) -> List[str]:
        """Plantas con endpoint ya abierto (sin incluir central)."""
        return sorted(s for s in self._endpoints if s != CENTRAL_SITE)

    def resolve_url(self, site_id: Optional[str]) -> str:
        site = normalize_site(site_id)
        if site is None:
            raise UnknownSiteError(site_id)

        explicit = {normalize_site(k): v for k, v in self._settings.site_urls.items()}
        url = explicit.get(site) or self._settings.site_env_url(site)
        if not url:
            logger.warning("[ROUTER] No endpoint configured for site=%s", site)
            raise UnknownSiteError(site)
        return url

    async def resolve(self, site_id: Optional[str]) -> StoragePort:
        """Endpoint conectado para el sitio.

        Raises:
            UnknownSiteError: si el sitio no está configurado ni por convención
        """
        site = normalize_site(site_id)
        endpoint = self._endpoints.get(site) if site else None
        if endpoint is not None:
            return endpoint

        url = self.resolve_url(site_id)
        async with self._lock:
            endpoint = self._endpoints.get(site)
            if endpoint is None:
                endpoint = await self._open(site, url)
                self._endpoints[site] = endpoint
        return endpoint

    async def central(self) -> StoragePort:
        return await self.resolve(CENTRAL_SITE)

    async def _open(self, site: str, url: str) -> StoragePort:
        if self._factory is not None:
            endpoint = self._factory(site, url)
        elif is_memory_url(url):
            endpoint = MemoryStorage(site_id=site, notifications=self.notifications)
        else:
            engine = create_engine_for(url, timeout_sec=self._settings.db_timeout_sec)
            if self._auto_migrate:
                await ensure_schema(engine, ROLE_CENTRAL if site == CENTRAL_SITE else ROLE_SITE)
            endpoint = SqlStorage(engine, site_id=site, notifications=self.notifications)

        logger.info(
            "[ROUTER] Opened endpoint site=%s backend=%s target=%s",
            site, type(endpoint).__name__, mask_url(url),
        )
        return endpoint

    async def close(self) -> None:
        async with self._lock:
            endpoints = list(self._endpoints.values())
            self._endpoints.clear()
        for endpoint in endpoints:
            try:
                await endpoint.close()
            except Exception as e:
                logger.warning("[ROUTER] Error closing site=%s: %s", endpoint.site_id, e)
        self.notifications.clear()

    @property
    def stats(self) -> dict:
        return {site: ep.stats for site, ep in self._endpoints.items()}
