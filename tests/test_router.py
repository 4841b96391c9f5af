"""
Tests del router multi-sitio y de la configuración.

Ejecutar con: pytest tests/test_router.py -v
"""

import asyncio
from unittest.mock import MagicMock

import pytest

from common.config import Settings, get_settings, normalize_site
from common.db import build_async_url, is_memory_url, mask_url
from corrosion_ingest.core.errors import UnknownSiteError
from corrosion_ingest.infrastructure.persistence import MemoryStorage, StorageRouter


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in ("CORROSION_DB_URL", "OIL_ERP_PG", "CORROSION_SITES", "CORROSION_DEFAULT_POLICY"):
        monkeypatch.delenv(name, raising=False)
    for site in ("ANPZ", "KRNPZ", "YANOS"):
        monkeypatch.delenv(f"CORROSION_DB_URL_{site}", raising=False)
        monkeypatch.delenv(f"OIL_ERP_PG_{site}", raising=False)
    monkeypatch.setenv("CORROSION_ENV_FILE", str(tmp_path / "missing.env"))


# =============================================================================
# TEST 1: ORDEN DE RESOLUCIÓN
# =============================================================================

class TestResolution:
    """Config explícita > convención de entorno > UnknownSiteError."""

    def test_explicit_beats_environment(self, monkeypatch):
        monkeypatch.setenv("CORROSION_DB_URL_ANPZ", "memory://from-env")
        router = StorageRouter(Settings(central_url="memory://c", site_urls={"anpz": "memory://explicit"}))

        assert router.resolve_url(" Anpz ") == "memory://explicit"

    def test_environment_convention_order(self, monkeypatch):
        monkeypatch.setenv("OIL_ERP_PG_KRNPZ", "memory://legacy")
        router = StorageRouter(Settings(central_url="memory://c"))
        assert router.resolve_url("krnpz") == "memory://legacy"

        monkeypatch.setenv("CORROSION_DB_URL_KRNPZ", "memory://primary")
        assert router.resolve_url("KRNPZ") == "memory://primary"

    def test_central_uses_central_url(self):
        router = StorageRouter(Settings(central_url="memory://central"))
        assert router.resolve_url("central") == "memory://central"

    @pytest.mark.parametrize("site", [None, "", "  ", "YANOS"])
    def test_unknown_site(self, site):
        router = StorageRouter(Settings(central_url="memory://c"))
        with pytest.raises(UnknownSiteError):
            router.resolve_url(site)

    @pytest.mark.asyncio
    async def test_missing_central(self):
        router = StorageRouter(Settings(central_url=None))
        with pytest.raises(UnknownSiteError):
            await router.central()

    def test_known_sites(self):
        settings = Settings(central_url="memory://c", sites=("anpz", "CENTRAL"), site_urls={"krnpz": "memory://k"})
        assert StorageRouter(settings).known_sites() == ["ANPZ", "KRNPZ"]


# =============================================================================
# TEST 2: REUTILIZACIÓN Y CICLO DE VIDA
# =============================================================================

class TestEndpointCache:
    """Un endpoint por sitio, cerrado por el router."""

    @pytest.mark.asyncio
    async def test_resolve_is_cached(self, router):
        first = await router.resolve("anpz")
        second = await router.resolve("ANPZ")

        assert first is second
        assert isinstance(first, MemoryStorage)
        assert first.site_id == "ANPZ"

    @pytest.mark.asyncio
    async def test_concurrent_resolve_opens_once(self, settings):
        factory = MagicMock(side_effect=lambda site, url: MemoryStorage(site_id=site))
        router = StorageRouter(settings, factory=factory)

        endpoints = await asyncio.gather(*[router.resolve("ANPZ") for _ in range(5)])

        assert len({id(e) for e in endpoints}) == 1
        factory.assert_called_once_with("ANPZ", "memory://anpz")

    @pytest.mark.asyncio
    async def test_endpoints_share_notification_channel(self, router):
        central = await router.central()
        site = await router.resolve("ANPZ")
        assert central.notifications is site.notifications is router.notifications

    @pytest.mark.asyncio
    async def test_close_releases_endpoints(self, router):
        first = await router.resolve("ANPZ")
        router.notifications.subscribe("x", lambda n: None)
        assert router.open_sites() == ["ANPZ"]

        await router.close()

        assert router.open_sites() == []
        assert router.notifications.subscriber_count() == 0
        assert await router.resolve("ANPZ") is not first


# =============================================================================
# TEST 3: SETTINGS Y URLS
# =============================================================================

class TestSettings:
    """Carga desde entorno y helpers de URL."""

    def test_get_settings_from_environment(self, monkeypatch):
        monkeypatch.setenv("CORROSION_DB_URL", " memory://central ")
        monkeypatch.setenv("CORROSION_SITES", "anpz, krnpz,,")
        monkeypatch.setenv("CORROSION_DEFAULT_POLICY", "strict")

        settings = get_settings(drain_batch=5)

        assert settings.central_url == "memory://central"
        assert settings.sites == ("ANPZ", "KRNPZ")
        assert settings.default_policy == "strict"
        assert settings.drain_batch == 5

    def test_legacy_central_variable(self, monkeypatch):
        monkeypatch.setenv("OIL_ERP_PG", "memory://legacy")
        assert get_settings().central_url == "memory://legacy"

    def test_normalize_site(self):
        assert normalize_site(" anpz ") == "ANPZ"
        assert normalize_site("   ") is None
        assert normalize_site(None) is None

    def test_url_helpers(self):
        assert is_memory_url("memory://x")
        assert not is_memory_url("postgresql://u:p@h/db")
        assert build_async_url("postgresql://u:p@h:5432/db") == "postgresql+asyncpg://u:p@h:5432/db"
        assert "secret" not in mask_url("postgresql://u:secret@h:5432/db")
