from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Tuple

from dotenv import load_dotenv


CENTRAL_SITE = "CENTRAL"

# Prefijos de variables de entorno por sitio (orden de búsqueda).
SITE_URL_PREFIXES = ("CORROSION_DB_URL", "OIL_ERP_PG")


def _default_env_file() -> str:
    repo_root = Path(__file__).resolve().parents[1]
    return str(repo_root / ".env")


def _as_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def normalize_site(site_id: Optional[str]) -> Optional[str]:
    """Trim and uppercase a plant/site code. Empty values become None."""
    if site_id is None:
        return None
    value = site_id.strip()
    return value.upper() if value else None


@dataclass(frozen=True)
class Settings:
    central_url: Optional[str]
    sites: Tuple[str, ...] = ()
    site_urls: Dict[str, str] = field(default_factory=dict)

    db_timeout_sec: int = 30
    default_policy: str = "default"

    drain_batch: int = 100
    drain_max_attempts: int = 10

    redis_url: str = "redis://localhost:6379/0"
    notify_via_redis: bool = False

    def site_env_url(self, site_id: str) -> Optional[str]:
        """Resolve a site URL using the naming convention ``<PREFIX>_<SITE>``."""
        site = normalize_site(site_id)
        if site is None:
            return None
        if site == CENTRAL_SITE:
            return self.central_url
        for prefix in SITE_URL_PREFIXES:
            value = os.getenv(f"{prefix}_{site}")
            if value and value.strip():
                return value.strip()
        return None


def get_settings(**overrides) -> Settings:
    # Load env file (if present) but still allow overriding via real environment variables.
    env_file = os.getenv("CORROSION_ENV_FILE", _default_env_file())
    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)

    central_url = os.getenv("CORROSION_DB_URL") or os.getenv("OIL_ERP_PG")

    raw_sites = os.getenv("CORROSION_SITES", "")
    sites = tuple(
        s for s in (normalize_site(part) for part in raw_sites.split(",")) if s
    )

    values = dict(
        central_url=central_url.strip() if central_url else None,
        sites=sites,
        db_timeout_sec=int(os.getenv("CORROSION_DB_TIMEOUT_SEC", "30")),
        default_policy=os.getenv("CORROSION_DEFAULT_POLICY", "default").strip() or "default",
        drain_batch=int(os.getenv("CORROSION_DRAIN_BATCH", "100")),
        drain_max_attempts=int(os.getenv("CORROSION_DRAIN_MAX_ATTEMPTS", "10")),
        redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        notify_via_redis=_as_bool(os.getenv("CORROSION_NOTIFY_REDIS"), default=False),
    )
    values.update(overrides)
    return Settings(**values)
