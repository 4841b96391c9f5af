"""Fachada del core: conecta router, sitios, cola central y analítica.

Es el único objeto que los entrypoints (API, CLI, drain runner) necesitan.
También expone ``call(operation, **params)`` sobre el espacio plano de
nombres de operación, para callers que despachan por nombre.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from common.config import Settings, normalize_site

from .central import (
    AnalyticsService,
    CentralEventQueue,
    DrainResult,
    IngestionProcessor,
    PolicyStore,
)
from .core.domain.analytics import (
    AssetInfo,
    PlantCrStats,
    RiskEvaluation,
    RiskPolicy,
    TopAssetRow,
)
from .core.domain.events import IngestionEvent
from .core.domain.measurement import normalize_optional, parse_points_json
from .core.errors import (
    MissingAssetCodeError,
    StorageError,
    TransportError,
    UnknownSiteError,
    ValidationError,
)
from .core.notifications.channel import (
    BATCH_ACCEPTED,
    EVENTS_ENQUEUED,
    EVENTS_INGESTED,
    NotificationChannel,
)
from .core.redis import RedisConnection, RedisNotificationRelay
from .infrastructure.persistence.operations import OperationNames as Op
from .infrastructure.persistence.router import StorageRouter
from .infrastructure.persistence.storage_port import StoragePort
from .sites import FlushResult, SiteEventStore, TransportBridge

logger = logging.getLogger(__name__)


class CorrosionKernel:
    def __init__(self, router: StorageRouter, settings: Optional[Settings] = None):
        self._router = router
        self._settings = settings or router.settings
        self._central: Optional[StoragePort] = None
        self.queue: Optional[CentralEventQueue] = None
        self.policies: Optional[PolicyStore] = None
        self.processor: Optional[IngestionProcessor] = None
        self.analytics: Optional[AnalyticsService] = None
        self.bridge: Optional[TransportBridge] = None
        self.relay: Optional[RedisNotificationRelay] = None
        self._redis: Optional[RedisConnection] = None

        # Stats
        self._batches_accepted = 0
        self._batches_rejected = 0

    @property
    def router(self) -> StorageRouter:
        return self._router

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def notifications(self) -> NotificationChannel:
        return self._router.notifications

    async def open(self) -> "CorrosionKernel":
        """Resuelve central y arma los servicios. Idempotente."""
        if self._central is not None:
            return self
        central = await self._router.central()
        self.queue = CentralEventQueue(central)
        self.policies = PolicyStore(central, default_name=self._settings.default_policy)
        self.processor = IngestionProcessor(self.policies, self._settings.default_policy)
        self.analytics = AnalyticsService(central, self.policies)
        self.bridge = TransportBridge(self.queue, batch_size=self._settings.drain_batch)
        self._central = central
        if self._settings.notify_via_redis:
            await self._start_relay()
        logger.info(
            "[KERNEL] ready sites=%s policy=%s", self._router.known_sites(), self._settings.default_policy,
        )
        return self

    async def _start_relay(self) -> None:
        self._redis = RedisConnection(self._settings.redis_url)
        relay = RedisNotificationRelay(
            self.notifications,
            self._redis,
            [EVENTS_INGESTED, EVENTS_ENQUEUED, BATCH_ACCEPTED],
        )
        if await relay.start():
            self.relay = relay

    async def close(self) -> None:
        try:
            if self.relay is not None:
                await self.relay.stop()
                self.relay = None
            if self._redis is not None:
                await self._redis.disconnect()
                self._redis = None
        finally:
            await self._router.close()
            self._central = None

    async def ping(self) -> bool:
        await self.open()
        return await self._central.ping()

    # ------------------------------------------------------------------
    # Site submission
    # ------------------------------------------------------------------

    async def insert_measurement_batch(
        self, asset_code: Optional[str], points_json: Any, site_id: Optional[str],
    ) -> int:
        """Entry point de planta: valida, persiste y publica un batch.

        Args:
            asset_code: Código del activo
            points_json: Array JSON de puntos ``{label, ts, thickness, note}``
            site_id: Planta de origen

        Returns:
            Cantidad de puntos insertados

        Raises:
            ValidationError: asset vacío, sitio vacío, batch vacío o no monótono
            UnknownSiteError: la planta no está configurada
        """
        await self.open()
        code = normalize_optional(asset_code)
        site = normalize_site(site_id)
        try:
            if code is None:
                raise MissingAssetCodeError()
            if site is None:
                raise ValidationError(ValidationError.MISSING_SITE_ID, "site_id is required")
            points = parse_points_json(points_json)
        except ValidationError as e:
            self._batches_rejected += 1
            logger.info("[SITE] rejected asset=%s site=%s code=%s: %s", asset_code, site_id, e.code, e)
            raise

        storage = await self._router.resolve(site)
        try:
            result = await SiteEventStore(storage).submit(code, points, site)
        except ValidationError:
            self._batches_rejected += 1
            raise
        self._batches_accepted += 1

        await self._flush_quietly(storage)
        await self.notifications.publish(BATCH_ACCEPTED, {
            "site": site,
            "asset_code": code,
            "rows": result.rows_written,
            "last_date": result.payload.last_date.isoformat(),
        })
        return result.rows_written

    async def flush_outbox(self, site_id: str) -> FlushResult:
        await self.open()
        storage = await self._router.resolve(site_id)
        return await self.bridge.flush(storage)

    async def flush_all(self) -> List[FlushResult]:
        """Publica el outbox pendiente de todas las plantas conocidas."""
        results = []
        sites = set(self._router.known_sites()) | set(self._router.open_sites())
        for site in sorted(sites):
            try:
                results.append(await self.flush_outbox(site))
            except (TransportError, UnknownSiteError) as e:
                logger.warning("[BRIDGE] flush skipped site=%s: %s", site, e)
        return results

    async def _flush_quietly(self, storage: StoragePort) -> None:
        # The outbox keeps the event; the drain runner flushes it later.
        try:
            await self.bridge.flush(storage)
        except (TransportError, StorageError) as e:
            logger.warning("[BRIDGE] deferred publish site=%s: %s", storage.site_id, e)

    # ------------------------------------------------------------------
    # Central queue
    # ------------------------------------------------------------------

    async def enqueue(
        self, event_type: str, source_site: str, payload_json: Any, idempotency_key: Optional[str] = None,
    ) -> int:
        await self.open()
        return await self.queue.enqueue(event_type, source_site, payload_json, idempotency_key)

    async def peek(self, limit: int = 50) -> List[IngestionEvent]:
        await self.open()
        return await self.queue.peek(limit)

    async def ingest(self, limit: Optional[int] = None) -> DrainResult:
        """Un pase de drain sobre la cola central."""
        await self.open()
        return await self.queue.drain(limit or self._settings.drain_batch, self.processor)

    async def requeue(self, ids: List[int]) -> int:
        await self.open()
        return await self.queue.requeue(ids)

    async def cleanup(self, older_than: timedelta) -> int:
        await self.open()
        return await self.queue.cleanup(older_than)

    async def queue_counts(self) -> dict:
        await self.open()
        return await self.queue.counts()

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    async def asset_summary(self, asset_code: str, policy_name: Optional[str] = None) -> Optional[dict]:
        await self.open()
        summary = await self.analytics.asset_summary(asset_code, policy_name)
        return summary.to_dict() if summary else None

    async def eval_risk(
        self, asset_code: Optional[str] = None, policy_name: Optional[str] = None,
    ) -> List[RiskEvaluation]:
        await self.open()
        return await self.analytics.eval_risk(asset_code, policy_name)

    async def top_assets_by_cr(self, limit: int = 10) -> List[TopAssetRow]:
        await self.open()
        return await self.analytics.top_assets_by_cr(limit)

    async def plant_cr_stats(self, plant: str, date_from: datetime, date_to: datetime) -> PlantCrStats:
        await self.open()
        return await self.analytics.plant_cr_stats(plant, date_from, date_to)

    async def upsert_asset(self, asset_code: str, name=None, asset_type=None, plant_code=None) -> AssetInfo:
        await self.open()
        return await self.analytics.upsert_asset(asset_code, name, asset_type, plant_code)

    async def upsert_policy(self, name: str, low: Any, med: Any, high: Any) -> RiskPolicy:
        await self.open()
        return await self.policies.set(name, low, med, high)

    async def get_policy(self, name: Optional[str] = None) -> RiskPolicy:
        await self.open()
        return await self.policies.get(name)

    # ------------------------------------------------------------------
    # Dispatch por nombre de operación
    # ------------------------------------------------------------------

    async def call(self, operation: str, **params) -> Any:
        """Ejecuta una operación lógica por nombre.

        Raises:
            StorageError: operación desconocida
        """
        if operation == Op.CALC_CR:
            return AnalyticsService.calc_cr(
                params.get("prev_thk"), params.get("prev_date"),
                params.get("last_thk"), params.get("last_date"),
            )

        handlers: Dict[str, Any] = {
            Op.MEASUREMENTS_INSERT_BATCH: lambda: self.insert_measurement_batch(
                params.get("asset_code"), params.get("points_json"), params.get("site_id"),
            ),
            Op.EVENTS_ENQUEUE: lambda: self.enqueue(
                params["event_type"], params["source_site"], params["payload_json"],
                params.get("idempotency_key"),
            ),
            Op.EVENTS_PEEK: lambda: self.peek(params.get("limit", 50)),
            Op.EVENTS_INGEST: lambda: self._ingest_count(params.get("limit")),
            Op.EVENTS_REQUEUE: lambda: self.requeue(params.get("ids", [])),
            Op.EVENTS_CLEANUP: lambda: self.cleanup(params["older_than"]),
            Op.EVAL_RISK: lambda: self.eval_risk(params.get("asset_code"), params.get("policy_name")),
            Op.ASSET_UPSERT: lambda: self.upsert_asset(
                params["asset_code"], params.get("name"), params.get("asset_type"), params.get("plant_code"),
            ),
            Op.POLICY_UPSERT: lambda: self.upsert_policy(
                params["name"], params["threshold_low"], params["threshold_med"], params["threshold_high"],
            ),
            Op.ANALYTICS_ASSET_SUMMARY: lambda: self.asset_summary(
                params["asset_code"], params.get("policy_name"),
            ),
            Op.ANALYTICS_TOP_ASSETS_BY_CR: lambda: self.top_assets_by_cr(params.get("limit", 10)),
            Op.ANALYTICS_PLANT_CR_STATS: lambda: self.plant_cr_stats(
                params["plant"], params["date_from"], params["date_to"],
            ),
        }
        handler = handlers.get(operation)
        if handler is None:
            raise StorageError(f"unknown kernel operation '{operation}'")
        return await handler()

    async def _ingest_count(self, limit: Optional[int]) -> int:
        return (await self.ingest(limit)).processed

    @property
    def stats(self) -> dict:
        return {
            "batches_accepted": self._batches_accepted,
            "batches_rejected": self._batches_rejected,
            "bridge": {
                "published": self.bridge.published if self.bridge else 0,
                "failures": self.bridge.failures if self.bridge else 0,
            },
            "processor": {
                "applied": self.processor.applied if self.processor else 0,
                "stale": self.processor.stale if self.processor else 0,
            },
            "endpoints": self._router.stats,
            "notifications": self.notifications.stats,
        }
