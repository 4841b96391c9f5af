"""Nombres lógicos de operaciones.

Espacio plano de identificadores: los callers nunca embeben SQL, piden una
operación por nombre y cada backend (SQL, memoria) la implementa.
"""

from __future__ import annotations


class OperationNames:
    # ---- Plant / site store -------------------------------------------------
    SITE_ASSET_LOCK = "SiteAssetLock"
    SITE_LATEST_MEASUREMENT = "SiteLatestMeasurement"
    SITE_MEASUREMENT_INSERT = "SiteMeasurementInsert"
    SITE_OUTBOX_INSERT = "SiteOutboxInsert"
    SITE_OUTBOX_PENDING = "SiteOutboxPending"
    SITE_OUTBOX_MARK_PUBLISHED = "SiteOutboxMarkPublished"

    # ---- Central event queue ------------------------------------------------
    EVENTS_ENQUEUE = "EventsEnqueue"
    EVENTS_FIND_BY_KEY = "EventsFindByKey"
    EVENTS_PEEK = "EventsPeek"
    EVENTS_CLAIM = "EventsClaim"
    EVENTS_MARK_PROCESSED = "EventsMarkProcessed"
    EVENTS_MARK_FAILED = "EventsMarkFailed"
    EVENTS_REQUEUE = "EventsRequeue"
    EVENTS_CLEANUP = "EventsCleanup"
    EVENTS_COUNTS = "EventsCounts"

    # ---- Central ledger / analytics -----------------------------------------
    ASSET_UPSERT = "AssetUpsert"
    ASSET_ENSURE = "AssetEnsure"
    ASSET_GET = "AssetGet"
    LEDGER_GET = "LedgerGet"
    LEDGER_LIST = "LedgerList"
    LEDGER_UPSERT = "LedgerUpsert"
    ANALYTICS_GET = "AnalyticsGet"
    ANALYTICS_UPSERT = "AnalyticsUpsert"
    POLICY_GET = "PolicyGet"
    POLICY_UPSERT = "PolicyUpsert"
    ANALYTICS_TOP_ASSETS_BY_CR = "AnalyticsTopAssetsByCr"
    ANALYTICS_PLANT_RATES = "AnalyticsPlantRates"

    # ---- Kernel-level operations (composed in Python, see CorrosionKernel) --
    MEASUREMENTS_INSERT_BATCH = "MeasurementsInsertBatch"
    EVENTS_INGEST = "EventsIngest"
    CALC_CR = "CalcCr"
    EVAL_RISK = "EvalRisk"
    ANALYTICS_ASSET_SUMMARY = "AnalyticsAssetSummary"
    ANALYTICS_PLANT_CR_STATS = "AnalyticsPlantCrStats"


# Operaciones que devuelven filas; el resto devuelve filas afectadas.
QUERY_OPERATIONS = frozenset({
    OperationNames.SITE_ASSET_LOCK,
    OperationNames.SITE_LATEST_MEASUREMENT,
    OperationNames.SITE_OUTBOX_PENDING,
    OperationNames.EVENTS_ENQUEUE,
    OperationNames.EVENTS_FIND_BY_KEY,
    OperationNames.EVENTS_PEEK,
    OperationNames.EVENTS_CLAIM,
    OperationNames.EVENTS_COUNTS,
    OperationNames.ASSET_GET,
    OperationNames.LEDGER_GET,
    OperationNames.LEDGER_LIST,
    OperationNames.ANALYTICS_GET,
    OperationNames.POLICY_GET,
    OperationNames.ANALYTICS_TOP_ASSETS_BY_CR,
    OperationNames.ANALYTICS_PLANT_RATES,
})

COMMAND_OPERATIONS = frozenset({
    OperationNames.SITE_MEASUREMENT_INSERT,
    OperationNames.SITE_OUTBOX_INSERT,
    OperationNames.SITE_OUTBOX_MARK_PUBLISHED,
    OperationNames.EVENTS_MARK_PROCESSED,
    OperationNames.EVENTS_MARK_FAILED,
    OperationNames.EVENTS_REQUEUE,
    OperationNames.EVENTS_CLEANUP,
    OperationNames.ASSET_UPSERT,
    OperationNames.ASSET_ENSURE,
    OperationNames.LEDGER_UPSERT,
    OperationNames.ANALYTICS_UPSERT,
    OperationNames.POLICY_UPSERT,
})

STORAGE_OPERATIONS = QUERY_OPERATIONS | COMMAND_OPERATIONS
