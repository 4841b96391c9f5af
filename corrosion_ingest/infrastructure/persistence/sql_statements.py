"""SQL (dialecto PostgreSQL) de cada operación lógica.

Todas las consultas están centralizadas aquí. Sin lógica de negocio.
"""

from __future__ import annotations

from .operations import OperationNames as Op

_EVENT_COLUMNS = (
    "id, event_type, source_site, payload::text AS payload, idempotency_key, "
    "created_at, processed_at, error, attempts"
)

STATEMENTS = {
    # ---- Site ---------------------------------------------------------------
    # Transaction-scoped; serialises submissions for the same asset.
    Op.SITE_ASSET_LOCK: """
        SELECT pg_advisory_xact_lock(hashtext(:asset_code)) AS locked
    """,
    Op.SITE_LATEST_MEASUREMENT: """
        SELECT thickness, taken_at
        FROM measurements
        WHERE asset_code = :asset_code
        ORDER BY taken_at DESC
        LIMIT 1
    """,
    Op.SITE_MEASUREMENT_INSERT: """
        INSERT INTO measurements (asset_code, site_id, label, taken_at, thickness, note)
        VALUES (:asset_code, :site_id, :label, :taken_at, :thickness, :note)
    """,
    Op.SITE_OUTBOX_INSERT: """
        INSERT INTO events_outbox (event_type, source_site, payload, idempotency_key, created_at)
        VALUES (:event_type, :source_site, CAST(:payload AS jsonb), :idempotency_key, :created_at)
        ON CONFLICT (idempotency_key) DO NOTHING
    """,
    Op.SITE_OUTBOX_PENDING: """
        SELECT id, event_type, source_site, payload::text AS payload, idempotency_key, created_at
        FROM events_outbox
        WHERE published_at IS NULL
        ORDER BY id
        LIMIT :limit
    """,
    Op.SITE_OUTBOX_MARK_PUBLISHED: """
        UPDATE events_outbox
        SET published_at = :published_at, central_event_id = :central_event_id
        WHERE id = :id AND published_at IS NULL
    """,

    # ---- Central queue ------------------------------------------------------
    Op.EVENTS_ENQUEUE: """
        INSERT INTO events_inbox (event_type, source_site, payload, idempotency_key, created_at)
        VALUES (:event_type, :source_site, CAST(:payload AS jsonb), :idempotency_key, :created_at)
        ON CONFLICT (idempotency_key) DO NOTHING
        RETURNING id
    """,
    Op.EVENTS_FIND_BY_KEY: """
        SELECT id FROM events_inbox WHERE idempotency_key = :idempotency_key
    """,
    Op.EVENTS_PEEK: f"""
        SELECT {_EVENT_COLUMNS}
        FROM events_inbox
        WHERE processed_at IS NULL
        ORDER BY id
        LIMIT :limit
    """,
    # Select-and-mark in one statement; SKIP LOCKED keeps concurrent drains disjoint.
    Op.EVENTS_CLAIM: f"""
        UPDATE events_inbox
        SET attempts = attempts + 1
        WHERE id IN (
            SELECT id FROM events_inbox
            WHERE processed_at IS NULL AND error IS NULL
            ORDER BY id
            LIMIT :limit
            FOR UPDATE SKIP LOCKED
        )
        RETURNING {_EVENT_COLUMNS}
    """,
    Op.EVENTS_MARK_PROCESSED: """
        UPDATE events_inbox
        SET processed_at = :processed_at, error = NULL
        WHERE id = :id AND processed_at IS NULL
    """,
    Op.EVENTS_MARK_FAILED: """
        UPDATE events_inbox
        SET error = :error
        WHERE id = :id AND processed_at IS NULL
    """,
    Op.EVENTS_REQUEUE: """
        UPDATE events_inbox
        SET processed_at = NULL, error = NULL
        WHERE id = ANY(:ids) AND (processed_at IS NOT NULL OR error IS NOT NULL)
    """,
    Op.EVENTS_CLEANUP: """
        DELETE FROM events_inbox
        WHERE processed_at IS NOT NULL AND created_at < :cutoff
    """,
    Op.EVENTS_COUNTS: """
        SELECT
            COUNT(*) FILTER (WHERE processed_at IS NULL AND error IS NULL) AS pending,
            COUNT(*) FILTER (WHERE processed_at IS NULL AND error IS NOT NULL) AS failed,
            COUNT(*) FILTER (WHERE processed_at IS NOT NULL) AS processed
        FROM events_inbox
    """,

    # ---- Central ledger / analytics ----------------------------------------
    Op.ASSET_UPSERT: """
        INSERT INTO assets (asset_code, name, asset_type, plant_code)
        VALUES (:asset_code, :name, :asset_type, :plant_code)
        ON CONFLICT (asset_code) DO UPDATE SET
            name = COALESCE(EXCLUDED.name, assets.name),
            asset_type = COALESCE(EXCLUDED.asset_type, assets.asset_type),
            plant_code = COALESCE(EXCLUDED.plant_code, assets.plant_code)
    """,
    Op.ASSET_ENSURE: """
        INSERT INTO assets (asset_code, plant_code)
        VALUES (:asset_code, :plant_code)
        ON CONFLICT (asset_code) DO NOTHING
    """,
    Op.ASSET_GET: """
        SELECT asset_code, name, asset_type, plant_code
        FROM assets
        WHERE asset_code = :asset_code
    """,
    # Row lock serialises concurrent drains touching the same asset.
    Op.LEDGER_GET: """
        SELECT asset_code, site_id, prev_thk, prev_date, last_thk, last_date, updated_at
        FROM asset_ledger
        WHERE asset_code = :asset_code
        FOR UPDATE
    """,
    Op.LEDGER_LIST: """
        SELECT asset_code, site_id, prev_thk, prev_date, last_thk, last_date, updated_at
        FROM asset_ledger
        ORDER BY asset_code
    """,
    # Last-write-wins by last_date: a stale event updates nothing.
    Op.LEDGER_UPSERT: """
        INSERT INTO asset_ledger (asset_code, site_id, prev_thk, prev_date, last_thk, last_date, updated_at)
        VALUES (:asset_code, :site_id, :prev_thk, :prev_date, :last_thk, :last_date, :updated_at)
        ON CONFLICT (asset_code) DO UPDATE SET
            site_id = EXCLUDED.site_id,
            prev_thk = EXCLUDED.prev_thk,
            prev_date = EXCLUDED.prev_date,
            last_thk = EXCLUDED.last_thk,
            last_date = EXCLUDED.last_date,
            updated_at = EXCLUDED.updated_at
        WHERE asset_ledger.last_date < EXCLUDED.last_date
    """,
    Op.ANALYTICS_GET: """
        SELECT asset_code, cr, risk_level, policy_name, updated_at
        FROM analytics_cr
        WHERE asset_code = :asset_code
    """,
    Op.ANALYTICS_UPSERT: """
        INSERT INTO analytics_cr (asset_code, cr, risk_level, policy_name, updated_at)
        VALUES (:asset_code, :cr, :risk_level, :policy_name, :updated_at)
        ON CONFLICT (asset_code) DO UPDATE SET
            cr = EXCLUDED.cr,
            risk_level = EXCLUDED.risk_level,
            policy_name = EXCLUDED.policy_name,
            updated_at = EXCLUDED.updated_at
    """,
    Op.POLICY_GET: """
        SELECT name, threshold_low, threshold_med, threshold_high
        FROM risk_policies
        WHERE name = :name
    """,
    Op.POLICY_UPSERT: """
        INSERT INTO risk_policies (name, threshold_low, threshold_med, threshold_high, updated_at)
        VALUES (:name, :threshold_low, :threshold_med, :threshold_high, now())
        ON CONFLICT (name) DO UPDATE SET
            threshold_low = EXCLUDED.threshold_low,
            threshold_med = EXCLUDED.threshold_med,
            threshold_high = EXCLUDED.threshold_high,
            updated_at = EXCLUDED.updated_at
    """,
    Op.ANALYTICS_TOP_ASSETS_BY_CR: """
        SELECT asset_code, cr, risk_level, updated_at
        FROM analytics_cr
        ORDER BY cr DESC NULLS LAST, asset_code
        LIMIT :limit
    """,
    Op.ANALYTICS_PLANT_RATES: """
        SELECT a.asset_code, a.cr
        FROM analytics_cr a
        JOIN assets s ON s.asset_code = a.asset_code
        WHERE s.plant_code = :plant
          AND a.cr IS NOT NULL
          AND a.updated_at >= :date_from
          AND a.updated_at <= :date_to
    """,
}
