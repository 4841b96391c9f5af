"""
Tests end-to-end: planta -> outbox -> cola central -> ledger -> analítica.

Ejecutar con: pytest tests/test_ingestion.py -v

Tests incluidos:
1. Escenario de cuatro activos (OK / LOW / MEDIUM / HIGH)
2. Orden de llegada: eventos viejos no retroceden el ledger
3. Resumen por activo
4. Políticas y evaluación de riesgo
5. Top por tasa y estadísticas por planta
6. Dispatch por nombre de operación
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from corrosion_ingest.core.domain.events import EventType
from corrosion_ingest.core.errors import (
    MissingAssetCodeError,
    PolicyValidationError,
    StorageError,
    UnknownSiteError,
    ValidationError,
)
from corrosion_ingest.infrastructure.persistence import OperationNames as Op


# =============================================================================
# FIXTURES
# =============================================================================

SCENARIO = {
    "A-OK": "9.95",
    "A-LOW": "9.8",
    "A-MED": "9.4",
    "A-HIGH": "9.0",
}


@pytest.fixture
def scenario(kernel, make_points):
    """Cuatro activos en ANPZ, 10.0 -> X en 10 días, ya drenados a central."""

    async def _load():
        for asset, last in SCENARIO.items():
            await kernel.insert_measurement_batch(asset, make_points((0, "10.0"), (10, last)), "ANPZ")
        result = await kernel.ingest()
        assert result.processed == len(SCENARIO)
        return kernel

    return _load


async def enqueue_event(kernel, payload):
    return await kernel.enqueue(
        EventType.MEASUREMENT_BATCH.value, payload.site_id, payload.to_json(), payload.idempotency_key,
    )


# =============================================================================
# TEST 1: ESCENARIO DE CUATRO ACTIVOS
# =============================================================================

class TestFourAssetScenario:
    """Cada activo cae en una banda distinta de la política por defecto."""

    @pytest.mark.asyncio
    async def test_levels_and_rates(self, scenario):
        kernel = await scenario()

        evaluations = {e.asset_code: e for e in await kernel.eval_risk()}

        assert evaluations["A-OK"].corrosion_rate == Decimal("0.005")
        assert evaluations["A-OK"].level.value == "OK"
        assert evaluations["A-LOW"].corrosion_rate == Decimal("0.02")
        assert evaluations["A-LOW"].level.value == "LOW"
        assert evaluations["A-MED"].corrosion_rate == Decimal("0.06")
        assert evaluations["A-MED"].level.value == "MEDIUM"
        assert evaluations["A-HIGH"].corrosion_rate == Decimal("0.1")
        assert evaluations["A-HIGH"].level.value == "HIGH"

    @pytest.mark.asyncio
    async def test_second_batch_moves_the_window(self, kernel, make_points):
        await kernel.insert_measurement_batch("A-1", make_points((0, "10.0"), (10, "9.9")), "ANPZ")
        await kernel.ingest()
        await kernel.insert_measurement_batch("A-1", make_points((20, "9.8")), "ANPZ")
        await kernel.ingest()

        ledger = await kernel.analytics.get_ledger("A-1")

        assert ledger.prev_thickness == Decimal("9.9")
        assert ledger.last_thickness == Decimal("9.8")
        assert (await kernel.eval_risk("A-1"))[0].corrosion_rate == Decimal("0.01")

    @pytest.mark.asyncio
    async def test_rejected_batch_never_reaches_central(self, kernel, make_points):
        await kernel.insert_measurement_batch("A-1", make_points((10, "9.9")), "ANPZ")

        with pytest.raises(ValidationError) as exc:
            await kernel.insert_measurement_batch("A-1", make_points((5, "9.8")), "ANPZ")

        assert exc.value.code == ValidationError.NON_MONOTONIC_TIME
        assert (await kernel.queue_counts())["pending"] == 1
        assert kernel.stats["batches_rejected"] == 1

    @pytest.mark.asyncio
    async def test_missing_asset_checked_before_routing(self, kernel, make_points):
        with pytest.raises(MissingAssetCodeError):
            await kernel.insert_measurement_batch("  ", make_points((0, "10.0")), "NOWHERE")

    @pytest.mark.asyncio
    async def test_unknown_site(self, kernel, make_points):
        with pytest.raises(UnknownSiteError):
            await kernel.insert_measurement_batch("A-1", make_points((0, "10.0")), "NOWHERE")


# =============================================================================
# TEST 2: ORDEN DE LLEGADA
# =============================================================================

class TestOutOfOrderDelivery:
    """El ledger solo avanza por last_date."""

    @pytest.mark.asyncio
    async def test_older_event_after_newer_is_stale(self, kernel, make_payload):
        newer = make_payload("A-1", (20, "9.8"), (10, "9.9"))
        older = make_payload("A-1", (10, "9.9"), (0, "10.0"))

        await enqueue_event(kernel, newer)
        first = await kernel.ingest()
        await enqueue_event(kernel, older)
        second = await kernel.ingest()

        assert first.applied == 1
        assert second.stale == 1 and second.applied == 0
        ledger = await kernel.analytics.get_ledger("A-1")
        assert ledger.last_thickness == Decimal("9.8")
        assert ledger.prev_thickness == Decimal("9.9")
        assert (await kernel.queue_counts())["pending"] == 0

    @pytest.mark.asyncio
    async def test_same_pass_out_of_order(self, kernel, make_payload):
        await enqueue_event(kernel, make_payload("A-1", (20, "9.8"), (10, "9.9")))
        await enqueue_event(kernel, make_payload("A-1", (10, "9.9"), (0, "10.0")))

        result = await kernel.ingest()

        assert result.applied == 1 and result.stale == 1
        assert (await kernel.analytics.get_ledger("A-1")).last_thickness == Decimal("9.8")

    @pytest.mark.asyncio
    async def test_in_order_delivery_applies_both(self, kernel, make_payload):
        await enqueue_event(kernel, make_payload("A-1", (10, "9.9"), (0, "10.0")))
        await enqueue_event(kernel, make_payload("A-1", (20, "9.8"), (10, "9.9")))

        result = await kernel.ingest()

        assert result.applied == 2
        assert kernel.stats["processor"] == {"applied": 2, "stale": 0}


# =============================================================================
# TEST 3: RESUMEN POR ACTIVO
# =============================================================================

class TestAssetSummary:
    """Bloques asset / analytics / risk siempre presentes."""

    @pytest.mark.asyncio
    async def test_summary_after_ingest(self, kernel, make_points):
        await kernel.insert_measurement_batch("A-1", make_points((0, "12.5"), (119, "12.3")), "anpz")
        await kernel.ingest()

        summary = await kernel.asset_summary("A-1")

        assert summary["asset"]["asset_code"] == "A-1"
        assert summary["asset"]["plant_code"] == "ANPZ"
        assert summary["analytics"]["prev_thk"] == 12.5
        assert summary["analytics"]["last_thk"] == 12.3
        assert summary["analytics"]["cr"] == pytest.approx(0.001681)
        assert summary["analytics"]["updated_at"] is not None
        assert summary["risk"]["level"] == "OK"
        assert summary["risk"]["policy"] == "default"
        assert summary["risk"]["threshold_high"] == 0.08

    @pytest.mark.asyncio
    async def test_registered_asset_without_measurements(self, kernel):
        await kernel.upsert_asset("A-9", name="Tank 9", asset_type="TANK", plant_code="krnpz")

        summary = await kernel.asset_summary("A-9")

        assert summary["asset"] == {"asset_code": "A-9", "name": "Tank 9", "type": "TANK", "plant_code": "KRNPZ"}
        assert summary["analytics"]["cr"] is None
        assert summary["analytics"]["last_date"] is None
        assert summary["risk"]["level"] == "UNKNOWN"

    @pytest.mark.asyncio
    async def test_unknown_asset(self, kernel):
        assert await kernel.asset_summary("NOPE") is None

    @pytest.mark.asyncio
    async def test_upsert_asset_keeps_existing_fields(self, kernel, make_points):
        await kernel.insert_measurement_batch("A-1", make_points((0, "10.0")), "ANPZ")
        await kernel.ingest()

        asset = await kernel.upsert_asset("A-1", name="Pipe 1")

        assert asset.name == "Pipe 1"
        assert asset.plant_code == "ANPZ"


# =============================================================================
# TEST 4: POLÍTICAS
# =============================================================================

class TestPolicies:
    """Políticas validadas al escribir, evaluables por nombre."""

    @pytest.mark.asyncio
    async def test_named_policy_changes_levels(self, scenario):
        kernel = await scenario()
        await kernel.upsert_policy("strict", "0.001", "0.004", "0.01")

        levels = {e.asset_code: e.level.value for e in await kernel.eval_risk(policy_name="strict")}

        assert levels == {"A-OK": "MEDIUM", "A-LOW": "HIGH", "A-MED": "HIGH", "A-HIGH": "HIGH"}
        default_levels = {e.asset_code: e.level.value for e in await kernel.eval_risk()}
        assert default_levels["A-OK"] == "OK"

    @pytest.mark.asyncio
    async def test_invalid_policy_is_rejected(self, kernel):
        with pytest.raises(PolicyValidationError):
            await kernel.upsert_policy("bad", "0.05", "0.01", "0.08")
        with pytest.raises(PolicyValidationError):
            await kernel.upsert_policy("bad", "abc", "0.01", "0.08")

        policy = await kernel.get_policy("bad")
        assert policy.threshold_low == Decimal("0.01")

    @pytest.mark.asyncio
    async def test_missing_policy_falls_back_to_default_thresholds(self, kernel):
        policy = await kernel.get_policy("unknown")
        assert policy.name == "unknown"
        assert policy.threshold_med == Decimal("0.05")

    @pytest.mark.asyncio
    async def test_active_policy_used_during_ingest(self, kernel, make_points):
        await kernel.upsert_policy("default", "0.001", "0.002", "0.003")
        await kernel.insert_measurement_batch("A-1", make_points((0, "10.0"), (10, "9.95")), "ANPZ")
        await kernel.ingest()

        top = await kernel.top_assets_by_cr(5)

        assert top[0].risk_level.value == "HIGH"


# =============================================================================
# TEST 5: TOP Y ESTADÍSTICAS POR PLANTA
# =============================================================================

class TestReadModels:
    """Consultas agregadas sobre analytics."""

    @pytest.mark.asyncio
    async def test_top_by_cr(self, scenario):
        kernel = await scenario()

        top = await kernel.top_assets_by_cr(2)

        assert [r.asset_code for r in top] == ["A-HIGH", "A-MED"]
        assert top[0].to_dict()["cr"] == 0.1

    @pytest.mark.asyncio
    async def test_plant_stats(self, scenario, kernel, make_points):
        await scenario()
        await kernel.insert_measurement_batch("B-1", make_points((0, "5.0"), (10, "4.0")), "KRNPZ")
        await kernel.ingest()
        now = datetime.now(timezone.utc)

        stats = await kernel.plant_cr_stats("anpz", now - timedelta(days=1), now + timedelta(days=1))

        assert stats.plant == "ANPZ"
        assert stats.assets_count == 4
        assert stats.cr_mean == Decimal("0.04625")
        assert stats.cr_p90 == Decimal("0.088")

    @pytest.mark.asyncio
    async def test_plant_stats_empty_window(self, scenario):
        kernel = await scenario()
        past = datetime(2000, 1, 1, tzinfo=timezone.utc)

        stats = await kernel.plant_cr_stats("ANPZ", past, past + timedelta(days=30))

        assert stats.assets_count == 0
        assert stats.to_dict()["cr_mean"] is None


# =============================================================================
# TEST 6: DISPATCH POR NOMBRE
# =============================================================================

class TestOperationDispatch:
    """``kernel.call`` sobre el espacio plano de operaciones."""

    @pytest.mark.asyncio
    async def test_calc_cr(self, kernel, t0):
        rate = await kernel.call(
            Op.CALC_CR,
            prev_thk=Decimal("12.5"), prev_date=t0,
            last_thk=Decimal("12.3"), last_date=t0 + timedelta(days=119),
        )
        assert rate == Decimal("0.001681")

    @pytest.mark.asyncio
    async def test_insert_and_ingest(self, kernel, make_points):
        rows = await kernel.call(
            Op.MEASUREMENTS_INSERT_BATCH,
            asset_code="A-1", points_json=make_points((0, "10.0"), (10, "9.9")), site_id="ANPZ",
        )
        processed = await kernel.call(Op.EVENTS_INGEST)

        assert rows == 2
        assert processed == 1
        assert await kernel.call(Op.EVENTS_INGEST) == 0

    @pytest.mark.asyncio
    async def test_unknown_operation(self, kernel):
        with pytest.raises(StorageError):
            await kernel.call("DropEverything")
