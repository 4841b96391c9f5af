"""
Tests del lado planta: store de mediciones, outbox y puente a central.

Ejecutar con: pytest tests/test_sites.py -v
"""

from unittest.mock import AsyncMock, patch

import pytest

from corrosion_ingest.core.domain.measurement import parse_points_json
from corrosion_ingest.core.errors import StorageError, TransportError, ValidationError
from corrosion_ingest.infrastructure.persistence import MemoryStorage, OperationNames as Op
from corrosion_ingest.sites import OutboxRecord, SiteEventStore, TransportBridge


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def site() -> MemoryStorage:
    return MemoryStorage(site_id="ANPZ")


@pytest.fixture
def store(site) -> SiteEventStore:
    return SiteEventStore(site)


@pytest.fixture
def bridge(queue) -> TransportBridge:
    return TransportBridge(queue, batch_size=10)


async def pending_outbox(site):
    return await site.execute_query(Op.SITE_OUTBOX_PENDING, {"limit": 100})


# =============================================================================
# TEST 1: SITE EVENT STORE
# =============================================================================

class TestSiteEventStore:
    """Puntos y outbox se escriben en la misma transacción."""

    @pytest.mark.asyncio
    async def test_submit_writes_points_and_outbox(self, store, site, make_points):
        result = await store.submit("A-1", parse_points_json(make_points((0, "10.0"), (10, "9.9"))))

        assert result.rows_written == 2
        assert result.outbox_inserted
        assert result.payload.prev_thickness is not None

        outbox = await pending_outbox(site)
        assert len(outbox) == 1
        assert outbox[0]["idempotency_key"] == result.payload.idempotency_key
        assert outbox[0]["idempotency_key"].startswith("ANPZ:A-1:")

        latest = await store.latest("A-1")
        assert str(latest.thickness) == "9.9"

    @pytest.mark.asyncio
    async def test_rejected_batch_writes_nothing(self, store, site, make_points):
        await store.submit("A-1", parse_points_json(make_points((10, "9.9"))))

        with pytest.raises(ValidationError):
            await store.submit("A-1", parse_points_json(make_points((20, "9.8"), (15, "9.7"))))

        assert len(await pending_outbox(site)) == 1
        assert str((await store.latest("A-1")).thickness) == "9.9"

    @pytest.mark.asyncio
    async def test_failure_mid_append_rolls_back(self, store, site, make_points):
        points = parse_points_json(make_points((0, "10.0"), (10, "9.9")))
        original = site.transaction

        def failing_transaction():
            ctx = original()

            class _Wrapper:
                async def __aenter__(self):
                    session = await ctx.__aenter__()
                    real = session.execute_command

                    async def execute_command(operation, params=None):
                        if operation == Op.SITE_OUTBOX_INSERT:
                            raise StorageError("disk full")
                        return await real(operation, params)

                    session.execute_command = execute_command
                    return session

                async def __aexit__(self, *exc):
                    return await ctx.__aexit__(*exc)

            return _Wrapper()

        with patch.object(site, "transaction", failing_transaction):
            with pytest.raises(StorageError):
                await store.submit("A-1", points)

        assert await store.latest("A-1") is None
        assert await pending_outbox(site) == []


# =============================================================================
# TEST 2: TRANSPORT BRIDGE
# =============================================================================

class TestTransportBridge:
    """Publicación idempotente del outbox hacia el inbox central."""

    @pytest.mark.asyncio
    async def test_flush_publishes_and_marks(self, store, site, bridge, queue, make_points):
        await store.submit("A-1", parse_points_json(make_points((0, "10.0"))))
        await store.submit("A-2", parse_points_json(make_points((0, "8.0"))))

        result = await bridge.flush(site)

        assert result.published == 2
        assert result.failed == 0
        assert await pending_outbox(site) == []
        assert [e.id for e in await queue.peek(10)] == result.central_ids

        again = await bridge.flush(site)
        assert again.published == 0

    @pytest.mark.asyncio
    async def test_republish_returns_same_central_id(self, store, site, bridge, queue, make_points):
        await store.submit("A-1", parse_points_json(make_points((0, "10.0"))))
        record = OutboxRecord.from_row((await pending_outbox(site))[0])

        first = await bridge.publish(record)
        second = await bridge.publish(record)

        assert first == second
        assert (await queue.counts())["pending"] == 1
        assert bridge.published == 2

    @pytest.mark.asyncio
    async def test_central_down_keeps_outbox_pending(self, store, site, bridge, queue, make_points):
        await store.submit("A-1", parse_points_json(make_points((0, "10.0"))))
        await store.submit("A-2", parse_points_json(make_points((0, "8.0"))))

        with patch.object(queue, "enqueue", AsyncMock(side_effect=TransportError("central unreachable"))):
            result = await bridge.flush(site)

        assert result.published == 0
        assert result.failed == 1
        assert bridge.failures == 1
        assert len(await pending_outbox(site)) == 2

        recovered = await bridge.flush(site)
        assert recovered.published == 2

    @pytest.mark.asyncio
    async def test_unreadable_outbox(self, bridge):
        broken = MemoryStorage(site_id="BROKEN")
        broken.execute_query = AsyncMock(side_effect=StorageError("connection refused"))

        with pytest.raises(TransportError):
            await bridge.flush(broken)


# =============================================================================
# TEST 3: KERNEL (PUBLICACIÓN DIFERIDA)
# =============================================================================

class TestDeferredPublish:
    """La aceptación en planta no depende de que central esté disponible."""

    @pytest.mark.asyncio
    async def test_submit_survives_central_outage(self, kernel, make_points):
        await kernel.open()

        with patch.object(kernel.queue, "enqueue", AsyncMock(side_effect=TransportError("down"))):
            rows = await kernel.insert_measurement_batch("A-1", make_points((0, "10.0"), (5, "9.9")), "ANPZ")

        assert rows == 2
        assert (await kernel.queue_counts())["pending"] == 0

        flushes = await kernel.flush_all()
        assert {f.site_id: f.published for f in flushes} == {"ANPZ": 1, "KRNPZ": 0}
        assert (await kernel.ingest()).applied == 1

    @pytest.mark.asyncio
    async def test_batch_accepted_notification(self, kernel, make_points):
        received = []
        kernel.notifications.subscribe("batch_accepted", received.append)

        await kernel.insert_measurement_batch("A-1", make_points((0, "10.0")), "ANPZ")

        assert received[0].json()["asset_code"] == "A-1"
        assert received[0].json()["rows"] == 1
