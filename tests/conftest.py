"""Fixtures compartidas: todo corre contra el backend ``memory://``."""

import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterable, Optional, Tuple

import pytest

from common.config import Settings
from corrosion_ingest.central import CentralEventQueue, IngestionProcessor, PolicyStore
from corrosion_ingest.core.domain.events import EventPayload, EventType
from corrosion_ingest.infrastructure.persistence import MemoryStorage, StorageRouter
from corrosion_ingest.kernel import CorrosionKernel

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def t0() -> datetime:
    return T0


@pytest.fixture
def settings() -> Settings:
    return Settings(
        central_url="memory://central",
        sites=("ANPZ", "KRNPZ"),
        site_urls={"ANPZ": "memory://anpz", "KRNPZ": "memory://krnpz"},
    )


@pytest.fixture
def router(settings) -> StorageRouter:
    return StorageRouter(settings)


@pytest.fixture
def kernel(router, settings) -> CorrosionKernel:
    return CorrosionKernel(router, settings)


@pytest.fixture
def central() -> MemoryStorage:
    return MemoryStorage(site_id="CENTRAL")


@pytest.fixture
def queue(central) -> CentralEventQueue:
    return CentralEventQueue(central)


@pytest.fixture
def processor(central) -> IngestionProcessor:
    return IngestionProcessor(PolicyStore(central))


@pytest.fixture
def make_points():
    """``make_points((0, "12.5"), (119, "12.3"))`` -> JSON del batch (días desde T0)."""

    def _make(*pairs: Tuple[float, str], start: datetime = T0) -> str:
        return json.dumps([
            {
                "label": f"P{i + 1}",
                "ts": (start + timedelta(days=days)).isoformat(),
                "thickness": thickness,
            }
            for i, (days, thickness) in enumerate(pairs)
        ])

    return _make


@pytest.fixture
def make_payload():
    """Payload de evento con par prev/last expresado en días desde T0."""

    def _make(
        asset_code: str,
        last: Tuple[float, str],
        prev: Optional[Tuple[float, str]] = None,
        site_id: str = "ANPZ",
    ) -> EventPayload:
        return EventPayload(
            asset_code=asset_code,
            site_id=site_id,
            last_thickness=Decimal(last[1]),
            last_date=T0 + timedelta(days=last[0]),
            prev_thickness=Decimal(prev[1]) if prev else None,
            prev_date=T0 + timedelta(days=prev[0]) if prev else None,
            label="L",
        )

    return _make


async def enqueue_payloads(queue: CentralEventQueue, payloads: Iterable[EventPayload]) -> list:
    ids = []
    for payload in payloads:
        ids.append(await queue.enqueue(
            EventType.MEASUREMENT_BATCH.value,
            payload.site_id,
            payload.to_json(),
            idempotency_key=payload.idempotency_key,
        ))
    return ids


@pytest.fixture
def enqueue():
    return enqueue_payloads
