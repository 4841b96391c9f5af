"""Storage en memoria con la misma tabla de operaciones que SqlStorage.

Se selecciona con la URL ``memory://``. Pensado para tests y demos locales:

- Todas las transacciones se serializan con un ``asyncio.Lock`` (equivale a
  aislamiento SERIALIZABLE, el claim de la cola es trivialmente atómico)
- Rollback por snapshot: se copia el estado al abrir la transacción o el
  savepoint y se restaura ante cualquier excepción (cancelación incluida)
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from ...core.errors import StorageError
from ...core.notifications.channel import NotificationChannel
from .operations import COMMAND_OPERATIONS, QUERY_OPERATIONS, OperationNames as Op
from .storage_port import Params, Row, StoragePort, StorageSession

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _MemoryState:
    measurements: List[Row] = field(default_factory=list)
    outbox: Dict[int, Row] = field(default_factory=dict)
    events: Dict[int, Row] = field(default_factory=dict)
    assets: Dict[str, Row] = field(default_factory=dict)
    ledger: Dict[str, Row] = field(default_factory=dict)
    analytics: Dict[str, Row] = field(default_factory=dict)
    policies: Dict[str, Row] = field(default_factory=dict)
    next_measurement_id: int = 1
    next_outbox_id: int = 1
    next_event_id: int = 1


def _check_json(payload: Any) -> str:
    if not isinstance(payload, str):
        return json.dumps(payload)
    json.loads(payload)
    return payload


# ---------------------------------------------------------------------------
# Site
# ---------------------------------------------------------------------------

def _site_asset_lock(state: _MemoryState, p: dict) -> List[Row]:
    # Transactions are already serialised by the storage lock.
    return [{"locked": True}]


def _site_latest(state: _MemoryState, p: dict) -> List[Row]:
    rows = [m for m in state.measurements if m["asset_code"] == p["asset_code"]]
    if not rows:
        return []
    latest = max(rows, key=lambda m: m["taken_at"])
    return [{"thickness": latest["thickness"], "taken_at": latest["taken_at"]}]


def _site_measurement_insert(state: _MemoryState, p: dict) -> int:
    for m in state.measurements:
        if m["asset_code"] == p["asset_code"] and m["taken_at"] == p["taken_at"]:
            raise StorageError(
                f"duplicate measurement asset={p['asset_code']} taken_at={p['taken_at']}"
            )
    row = {k: p.get(k) for k in ("asset_code", "site_id", "label", "taken_at", "thickness", "note")}
    row["id"] = state.next_measurement_id
    row["created_at"] = _utcnow()
    state.next_measurement_id += 1
    state.measurements.append(row)
    return 1


def _site_outbox_insert(state: _MemoryState, p: dict) -> int:
    key = p["idempotency_key"]
    if any(r["idempotency_key"] == key for r in state.outbox.values()):
        return 0
    oid = state.next_outbox_id
    state.next_outbox_id += 1
    state.outbox[oid] = {
        "id": oid,
        "event_type": p["event_type"],
        "source_site": p["source_site"],
        "payload": _check_json(p["payload"]),
        "idempotency_key": key,
        "created_at": p.get("created_at") or _utcnow(),
        "published_at": None,
        "central_event_id": None,
    }
    return 1


def _site_outbox_pending(state: _MemoryState, p: dict) -> List[Row]:
    pending = [r for r in sorted(state.outbox.values(), key=lambda r: r["id"]) if r["published_at"] is None]
    return pending[: int(p["limit"])]


def _site_outbox_mark_published(state: _MemoryState, p: dict) -> int:
    row = state.outbox.get(int(p["id"]))
    if row is None or row["published_at"] is not None:
        return 0
    row["published_at"] = p["published_at"]
    row["central_event_id"] = p.get("central_event_id")
    return 1


# ---------------------------------------------------------------------------
# Central queue
# ---------------------------------------------------------------------------

def _events_enqueue(state: _MemoryState, p: dict) -> List[Row]:
    key = p.get("idempotency_key")
    if key is not None and any(e["idempotency_key"] == key for e in state.events.values()):
        return []
    eid = state.next_event_id
    state.next_event_id += 1
    state.events[eid] = {
        "id": eid,
        "event_type": p["event_type"],
        "source_site": p["source_site"],
        "payload": _check_json(p["payload"]),
        "idempotency_key": key,
        "created_at": p.get("created_at") or _utcnow(),
        "processed_at": None,
        "error": None,
        "attempts": 0,
    }
    return [{"id": eid}]


def _events_find_by_key(state: _MemoryState, p: dict) -> List[Row]:
    return [{"id": e["id"]} for e in state.events.values() if e["idempotency_key"] == p["idempotency_key"]]


def _pending(state: _MemoryState, include_failed: bool) -> List[Row]:
    rows = [
        e for e in state.events.values()
        if e["processed_at"] is None and (include_failed or e["error"] is None)
    ]
    return sorted(rows, key=lambda e: e["id"])


def _events_peek(state: _MemoryState, p: dict) -> List[Row]:
    return _pending(state, include_failed=True)[: int(p["limit"])]


def _events_claim(state: _MemoryState, p: dict) -> List[Row]:
    claimed = _pending(state, include_failed=False)[: int(p["limit"])]
    for e in claimed:
        e["attempts"] += 1
    return claimed


def _events_mark_processed(state: _MemoryState, p: dict) -> int:
    e = state.events.get(int(p["id"]))
    if e is None or e["processed_at"] is not None:
        return 0
    e["processed_at"] = p["processed_at"]
    e["error"] = None
    return 1


def _events_mark_failed(state: _MemoryState, p: dict) -> int:
    e = state.events.get(int(p["id"]))
    if e is None or e["processed_at"] is not None:
        return 0
    e["error"] = p["error"]
    return 1


def _events_requeue(state: _MemoryState, p: dict) -> int:
    affected = 0
    for eid in p["ids"]:
        e = state.events.get(int(eid))
        if e is None or (e["processed_at"] is None and e["error"] is None):
            continue
        e["processed_at"] = None
        e["error"] = None
        affected += 1
    return affected


def _events_cleanup(state: _MemoryState, p: dict) -> int:
    doomed = [
        eid for eid, e in state.events.items()
        if e["processed_at"] is not None and e["created_at"] < p["cutoff"]
    ]
    for eid in doomed:
        del state.events[eid]
    return len(doomed)


def _events_counts(state: _MemoryState, p: dict) -> List[Row]:
    pending = failed = processed = 0
    for e in state.events.values():
        if e["processed_at"] is not None:
            processed += 1
        elif e["error"] is not None:
            failed += 1
        else:
            pending += 1
    return [{"pending": pending, "failed": failed, "processed": processed}]


# ---------------------------------------------------------------------------
# Central ledger / analytics
# ---------------------------------------------------------------------------

def _asset_upsert(state: _MemoryState, p: dict) -> int:
    code = p["asset_code"]
    current = state.assets.get(code)
    if current is None:
        state.assets[code] = {
            "asset_code": code,
            "name": p.get("name"),
            "asset_type": p.get("asset_type"),
            "plant_code": p.get("plant_code"),
        }
        return 1
    for key in ("name", "asset_type", "plant_code"):
        if p.get(key) is not None:
            current[key] = p[key]
    return 1


def _asset_ensure(state: _MemoryState, p: dict) -> int:
    if p["asset_code"] in state.assets:
        return 0
    return _asset_upsert(state, {"asset_code": p["asset_code"], "plant_code": p.get("plant_code")})


def _asset_get(state: _MemoryState, p: dict) -> List[Row]:
    row = state.assets.get(p["asset_code"])
    return [row] if row else []


def _ledger_get(state: _MemoryState, p: dict) -> List[Row]:
    row = state.ledger.get(p["asset_code"])
    return [row] if row else []


def _ledger_list(state: _MemoryState, p: dict) -> List[Row]:
    return [state.ledger[k] for k in sorted(state.ledger)]


def _ledger_upsert(state: _MemoryState, p: dict) -> int:
    code = p["asset_code"]
    current = state.ledger.get(code)
    if current is not None and not current["last_date"] < p["last_date"]:
        return 0
    state.ledger[code] = {
        "asset_code": code,
        "site_id": p.get("site_id"),
        "prev_thk": p.get("prev_thk"),
        "prev_date": p.get("prev_date"),
        "last_thk": p["last_thk"],
        "last_date": p["last_date"],
        "updated_at": p.get("updated_at") or _utcnow(),
    }
    return 1


def _analytics_get(state: _MemoryState, p: dict) -> List[Row]:
    row = state.analytics.get(p["asset_code"])
    return [row] if row else []


def _analytics_upsert(state: _MemoryState, p: dict) -> int:
    state.analytics[p["asset_code"]] = {
        k: p.get(k) for k in ("asset_code", "cr", "risk_level", "policy_name", "updated_at")
    }
    return 1


def _policy_get(state: _MemoryState, p: dict) -> List[Row]:
    row = state.policies.get(p["name"])
    return [row] if row else []


def _policy_upsert(state: _MemoryState, p: dict) -> int:
    state.policies[p["name"]] = {
        k: p[k] for k in ("name", "threshold_low", "threshold_med", "threshold_high")
    }
    return 1


def _top_assets_by_cr(state: _MemoryState, p: dict) -> List[Row]:
    rows = list(state.analytics.values())
    # cr DESC NULLS LAST, asset_code
    rows.sort(key=lambda r: r["asset_code"])
    rows.sort(key=lambda r: (r["cr"] is None, -(r["cr"] or 0)))
    return [
        {k: r[k] for k in ("asset_code", "cr", "risk_level", "updated_at")}
        for r in rows[: int(p["limit"])]
    ]


def _plant_rates(state: _MemoryState, p: dict) -> List[Row]:
    out = []
    for code, row in state.analytics.items():
        asset = state.assets.get(code)
        if asset is None or asset.get("plant_code") != p["plant"] or row["cr"] is None:
            continue
        if p["date_from"] <= row["updated_at"] <= p["date_to"]:
            out.append({"asset_code": code, "cr": row["cr"]})
    return out


_HANDLERS: Dict[str, Callable[[_MemoryState, dict], Any]] = {
    Op.SITE_ASSET_LOCK: _site_asset_lock,
    Op.SITE_LATEST_MEASUREMENT: _site_latest,
    Op.SITE_MEASUREMENT_INSERT: _site_measurement_insert,
    Op.SITE_OUTBOX_INSERT: _site_outbox_insert,
    Op.SITE_OUTBOX_PENDING: _site_outbox_pending,
    Op.SITE_OUTBOX_MARK_PUBLISHED: _site_outbox_mark_published,
    Op.EVENTS_ENQUEUE: _events_enqueue,
    Op.EVENTS_FIND_BY_KEY: _events_find_by_key,
    Op.EVENTS_PEEK: _events_peek,
    Op.EVENTS_CLAIM: _events_claim,
    Op.EVENTS_MARK_PROCESSED: _events_mark_processed,
    Op.EVENTS_MARK_FAILED: _events_mark_failed,
    Op.EVENTS_REQUEUE: _events_requeue,
    Op.EVENTS_CLEANUP: _events_cleanup,
    Op.EVENTS_COUNTS: _events_counts,
    Op.ASSET_UPSERT: _asset_upsert,
    Op.ASSET_ENSURE: _asset_ensure,
    Op.ASSET_GET: _asset_get,
    Op.LEDGER_GET: _ledger_get,
    Op.LEDGER_LIST: _ledger_list,
    Op.LEDGER_UPSERT: _ledger_upsert,
    Op.ANALYTICS_GET: _analytics_get,
    Op.ANALYTICS_UPSERT: _analytics_upsert,
    Op.POLICY_GET: _policy_get,
    Op.POLICY_UPSERT: _policy_upsert,
    Op.ANALYTICS_TOP_ASSETS_BY_CR: _top_assets_by_cr,
    Op.ANALYTICS_PLANT_RATES: _plant_rates,
}


class _MemorySession(StorageSession):
    def __init__(self, storage: "MemoryStorage"):
        self._storage = storage

    def _run(self, operation: str, params: Params, expected: frozenset):
        if operation not in expected:
            kind = "query" if expected is QUERY_OPERATIONS else "command"
            raise StorageError(f"unknown {kind} operation '{operation}'")
        try:
            return _HANDLERS[operation](self._storage._state, dict(params or {}))
        except (KeyError, TypeError, ValueError) as e:
            raise StorageError(f"{operation} failed: {e.__class__.__name__}: {e}") from e

    async def execute_query(self, operation: str, params: Params = None) -> List[Row]:
        self._storage._queries += 1
        rows = self._run(operation, params, QUERY_OPERATIONS)
        return [dict(r) for r in rows]

    async def execute_command(self, operation: str, params: Params = None) -> int:
        self._storage._commands += 1
        return int(self._run(operation, params, COMMAND_OPERATIONS))

    @asynccontextmanager
    async def savepoint(self) -> AsyncIterator[None]:
        snapshot = copy.deepcopy(self._storage._state)
        try:
            yield
        except BaseException:
            self._storage._state = snapshot
            raise


class MemoryStorage(StoragePort):
    def __init__(self, site_id: str, notifications: Optional[NotificationChannel] = None):
        super().__init__(site_id, notifications)
        self._state = _MemoryState()
        self._lock = asyncio.Lock()

    async def execute_query(self, operation: str, params: Params = None) -> List[Row]:
        async with self.transaction() as session:
            return await session.execute_query(operation, params)

    async def execute_command(self, operation: str, params: Params = None) -> int:
        async with self.transaction() as session:
            return await session.execute_command(operation, params)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StorageSession]:
        async with self._lock:
            self._transactions += 1
            snapshot = copy.deepcopy(self._state)
            try:
                yield _MemorySession(self)
            except BaseException:
                self._state = snapshot
                raise

    async def ping(self) -> bool:
        return True
