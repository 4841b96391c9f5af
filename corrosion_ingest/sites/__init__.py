"""Lado planta: store local con outbox y puente hacia la cola central."""

from .event_store import AppendResult, SiteEventStore
from .transport_bridge import FlushResult, OutboxRecord, TransportBridge

__all__ = [
    "AppendResult",
    "SiteEventStore",
    "FlushResult",
    "OutboxRecord",
    "TransportBridge",
]
