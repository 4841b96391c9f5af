"""Lado central: cola de eventos, procesador de ingesta y analítica."""

from .analytics_service import AnalyticsService
from .drain import DrainSummary, run_drain_loop
from .event_queue import CentralEventQueue, DrainResult, ProcessOutcome, SkippedEvent
from .ingestion_processor import IngestionProcessor
from .policies import PolicyStore, build_policy
from .retry import call_with_retry

__all__ = [
    "AnalyticsService",
    "DrainSummary",
    "run_drain_loop",
    "CentralEventQueue",
    "DrainResult",
    "ProcessOutcome",
    "SkippedEvent",
    "IngestionProcessor",
    "PolicyStore",
    "build_policy",
    "call_with_retry",
]
