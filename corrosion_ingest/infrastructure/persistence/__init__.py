"""Persistence infrastructure: storage port, backends and multi-site router."""

from .memory_storage import MemoryStorage
from .operations import OperationNames
from .router import StorageRouter
from .schema import ensure_schema
from .sql_storage import SqlStorage
from .storage_port import StoragePort, StorageSession

__all__ = [
    "MemoryStorage",
    "OperationNames",
    "StorageRouter",
    "ensure_schema",
    "SqlStorage",
    "StoragePort",
    "StorageSession",
]
