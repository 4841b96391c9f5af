"""Storage transaccional sobre SQLAlchemy async (PostgreSQL + asyncpg).

IMPORTANTE: los errores del driver se envuelven en StorageError; el flag
``transient`` indica si el caller puede reintentar (conexión caída,
deadlock, serialización).
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from ...core.errors import StorageError
from ...core.notifications.channel import NotificationChannel
from .operations import COMMAND_OPERATIONS, QUERY_OPERATIONS
from .sql_statements import STATEMENTS
from .storage_port import Params, Row, StoragePort, StorageSession

logger = logging.getLogger(__name__)

# SQLSTATE de errores reintentables: serialization_failure, deadlock_detected
_TRANSIENT_SQLSTATES = ("40001", "40P01")


def _wrap(operation: str, exc: SQLAlchemyError) -> StorageError:
    transient = isinstance(exc, OperationalError)
    if isinstance(exc, DBAPIError):
        transient = transient or exc.connection_invalidated
        sqlstate = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
        transient = transient or sqlstate in _TRANSIENT_SQLSTATES
    return StorageError(f"{operation} failed: {exc.__class__.__name__}: {exc}", transient=transient)


def _statement(operation: str, expected: frozenset):
    if operation not in expected:
        kind = "query" if expected is QUERY_OPERATIONS else "command"
        raise StorageError(f"unknown {kind} operation '{operation}'")
    return text(STATEMENTS[operation])


class _SqlSession(StorageSession):
    def __init__(self, storage: "SqlStorage", conn: AsyncConnection):
        self._storage = storage
        self._conn = conn

    async def execute_query(self, operation: str, params: Params = None) -> List[Row]:
        stmt = _statement(operation, QUERY_OPERATIONS)
        self._storage._queries += 1
        try:
            result = await self._conn.execute(stmt, dict(params or {}))
            return [dict(r) for r in result.mappings().all()]
        except SQLAlchemyError as e:
            raise _wrap(operation, e) from e

    async def execute_command(self, operation: str, params: Params = None) -> int:
        stmt = _statement(operation, COMMAND_OPERATIONS)
        self._storage._commands += 1
        try:
            result = await self._conn.execute(stmt, dict(params or {}))
            return max(result.rowcount or 0, 0)
        except SQLAlchemyError as e:
            raise _wrap(operation, e) from e

    @asynccontextmanager
    async def savepoint(self) -> AsyncIterator[None]:
        async with self._conn.begin_nested():
            yield


class SqlStorage(StoragePort):
    def __init__(
        self,
        engine: AsyncEngine,
        site_id: str,
        notifications: Optional[NotificationChannel] = None,
    ):
        super().__init__(site_id, notifications)
        self._engine = engine

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def execute_query(self, operation: str, params: Params = None) -> List[Row]:
        async with self.transaction() as session:
            return await session.execute_query(operation, params)

    async def execute_command(self, operation: str, params: Params = None) -> int:
        async with self.transaction() as session:
            return await session.execute_command(operation, params)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StorageSession]:
        self._transactions += 1
        try:
            # engine.begin(): commit on clean exit, rollback on any exception
            # (CancelledError included), so claimed events revert to pending.
            async with self._engine.begin() as conn:
                yield _SqlSession(self, conn)
        except SQLAlchemyError as e:
            raise _wrap("transaction", e) from e

    async def ping(self) -> bool:
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.warning("[DB] ping failed site=%s err=%s", self.site_id, e)
            return False

    async def close(self) -> None:
        await super().close()
        await self._engine.dispose()
        logger.info("[DB] engine disposed site=%s", self.site_id)
