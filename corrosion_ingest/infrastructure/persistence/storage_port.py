"""Interfaz uniforme command/query contra un store transaccional.

Todas las operaciones son async y se identifican por nombre lógico
(``OperationNames``). ``transaction()`` agrupa varias operaciones en una
transacción: commit al salir sin error, rollback ante cualquier excepción
(incluida la cancelación de la tarea).
"""

from __future__ import annotations

import abc
from typing import Any, AsyncContextManager, Dict, List, Mapping, Optional

from ...core.notifications.channel import NotificationChannel

Row = Dict[str, Any]
Params = Optional[Mapping[str, Any]]


class StorageSession(abc.ABC):
    """Operaciones ejecutadas dentro de una transacción abierta."""

    @abc.abstractmethod
    async def execute_query(self, operation: str, params: Params = None) -> List[Row]:
        ...

    @abc.abstractmethod
    async def execute_command(self, operation: str, params: Params = None) -> int:
        ...

    @abc.abstractmethod
    def savepoint(self) -> AsyncContextManager[None]:
        """Sub-transacción: un error adentro revierte solo lo hecho en el savepoint."""


class StoragePort(abc.ABC):
    """Endpoint de un sitio (central o planta)."""

    def __init__(self, site_id: str, notifications: Optional[NotificationChannel] = None):
        self.site_id = site_id
        self.notifications = notifications or NotificationChannel(sender=site_id)
        self._queries = 0
        self._commands = 0
        self._transactions = 0

    @abc.abstractmethod
    async def execute_query(self, operation: str, params: Params = None) -> List[Row]:
        """Ejecuta una operación de lectura en su propia transacción."""

    @abc.abstractmethod
    async def execute_command(self, operation: str, params: Params = None) -> int:
        """Ejecuta una operación de escritura en su propia transacción.

        Returns:
            Filas afectadas
        """

    @abc.abstractmethod
    def transaction(self) -> AsyncContextManager[StorageSession]:
        ...

    @abc.abstractmethod
    async def ping(self) -> bool:
        ...

    async def close(self) -> None:
        """Libera recursos del endpoint. El canal de notificaciones lo cierra su dueño."""

    @property
    def stats(self) -> dict:
        return {
            "site_id": self.site_id,
            "backend": type(self).__name__,
            "queries": self._queries,
            "commands": self._commands,
            "transactions": self._transactions,
        }
