"""Políticas de riesgo (umbrales low/med/high por nombre)."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Optional, Union

from ..core.domain.analytics import DEFAULT_POLICY, RiskPolicy
from ..core.domain.measurement import parse_decimal
from ..core.errors import PolicyValidationError
from ..infrastructure.persistence.operations import OperationNames as Op
from ..infrastructure.persistence.storage_port import StoragePort, StorageSession

logger = logging.getLogger(__name__)

Executor = Union[StoragePort, StorageSession]


def build_policy(name: str, low: Any, med: Any, high: Any) -> RiskPolicy:
    """Construye y valida una política a partir de valores crudos.

    Raises:
        PolicyValidationError: umbral no numérico, negativo o desordenado
    """
    try:
        thresholds = [parse_decimal(v) for v in (low, med, high)]
    except ValueError as e:
        raise PolicyValidationError(str(e)) from e
    return RiskPolicy(
        name=(name or "").strip(),
        threshold_low=thresholds[0],
        threshold_med=thresholds[1],
        threshold_high=thresholds[2],
    ).validate()


class PolicyStore:
    def __init__(self, storage: StoragePort, default_name: str = DEFAULT_POLICY.name):
        self._storage = storage
        self.default_name = default_name or DEFAULT_POLICY.name

    async def get(self, name: Optional[str] = None, session: Optional[StorageSession] = None) -> RiskPolicy:
        """Política por nombre; si no existe se usan los umbrales por defecto.

        El nombre pedido se conserva en el resultado para que los read models
        muestren qué política se evaluó.
        """
        policy_name = (name or self.default_name).strip()
        executor: Executor = session or self._storage
        rows = await executor.execute_query(Op.POLICY_GET, {"name": policy_name})
        if rows:
            return RiskPolicy.from_row(rows[0])
        if policy_name != DEFAULT_POLICY.name:
            logger.warning("[POLICY] policy=%s not found, using default thresholds", policy_name)
        return RiskPolicy(
            name=policy_name,
            threshold_low=DEFAULT_POLICY.threshold_low,
            threshold_med=DEFAULT_POLICY.threshold_med,
            threshold_high=DEFAULT_POLICY.threshold_high,
        )

    async def upsert(self, policy: RiskPolicy) -> RiskPolicy:
        policy.validate()
        await self._storage.execute_command(Op.POLICY_UPSERT, policy.to_params())
        logger.info(
            "[POLICY] upsert name=%s low=%s med=%s high=%s",
            policy.name, policy.threshold_low, policy.threshold_med, policy.threshold_high,
        )
        return policy

    async def set(self, name: str, low: Decimal, med: Decimal, high: Decimal) -> RiskPolicy:
        return await self.upsert(build_policy(name, low, med, high))
