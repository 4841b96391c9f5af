"""Conexión a Redis."""

from __future__ import annotations

import logging
import os
from typing import Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class RedisConnection:
    """Gestiona la conexión a Redis."""

    def __init__(self, url: Optional[str] = None):
        self._url = url or os.getenv("REDIS_URL", "redis://localhost:6379/0")
        self._client: Optional[redis.Redis] = None
        self._connected = False

    @property
    def client(self) -> Optional[redis.Redis]:
        return self._client

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> bool:
        """Conecta a Redis."""
        try:
            self._client = redis.Redis.from_url(
                self._url,
                decode_responses=True,
                socket_timeout=5.0,
                socket_connect_timeout=5.0,
            )
            await self._client.ping()
            self._connected = True
            logger.info("[REDIS] Connected: %s", self._url.split("@")[-1])
            return True
        except redis.RedisError as e:
            self._connected = False
            logger.warning("[REDIS] Connection failed: %s", e)
            return False

    async def disconnect(self) -> None:
        """Desconecta de Redis."""
        if self._client is not None:
            try:
                await self._client.aclose()
            except redis.RedisError as e:
                logger.debug("[REDIS] close error: %s", e)
        self._client = None
        self._connected = False
