"""Relay entre el canal de notificaciones local y Redis pub/sub.

Permite que observadores en otros procesos (CLI ``watch``, dashboards)
reciban ``events_ingested`` sin hacer polling a la base.

- Saliente: cada mensaje publicado localmente se reenvía a Redis
- Entrante: cada mensaje de Redis se re-publica localmente
- Los mensajes propios se ignoran al volver (campo ``origin``)
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Iterable, List, Optional

import redis.exceptions

from ..notifications.channel import Notification, NotificationChannel, Subscription
from .connection import RedisConnection

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "corrosion:notify:"
RETRY_DELAY_SECONDS = 1.0
MAX_RETRY_DELAY_SECONDS = 30.0


class RedisNotificationRelay:
    def __init__(
        self,
        channel: NotificationChannel,
        connection: RedisConnection,
        channels: Iterable[str],
        prefix: str = DEFAULT_PREFIX,
    ):
        self._local = channel
        self._conn = connection
        self._channels = list(channels)
        self._prefix = prefix
        self._origin = uuid.uuid4().hex
        self._subs: List[Subscription] = []
        self._pubsub = None
        self._task: Optional[asyncio.Task] = None

        # Stats
        self._forwarded = 0
        self._received = 0
        self._errors = 0

    async def start(self) -> bool:
        if not self._conn.is_connected and not await self._conn.connect():
            logger.warning("[NOTIFY] Redis relay disabled (no connection)")
            return False

        for name in self._channels:
            self._subs.append(self._local.subscribe(name, self._forward))

        self._pubsub = self._conn.client.pubsub()
        await self._pubsub.subscribe(*[self._prefix + c for c in self._channels])
        self._task = asyncio.create_task(self._listen_loop())
        logger.info("[NOTIFY] Redis relay started channels=%s", self._channels)
        return True

    async def stop(self) -> None:
        for sub in self._subs:
            self._local.unsubscribe(sub)
        self._subs.clear()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning("[NOTIFY] relay listener ended with error: %s", e)
            self._task = None
        if self._pubsub is not None:
            try:
                await self._pubsub.unsubscribe()
                await self._pubsub.aclose()
            except redis.exceptions.RedisError as e:
                logger.warning("[NOTIFY] relay pubsub close failed: %s", e)
            self._pubsub = None
        logger.info("[NOTIFY] Redis relay stopped. %s", self.stats)

    async def _forward(self, notification: Notification) -> None:
        if notification.sender == self._origin:
            return
        envelope = json.dumps({
            "origin": self._origin,
            "sender": notification.sender,
            "payload": notification.payload,
        })
        await self._conn.client.publish(self._prefix + notification.channel, envelope)
        self._forwarded += 1

    async def _listen_loop(self) -> None:
        delay = RETRY_DELAY_SECONDS
        while True:
            try:
                message = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            except redis.exceptions.RedisError as e:
                self._errors += 1
                logger.warning("[NOTIFY] relay read failed: %s (retry in %.1fs)", e, delay)
                await asyncio.sleep(delay)
                delay = min(delay * 2, MAX_RETRY_DELAY_SECONDS)
                continue
            delay = RETRY_DELAY_SECONDS
            if message is None:
                continue
            try:
                envelope = json.loads(message["data"])
            except (TypeError, ValueError):
                logger.warning("[NOTIFY] relay dropped non-JSON message on %s", message.get("channel"))
                continue
            if envelope.get("origin") == self._origin:
                continue
            name = str(message["channel"])[len(self._prefix):]
            self._received += 1
            # Re-published with the relay as sender so _forward skips it.
            await self._local.publish(name, envelope.get("payload", ""), sender=self._origin)

    @property
    def stats(self) -> dict:
        return {
            "channels": list(self._channels),
            "forwarded": self._forwarded,
            "received": self._received,
            "errors": self._errors,
            "running": self._task is not None and not self._task.done(),
        }
