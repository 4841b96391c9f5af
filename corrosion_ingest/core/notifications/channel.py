"""Canal de notificaciones pub/sub en proceso.

Broadcast single-writer / many-readers, NO es una cola:
- Los mensajes no se retienen para suscriptores tardíos
- ``unsubscribe`` garantiza que el handler no se invoca más después de retornar
- La lista de suscriptores es segura bajo subscribe/unsubscribe/publish concurrentes

Uso:
    channel = NotificationChannel()
    sub = channel.subscribe("events_ingested", handler)
    await channel.publish("events_ingested", {"processed": 3})
    channel.unsubscribe(sub)
"""

from __future__ import annotations

import inspect
import itertools
import json
import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

EVENTS_INGESTED = "events_ingested"
EVENTS_ENQUEUED = "events_enqueued"
BATCH_ACCEPTED = "batch_accepted"


@dataclass(frozen=True)
class Notification:
    channel: str
    payload: str
    sender: str
    sent_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def json(self) -> Any:
        """Payload decodificado (o el string crudo si no es JSON)."""
        try:
            return json.loads(self.payload)
        except ValueError:
            return self.payload


NotificationHandler = Callable[[Notification], Union[None, Awaitable[None]]]


class Subscription:
    """Handle devuelto por ``subscribe``."""

    def __init__(self, sub_id: int, channel: str, handler: NotificationHandler):
        self.id = sub_id
        self.channel = channel
        self.handler = handler
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def _deactivate(self) -> None:
        self._active = False

    def __repr__(self) -> str:
        return f"Subscription(id={self.id}, channel={self.channel!r}, active={self._active})"


class NotificationChannel:
    def __init__(self, sender: Optional[str] = None):
        self._sender = sender or f"pid-{os.getpid()}"
        self._lock = threading.Lock()
        self._subs: Dict[str, Dict[int, Subscription]] = {}
        self._ids = itertools.count(1)

        # Stats
        self._published = 0
        self._delivered = 0
        self._handler_errors = 0

    @property
    def sender(self) -> str:
        return self._sender

    def subscribe(self, channel: str, handler: NotificationHandler) -> Subscription:
        if not channel:
            raise ValueError("channel name is required")
        with self._lock:
            sub = Subscription(next(self._ids), channel, handler)
            self._subs.setdefault(channel, {})[sub.id] = sub
        logger.debug("[NOTIFY] subscribe channel=%s id=%d", channel, sub.id)
        return sub

    def unsubscribe(self, subscription: Subscription) -> bool:
        """Cancela una suscripción. Idempotente.

        Returns:
            True si la suscripción estaba activa
        """
        with self._lock:
            subs = self._subs.get(subscription.channel, {})
            removed = subs.pop(subscription.id, None) is not None
            if not subs:
                self._subs.pop(subscription.channel, None)
            subscription._deactivate()
        if removed:
            logger.debug("[NOTIFY] unsubscribe channel=%s id=%d", subscription.channel, subscription.id)
        return removed

    def subscriber_count(self, channel: Optional[str] = None) -> int:
        with self._lock:
            if channel is not None:
                return len(self._subs.get(channel, {}))
            return sum(len(s) for s in self._subs.values())

    async def publish(self, channel: str, payload: Any, sender: Optional[str] = None) -> int:
        """Entrega el mensaje a los suscriptores activos del canal.

        Un handler que falla se loggea y no interrumpe la entrega al resto.

        Returns:
            Cantidad de handlers invocados
        """
        if not isinstance(payload, str):
            payload = json.dumps(payload, default=str)
        notification = Notification(channel=channel, payload=payload, sender=sender or self._sender)

        with self._lock:
            snapshot: List[Subscription] = list(self._subs.get(channel, {}).values())
            self._published += 1

        delivered = 0
        for sub in snapshot:
            # Re-check right before invoking: unsubscribe may have run while
            # an earlier handler was awaited.
            if not sub.active:
                continue
            try:
                result = sub.handler(notification)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception as e:
                with self._lock:
                    self._handler_errors += 1
                logger.warning("[NOTIFY] handler error channel=%s id=%d err=%s", channel, sub.id, e)

        with self._lock:
            self._delivered += delivered
        return delivered

    def clear(self) -> None:
        with self._lock:
            for subs in self._subs.values():
                for sub in subs.values():
                    sub._deactivate()
            self._subs.clear()

    @property
    def stats(self) -> dict:
        with self._lock:
            return {
                "channels": len(self._subs),
                "subscribers": sum(len(s) for s in self._subs.values()),
                "published": self._published,
                "delivered": self._delivered,
                "handler_errors": self._handler_errors,
            }
