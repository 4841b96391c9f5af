"""Redis layer - relay de notificaciones entre procesos."""

from .connection import RedisConnection
from .relay import RedisNotificationRelay

__all__ = ["RedisConnection", "RedisNotificationRelay"]
