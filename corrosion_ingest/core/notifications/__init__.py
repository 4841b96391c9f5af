"""Canal de notificaciones pub/sub."""

from .channel import (
    BATCH_ACCEPTED,
    EVENTS_ENQUEUED,
    EVENTS_INGESTED,
    Notification,
    NotificationChannel,
    Subscription,
)

__all__ = [
    "BATCH_ACCEPTED",
    "EVENTS_ENQUEUED",
    "EVENTS_INGESTED",
    "Notification",
    "NotificationChannel",
    "Subscription",
]
