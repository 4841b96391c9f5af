"""
Tests del canal de notificaciones y del relay a Redis.

Ejecutar con: pytest tests/test_notifications.py -v
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
import redis.exceptions

from corrosion_ingest.core.notifications.channel import Notification, NotificationChannel
from corrosion_ingest.core.redis import RedisNotificationRelay
from corrosion_ingest.core.redis import relay as relay_module


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def channel() -> NotificationChannel:
    return NotificationChannel(sender="test")


@pytest.fixture
def redis_conn():
    conn = MagicMock()
    conn.is_connected = True
    conn.client = MagicMock()
    conn.client.publish = AsyncMock(return_value=1)
    return conn


# =============================================================================
# TEST 1: PUB/SUB LOCAL
# =============================================================================

class TestNotificationChannel:
    """Broadcast sin retención."""

    @pytest.mark.asyncio
    async def test_sync_and_async_handlers(self, channel):
        received = []

        async def async_handler(n: Notification):
            received.append(("async", n.json()))

        channel.subscribe("events_ingested", lambda n: received.append(("sync", n.json())))
        channel.subscribe("events_ingested", async_handler)

        delivered = await channel.publish("events_ingested", {"processed": 3})

        assert delivered == 2
        assert sorted(received) == [("async", {"processed": 3}), ("sync", {"processed": 3})]

    @pytest.mark.asyncio
    async def test_no_retention_for_late_subscribers(self, channel):
        await channel.publish("c", "early")
        received = []
        channel.subscribe("c", received.append)

        assert received == []
        await channel.publish("c", "late")
        assert [n.payload for n in received] == ["late"]

    @pytest.mark.asyncio
    async def test_unsubscribe_is_idempotent(self, channel):
        received = []
        sub = channel.subscribe("c", received.append)

        assert channel.unsubscribe(sub) is True
        assert channel.unsubscribe(sub) is False
        assert await channel.publish("c", "x") == 0
        assert received == []
        assert not sub.active

    @pytest.mark.asyncio
    async def test_unsubscribe_during_publish(self, channel):
        received = []
        holder = {}

        def first(n):
            channel.unsubscribe(holder["second"])

        channel.subscribe("c", first)
        holder["second"] = channel.subscribe("c", received.append)

        await channel.publish("c", "x")

        assert received == []

    @pytest.mark.asyncio
    async def test_handler_error_does_not_block_others(self, channel):
        received = []

        def broken(n):
            raise RuntimeError("boom")

        channel.subscribe("c", broken)
        channel.subscribe("c", received.append)

        assert await channel.publish("c", {"a": 1}) == 1
        assert len(received) == 1
        assert channel.stats["handler_errors"] == 1

    @pytest.mark.asyncio
    async def test_channels_are_isolated(self, channel):
        received = []
        channel.subscribe("a", received.append)
        await channel.publish("b", "x")
        assert received == []
        assert channel.subscriber_count("a") == 1
        assert channel.subscriber_count() == 1

    def test_blank_channel_rejected(self, channel):
        with pytest.raises(ValueError):
            channel.subscribe("", lambda n: None)

    def test_non_json_payload(self):
        assert Notification(channel="c", payload="plain", sender="s").json() == "plain"


# =============================================================================
# TEST 2: RELAY A REDIS
# =============================================================================

class TestRedisRelay:
    """Reenvío saliente con marca de origen."""

    @pytest.mark.asyncio
    async def test_forward_wraps_envelope(self, channel, redis_conn):
        relay = RedisNotificationRelay(channel, redis_conn, ["events_ingested"])

        await relay._forward(Notification(channel="events_ingested", payload='{"processed": 1}', sender="test"))

        redis_conn.client.publish.assert_awaited_once()
        name, raw = redis_conn.client.publish.await_args.args
        assert name == "corrosion:notify:events_ingested"
        envelope = json.loads(raw)
        assert envelope["payload"] == '{"processed": 1}'
        assert envelope["sender"] == "test"
        assert relay.stats["forwarded"] == 1

    @pytest.mark.asyncio
    async def test_own_messages_are_not_echoed(self, channel, redis_conn):
        relay = RedisNotificationRelay(channel, redis_conn, ["events_ingested"])

        await relay._forward(Notification(channel="events_ingested", payload="{}", sender=relay._origin))

        redis_conn.client.publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_start_without_redis(self, channel):
        conn = MagicMock()
        conn.is_connected = False
        conn.connect = AsyncMock(return_value=False)
        relay = RedisNotificationRelay(channel, conn, ["events_ingested"])

        assert await relay.start() is False
        assert channel.subscriber_count() == 0


class TestRedisRelayListener:
    """El listener sobrevive a errores de Redis y el stop nunca propaga."""

    @pytest.fixture
    def failing_pubsub(self):
        calls = []

        async def get_message(**kwargs):
            calls.append(kwargs)
            if len(calls) == 1:
                raise redis.exceptions.ConnectionError("gone")
            await asyncio.sleep(0.01)
            return None

        pubsub = MagicMock()
        pubsub.subscribe = AsyncMock()
        pubsub.unsubscribe = AsyncMock()
        pubsub.aclose = AsyncMock()
        pubsub.get_message = get_message
        pubsub.calls = calls
        return pubsub

    @pytest.mark.asyncio
    async def test_read_error_is_retried(self, channel, redis_conn, failing_pubsub, monkeypatch):
        monkeypatch.setattr(relay_module, "RETRY_DELAY_SECONDS", 0.0)
        redis_conn.client.pubsub = MagicMock(return_value=failing_pubsub)
        relay = RedisNotificationRelay(channel, redis_conn, ["events_ingested"])

        assert await relay.start() is True
        for _ in range(100):
            if len(failing_pubsub.calls) >= 2:
                break
            await asyncio.sleep(0.01)

        assert len(failing_pubsub.calls) >= 2
        assert relay.stats["errors"] == 1
        assert relay.stats["running"] is True

        await relay.stop()
        assert relay.stats["running"] is False
        failing_pubsub.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stop_after_listener_crash(self, channel, redis_conn):
        relay = RedisNotificationRelay(channel, redis_conn, ["events_ingested"])

        async def crash():
            raise RuntimeError("listener died")

        relay._task = asyncio.create_task(crash())
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert relay.stats["running"] is False
        await relay.stop()

    @pytest.mark.asyncio
    async def test_stop_tolerates_pubsub_close_error(self, channel, redis_conn):
        relay = RedisNotificationRelay(channel, redis_conn, ["events_ingested"])
        relay._pubsub = MagicMock()
        relay._pubsub.unsubscribe = AsyncMock(side_effect=redis.exceptions.ConnectionError("gone"))
        relay._pubsub.aclose = AsyncMock()

        await relay.stop()

        assert relay._pubsub is None
