"""Tests for the Redis bus wrapper (Redis client mocked)."""

import json
import threading
import time
from unittest.mock import MagicMock

import pytest
import redis

from cortexbot.bus import GAME_KEYSPACE_TTL, Bus, Channel
from cortexbot.settings import RedisConfig


@pytest.fixture
def clients():
    return []


@pytest.fixture
def redis_bus(clients):
    def factory():
        client = MagicMock(spec=redis.Redis)
        clients.append(client)
        return client

    return Bus(RedisConfig(channel_prefix="cortex-abc"), client_factory=factory)


class TestChannels:
    def test_channel_names(self, redis_bus):
        assert redis_bus.channel(Channel.COMMAND) == "cortex-abc-command"
        assert redis_bus.channel(Channel.GAME_UPDATE) == "cortex-abc-gameUpdate"


class TestConnect:
    """Test connection setup."""

    def test_connect_pings_publisher(self, redis_bus, clients):
        redis_bus.connect()
        publisher, subscriber = clients
        publisher.ping.assert_called_once()
        subscriber.pubsub.assert_called_once_with()

    def test_connect_failure_propagates(self, redis_bus, clients):
        def failing_factory():
            client = MagicMock(spec=redis.Redis)
            client.ping.side_effect = redis.ConnectionError("refused")
            return client

        redis_bus._client_factory = failing_factory
        with pytest.raises(redis.ConnectionError):
            redis_bus.connect()

    def test_subscribe_before_connect(self, redis_bus):
        with pytest.raises(RuntimeError):
            redis_bus.subscribe("x", lambda message: None)


class TestSubscribe:
    """Test subscription and confirmations."""

    def test_handler_receives_data(self, redis_bus, clients):
        redis_bus.connect()
        pubsub = clients[1].pubsub.return_value
        received = []
        redis_bus.subscribe("cortex-abc-command", received.append)

        callback = pubsub.subscribe.call_args.kwargs["cortex-abc-command"]
        callback({"type": "message", "channel": "cortex-abc-command", "data": '{"leave": true}'})
        assert received == ['{"leave": true}']

    def test_bytes_are_decoded(self, redis_bus, clients):
        redis_bus.connect()
        pubsub = clients[1].pubsub.return_value
        received = []
        redis_bus.subscribe("ch", received.append)
        pubsub.subscribe.call_args.kwargs["ch"]({"data": b"ping"})
        assert received == ["ping"]

    def test_confirmation_calls_on_subscribed_once(self, redis_bus):
        redis_bus.connect()
        confirmed = []
        redis_bus.subscribe("cortex-abc-deconflict", lambda m: None, on_subscribed=lambda: confirmed.append(1))
        confirmation = {"type": "subscribe", "channel": "cortex-abc-deconflict", "data": 1}
        redis_bus.handle_control_message(confirmation)
        redis_bus.handle_control_message(confirmation)
        assert confirmed == [1]

    def test_other_control_messages_ignored(self, redis_bus):
        redis_bus.connect()
        confirmed = []
        redis_bus.subscribe("a", lambda m: None, on_subscribed=lambda: confirmed.append(1))
        redis_bus.handle_control_message({"type": "unsubscribe", "channel": "a", "data": 0})
        redis_bus.handle_control_message({"type": "subscribe", "channel": "b", "data": 1})
        assert confirmed == []

    def test_listen_before_connect(self, redis_bus):
        with pytest.raises(RuntimeError):
            redis_bus.listen()


def queue_replies(pubsub, *replies):
    """Make get_message return ``replies`` in order, then nothing."""
    pending = list(replies)

    def get_message(timeout):
        if not pending:
            time.sleep(0.01)
            return None
        reply = pending.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    pubsub.get_message.side_effect = get_message


class TestListener:
    """Test the listener thread against a mocked pubsub."""

    def test_confirmation_reported_on_listener_thread(self, redis_bus, clients):
        redis_bus.connect()
        pubsub = clients[1].pubsub.return_value
        queue_replies(pubsub, {"type": "subscribe", "channel": "a", "data": 1})
        confirmed = threading.Event()
        redis_bus.subscribe("a", lambda m: None, on_subscribed=confirmed.set)
        redis_bus.listen()
        try:
            assert confirmed.wait(2)
        finally:
            redis_bus.close()

    def test_listener_survives_read_errors(self, redis_bus, clients, monkeypatch):
        monkeypatch.setattr("cortexbot.bus.RECONNECT_DELAY", 0.01)
        redis_bus.connect()
        pubsub = clients[1].pubsub.return_value
        queue_replies(pubsub, redis.ConnectionError("reset"), {"type": "subscribe", "channel": "a", "data": 1})
        confirmed = threading.Event()
        redis_bus.subscribe("a", lambda m: None, on_subscribed=confirmed.set)
        redis_bus.listen()
        try:
            assert confirmed.wait(2)
        finally:
            redis_bus.close()

    def test_listen_twice_starts_one_thread(self, redis_bus, clients):
        redis_bus.connect()
        queue_replies(clients[1].pubsub.return_value)
        redis_bus.listen()
        listener = redis_bus._listener
        redis_bus.listen()
        try:
            assert redis_bus._listener is listener
        finally:
            redis_bus.close()


class TestPublish:
    """Test publishing and match keys."""

    def test_publish_json(self, redis_bus, clients):
        redis_bus.connect()
        redis_bus.publish_json(Channel.STATE, {"connected": "bot"})
        clients[0].publish.assert_called_once_with("cortex-abc-state", '{"connected": "bot"}')

    def test_publish_error_is_logged_not_raised(self, redis_bus, clients):
        redis_bus.connect()
        clients[0].publish.side_effect = redis.ConnectionError("gone")
        redis_bus.publish("cortex-abc-state", "x")

    def test_publish_before_connect_dropped(self, redis_bus):
        redis_bus.publish("cortex-abc-state", "x")

    def test_game_keyspace(self, redis_bus, clients):
        redis_bus.connect()
        keyspace = redis_bus.create_game_keyspace("r1")
        assert keyspace == "cortex-abc-r1"
        clients[0].rpush.assert_called_once_with("cortex-abc-replays", "r1")

    def test_set_game_keys(self, redis_bus, clients):
        redis_bus.connect()
        redis_bus.create_game_keyspace("r1")
        pipe = clients[0].pipeline.return_value
        redis_bus.set_game_keys({"turn": 3, "ownTiles": {"4": 2}})
        pipe.hset.assert_called_once_with("cortex-abc-r1", mapping={"turn": "3", "ownTiles": '{"4": 2}'})
        pipe.expire.assert_called_once_with("cortex-abc-r1", GAME_KEYSPACE_TTL)
        pipe.execute.assert_called_once()

    def test_set_game_keys_without_keyspace(self, redis_bus, clients):
        redis_bus.connect()
        redis_bus.set_game_keys({"turn": 3})
        clients[0].pipeline.assert_not_called()

    def test_get_game_keys(self, redis_bus, clients):
        redis_bus.connect()
        redis_bus.create_game_keyspace("r1")
        clients[0].hmget.return_value = [json.dumps(4), None]
        assert redis_bus.get_game_keys("width", "enemyGeneral") == {"width": 4}

    def test_get_game_keys_error_gives_empty(self, redis_bus, clients):
        redis_bus.connect()
        redis_bus.create_game_keyspace("r1")
        clients[0].hmget.side_effect = redis.ConnectionError("gone")
        assert redis_bus.get_game_keys("turn") == {}

    def test_get_game_keys_without_keyspace(self, redis_bus, clients):
        redis_bus.connect()
        assert redis_bus.get_game_keys("turn") == {}
        clients[0].hmget.assert_not_called()


class TestClose:
    def test_close_stops_listener(self, redis_bus, clients):
        redis_bus.connect()
        pubsub = clients[1].pubsub.return_value
        queue_replies(pubsub)
        redis_bus.listen()
        listener = redis_bus._listener
        redis_bus.close()
        assert not listener.is_alive()
        pubsub.close.assert_called_once()
        clients[0].close.assert_called_once()
        clients[1].close.assert_called_once()

    def test_close_without_connect(self, redis_bus):
        redis_bus.close()
