"""Shared fakes for the server link, the bus and the scheduler."""

import json
from typing import Any, Callable

import pytest

from cortexbot.settings import GameConfig, RedisConfig, Config


class FakeServer:
    """Records every emitted server event."""

    def __init__(self):
        self.sent: list[tuple] = []

    def emit(self, event: str, *args: Any) -> None:
        self.sent.append((event, *args))

    def events(self) -> list[str]:
        return [item[0] for item in self.sent]

    def count(self, event: str) -> int:
        return self.events().count(event)


class FakeScheduler:
    """Collects posted and delayed calls; tests fire them explicitly."""

    def __init__(self):
        self.posted: list[tuple[Callable, tuple]] = []
        self.delayed: list[tuple[float, Callable, tuple]] = []

    def post(self, fn: Callable, *args: Any) -> None:
        self.posted.append((fn, args))

    def call_later(self, delay: float, fn: Callable, *args: Any) -> None:
        self.delayed.append((delay, fn, args))

    def run_posted(self) -> None:
        while self.posted:
            fn, args = self.posted.pop(0)
            fn(*args)

    def fire_delayed(self) -> None:
        """Fire every delayed call in delay order, including ones they add."""
        while self.delayed:
            self.delayed.sort(key=lambda item: item[0])
            _, fn, args = self.delayed.pop(0)
            fn(*args)

    def delays_for(self, fn_name: str) -> list[float]:
        return [delay for delay, fn, _ in self.delayed if fn.__name__ == fn_name]


class FakeBus:
    """In-memory bus that echoes publishes to local subscribers like Redis does."""

    def __init__(self, prefix: str = "cortex-test"):
        self.prefix = prefix
        self.published: list[tuple[str, str]] = []
        self.handlers: dict[str, list[Callable[[str], None]]] = {}
        self.game_keyspace = None
        self.game_keys: dict[str, Any] = {}
        self.replays: list[str] = []
        self.echo = True
        # When False, subscriptions wait for confirm(channel)
        self.auto_confirm = True
        self.unconfirmed: dict[str, Callable[[], None]] = {}
        self.connected = False
        self.listening = False
        self.closed = False

    def channel(self, name: str) -> str:
        return f"{self.prefix}-{name}"

    def connect(self) -> None:
        self.connected = True

    def subscribe(self, channel: str, handler: Callable[[str], None], on_subscribed=None) -> None:
        self.handlers.setdefault(channel, []).append(handler)
        if on_subscribed is None:
            return
        if self.auto_confirm:
            on_subscribed()
        else:
            self.unconfirmed[channel] = on_subscribed

    def confirm(self, channel: str) -> None:
        self.unconfirmed.pop(channel)()

    def listen(self) -> None:
        self.listening = True

    def publish(self, channel: str, message: str) -> None:
        self.published.append((channel, message))
        if self.echo:
            for handler in self.handlers.get(channel, []):
                handler(message)

    def publish_json(self, name: str, data: Any) -> None:
        self.publish(self.channel(name), json.dumps(data))

    def create_game_keyspace(self, replay_id: str) -> str:
        self.game_keyspace = self.channel(replay_id)
        self.replays.append(replay_id)
        return self.game_keyspace

    def set_game_keys(self, values: dict) -> None:
        self.game_keys.update(json.loads(json.dumps(values)))

    def get_game_keys(self, *keys: str) -> dict:
        return {key: self.game_keys[key] for key in keys if key in self.game_keys}

    def close(self) -> None:
        self.closed = True

    def messages(self, name: str) -> list[Any]:
        """Decoded JSON messages published on ``<prefix>-<name>``."""
        channel = self.channel(name)
        return [json.loads(message) for ch, message in self.published if ch == channel]


class FakeClient(FakeServer):
    """FakeServer with the GameClient connection surface."""

    def __init__(self):
        super().__init__()
        self.connected = False

    def connect(self) -> None:
        self.connected = True

    def disconnect(self) -> None:
        self.connected = False


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def game_config():
    return GameConfig(
        user_id="secret-user-id",
        username="[Bot] cortex",
        custom_game_id="cortex_lab",
        custom_game_speed=4,
        max_turns=500,
    )


@pytest.fixture
def config(game_config):
    return Config(game=game_config, redis=RedisConfig(channel_prefix="cortex-test"))


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def bus():
    return FakeBus()


@pytest.fixture
def clock():
    return FakeClock()
