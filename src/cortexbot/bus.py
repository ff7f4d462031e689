"""Redis pub/sub bus shared with strategy processes.

Every channel and key is scoped by the channel prefix
(``<BOT_ID_PREFIX>-<botId>`` by default):

    <prefix>-command          commands for this bot (consumed)
    <prefix>-recommendation   attack batches from strategy processes (consumed)
    <prefix>-action           attack batches to issue (consumed)
    <prefix>-deconflict       duplicate instance handshake
    <prefix>-state            session notifications (produced)
    <prefix>-gameUpdate       raw per-turn updates (produced)
    <prefix>-turn             "facts for this turn are written" (produced)
    <prefix>-<replay_id>      hash of per-match facts, JSON values
    <prefix>-replays          list of match ids

Publishing never raises: bus failures are logged and the redis client
reconnects on the next call.
"""

import json
import logging
import threading
from typing import Any, Callable, Optional

import redis

from cortexbot.settings import RedisConfig

logger = logging.getLogger(__name__)


class Channel:
    COMMAND = "command"
    STATE = "state"
    GAME_UPDATE = "gameUpdate"
    TURN = "turn"
    ACTION = "action"
    RECOMMENDATION = "recommendation"
    DECONFLICT = "deconflict"


REPLAYS_KEY = "replays"
# Per-match facts are kept for a day
GAME_KEYSPACE_TTL = 60 * 60 * 24
# Seconds the listener blocks waiting for a pubsub message
LISTEN_TIMEOUT = 1.0
RECONNECT_DELAY = 1.0


class Bus:
    """Publisher/subscriber pair on one Redis server.

    Two connections are used because a connection in subscribe mode
    cannot issue other commands.

    Example:
        bus = Bus(config.redis)
        bus.connect()
        bus.subscribe(bus.channel(Channel.COMMAND), on_command)
        bus.listen()
        bus.publish_json(Channel.STATE, {"connected": "cortex"})
    """

    def __init__(
        self,
        config: RedisConfig,
        client_factory: Optional[Callable[[], redis.Redis]] = None,
    ) -> None:
        """Initialize the bus (no connection yet).

        Args:
            config: Redis connection settings and channel prefix.
            client_factory: Builds a Redis client; defaults to one built
                from ``config.url``. Tests pass a mock here.
        """
        self.config = config
        self.prefix = config.channel_prefix
        self._client_factory = client_factory or self._default_client
        self._publisher: Optional[redis.Redis] = None
        self._subscriber: Optional[redis.Redis] = None
        self._pubsub: Optional[redis.client.PubSub] = None
        self._listener: Optional[threading.Thread] = None
        self._stopping = threading.Event()
        self._on_subscribed: dict[str, Callable[[], None]] = {}
        self.game_keyspace: Optional[str] = None

    def _default_client(self) -> redis.Redis:
        return redis.Redis.from_url(
            self.config.url,
            decode_responses=True,
            health_check_interval=30,
        )

    def channel(self, name: str) -> str:
        """Full channel (or key) name for ``name``."""
        return f"{self.prefix}-{name}"

    def connect(self) -> None:
        """Open both connections and check the server answers.

        Raises:
            redis.RedisError: If the server cannot be reached.
        """
        self._publisher = self._client_factory()
        self._subscriber = self._client_factory()
        self._publisher.ping()
        # Subscribe confirmations are kept so on_subscribed callbacks can fire
        self._pubsub = self._subscriber.pubsub()
        logger.info(f"[Redis] connected to {self.config.host}:{self.config.port} (prefix {self.prefix})")

    def subscribe(
        self,
        channel: str,
        handler: Callable[[str], None],
        on_subscribed: Optional[Callable[[], None]] = None,
    ) -> None:
        """Call ``handler(message)`` for every message on ``channel``.

        Args:
            channel: Fully qualified channel name.
            handler: Called on the listener thread for each message.
            on_subscribed: Called once on the listener thread when the
                server confirms the subscription.
        """
        if self._pubsub is None:
            raise RuntimeError("Bus not connected")

        def on_message(message: dict) -> None:
            data = message.get("data")
            if isinstance(data, bytes):
                data = data.decode("utf-8", errors="replace")
            handler(data)

        if on_subscribed is not None:
            self._on_subscribed[channel] = on_subscribed
        self._pubsub.subscribe(**{channel: on_message})
        logger.debug(f"[Redis] subscribed to {channel}")

    def listen(self) -> None:
        """Start the listener thread. Does nothing if already started."""
        if self._pubsub is None:
            raise RuntimeError("Bus not connected")
        if self._listener is not None:
            return
        self._stopping.clear()
        self._listener = threading.Thread(target=self._listen, daemon=True, name="CortexBus")
        self._listener.start()

    def _listen(self) -> None:
        pubsub = self._pubsub
        while not self._stopping.is_set():
            try:
                # Channel messages are dispatched to their handlers inside get_message
                message = pubsub.get_message(timeout=LISTEN_TIMEOUT)
            except redis.RedisError as e:
                # The connection is re-established on the next read
                logger.error(f"[Redis] subscriber error: {e}")
                self._stopping.wait(RECONNECT_DELAY)
                continue
            if message is not None:
                self.handle_control_message(message)

    def handle_control_message(self, message: dict) -> None:
        """Process a non-data pubsub message (subscribe confirmations)."""
        if message.get("type") != "subscribe":
            return
        channel = message.get("channel")
        if isinstance(channel, bytes):
            channel = channel.decode("utf-8")
        callback = self._on_subscribed.pop(channel, None)
        if callback:
            callback()

    def publish(self, channel: str, message: str) -> None:
        """Publish a raw string on a fully qualified channel."""
        if self._publisher is None:
            logger.warning(f"[Redis] not connected, dropping publish to {channel}")
            return
        try:
            self._publisher.publish(channel, message)
        except redis.RedisError as e:
            logger.error(f"[Redis] publish to {channel} failed: {e}")

    def publish_json(self, name: str, data: Any) -> None:
        """Publish ``data`` as JSON on ``<prefix>-<name>``."""
        self.publish(self.channel(name), json.dumps(data))

    def create_game_keyspace(self, replay_id: str) -> str:
        """Start the keyspace for a new match and record its id."""
        self.game_keyspace = self.channel(replay_id)
        if self._publisher is not None:
            try:
                self._publisher.rpush(self.channel(REPLAYS_KEY), replay_id)
            except redis.RedisError as e:
                logger.error(f"[Redis] failed to record replay {replay_id}: {e}")
        return self.game_keyspace

    def set_game_keys(self, values: dict[str, Any]) -> None:
        """Store JSON-encoded values in the current match hash."""
        if self._publisher is None or self.game_keyspace is None:
            logger.warning("[Redis] no game keyspace, dropping game keys")
            return
        mapping = {key: json.dumps(value) for key, value in values.items()}
        try:
            pipe = self._publisher.pipeline()
            pipe.hset(self.game_keyspace, mapping=mapping)
            pipe.expire(self.game_keyspace, GAME_KEYSPACE_TTL)
            pipe.execute()
        except redis.RedisError as e:
            logger.error(f"[Redis] failed to write {self.game_keyspace}: {e}")

    def get_game_keys(self, *keys: str) -> dict[str, Any]:
        """Read back JSON-decoded values from the current match hash.

        Missing keys are left out; read failures are logged and give {}.
        """
        if self._publisher is None or self.game_keyspace is None:
            return {}
        try:
            values = self._publisher.hmget(self.game_keyspace, list(keys))
        except redis.RedisError as e:
            logger.error(f"[Redis] failed to read {self.game_keyspace}: {e}")
            return {}
        return {key: json.loads(value) for key, value in zip(keys, values) if value is not None}

    def close(self) -> None:
        """Stop the subscriber thread and close both connections."""
        self._stopping.set()
        if self._listener is not None:
            if self._listener is not threading.current_thread():
                self._listener.join(timeout=LISTEN_TIMEOUT * 2)
            self._listener = None
        for client in (self._pubsub, self._subscriber, self._publisher):
            if client is None:
                continue
            try:
                client.close()
            except redis.RedisError as e:
                logger.debug(f"[Redis] error while closing: {e}")
        self._pubsub = None
        self._subscriber = None
        self._publisher = None
        logger.info("[Redis] closed")
