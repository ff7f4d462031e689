"""Event and command router.

Wires the game server connection and the coordination bus to the
session machine and the board tracker. Transports call
``post_server_event`` / ``post_bus_message`` from their own threads;
both only enqueue, and the single event loop thread runs
``handle_server_event`` / ``handle_bus_message`` one event at a time.
"""

import logging
import threading
from typing import Any, Optional

from cortexbot.bus import Bus, Channel
from cortexbot.deconflict import Deconflictor
from cortexbot.events import EventLoop
from cortexbot.gameclient import GameClient
from cortexbot.gamestate import GameState, GameStateCorrupted
from cortexbot.messages import (
    ForceStartCommand,
    JoinCommand,
    LeaveCommand,
    MessageParseError,
    OptionsCommand,
    Recommendation,
    StatusCommand,
    parse_command,
    parse_recommendation,
)
from cortexbot.patch import PatchError
from cortexbot.session import CommandRejected, Phase, Session
from cortexbot.settings import Config

logger = logging.getLogger(__name__)


class App:
    """One bot instance: server link, bus link, session and board.

    Example:
        app = App(config)
        app.start()
        exit_code = app.wait()
    """

    def __init__(
        self,
        config: Config,
        bus: Optional[Bus] = None,
        client: Optional[GameClient] = None,
        loop: Optional[EventLoop] = None,
    ) -> None:
        """Initialize the application (no connections yet).

        Args:
            config: Loaded configuration.
            bus: Bus to use; built from config if omitted.
            client: Game server client; built from config if omitted.
            loop: Event loop; a new one if omitted.
        """
        self.config = config
        self.bot_id = config.game.bot_id
        self.loop = loop or EventLoop()
        self.bus = bus or Bus(config.redis)
        self.client = client or GameClient(config.game.game_server_url, on_event=self.post_server_event)
        self.session = Session(
            config.game,
            server=self.client,
            scheduler=self.loop,
            notify=self.publish_state,
        )
        self.deconflictor = Deconflictor(
            self.bus,
            self.bus.channel(Channel.DECONFLICT),
            self.loop,
            on_collision=self.shutdown,
        )
        self.game_state: Optional[GameState] = None

        self.exit_code: Optional[int] = None
        self._stopped = threading.Event()

    # --- Lifecycle ---

    def start(self) -> None:
        """Start the event loop, then connect the bus and the server."""
        logger.info(f"[initializing] botId: {self.bot_id}")
        self.loop.start()

        self.bus.connect()
        self.bus.subscribe(self.bus.channel(Channel.COMMAND), self._bus_forwarder(Channel.COMMAND))
        self.bus.subscribe(self.bus.channel(Channel.RECOMMENDATION), self._bus_forwarder(Channel.RECOMMENDATION))
        self.bus.subscribe(self.bus.channel(Channel.ACTION), self._bus_forwarder(Channel.ACTION))
        self.bus.listen()
        self.loop.post(self.deconflictor.start)

        self.client.connect()

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        """Block until shutdown; returns the exit code."""
        self._stopped.wait(timeout)
        return self.exit_code

    def shutdown(self, exit_code: int = 0) -> None:
        """Request process exit with ``exit_code``. First request wins."""
        if self._stopped.is_set():
            return
        self.exit_code = exit_code
        logger.info(f"Shutting down (exit code {exit_code})")
        self._stopped.set()

    def quit(self) -> None:
        """Leave any lobby or match, then close both connections.

        The leave is queued behind pending events so it runs on the
        event loop like every other session change.
        """
        self.loop.post(self._leave_current)
        if self.loop.running:
            self.loop.stop()
        else:
            self.loop.run_pending()
        self.client.disconnect()
        self.bus.close()

    def _leave_current(self) -> None:
        if self.session.phase in (Phase.JOINED_LOBBY, Phase.PLAYING):
            self.session.leave()
            self._discard_match()

    # --- Inbound from the game server ---

    def post_server_event(self, name: str, *args: Any) -> None:
        """Queue a server event (called on the socket.io thread)."""
        self.loop.post(self.handle_server_event, name, *args)

    def handle_server_event(self, name: str, *args: Any) -> None:
        """Dispatch one server event. Runs on the event loop."""
        data = args[0] if args else None

        if name == "connect":
            self.session.on_connect()

        elif name == "disconnect":
            self._discard_match()
            exit_code = self.session.on_disconnect(data)
            if exit_code is not None:
                self.shutdown(exit_code)

        elif name == "error_set_username":
            self.session.on_username_result(data or "")

        elif name == "queue_update":
            self.session.on_queue_update(data or {})

        elif name == "game_start":
            self._on_game_start(data or {})

        elif name == "game_update":
            self._on_game_update(data or {})

        elif name == "game_lost":
            self.session.on_game_lost(data or {})
            self._discard_match()

        elif name == "game_won":
            self.session.on_game_won()
            self._discard_match()

        elif name == "chat_message":
            if len(args) > 1 and isinstance(args[1], dict):
                logger.debug(f"[chat] {args[1].get('username')}: {args[1].get('text')}")

        else:
            logger.debug(f"Unhandled server event: {name}")

    def _on_game_start(self, data: dict) -> None:
        if "playerIndex" not in data:
            logger.error(f"game_start without playerIndex dropped: {data}")
            return
        self.session.on_game_start(data)
        self.game_state = GameState.from_game_start(data)
        self.bus.create_game_keyspace(self.game_state.replay_id)

    def _on_game_update(self, data: dict) -> None:
        state = self.game_state
        if state is None or self.session.phase != Phase.PLAYING:
            logger.debug("game_update outside a match dropped")
            return

        turn = data.get("turn", 0)
        if not self.session.on_turn(turn):
            # Turn limit reached; the session already left
            self._discard_match()
            return

        self.bus.publish_json(Channel.GAME_UPDATE, data)
        try:
            state.update(data)
        except (PatchError, GameStateCorrupted) as e:
            logger.error(f"Abandoning match {state.replay_id}: {e}")
            self.publish_state({"error": f"board decode failed: {e}"})
            try:
                self.session.leave()
            except CommandRejected as rejected:
                logger.warning(f"{rejected}")
            self._discard_match()
            return

        self.bus.set_game_keys(state.get_snapshot())
        self.bus.publish_json(Channel.TURN, {"turn": state.turn, "replay_id": state.replay_id})

    def _discard_match(self) -> None:
        if self.game_state is not None:
            logger.debug(f"Discarding board for {self.game_state.replay_id}")
        self.game_state = None

    # --- Inbound from the bus ---

    def _bus_forwarder(self, channel: str):
        def forward(message: str) -> None:
            self.post_bus_message(channel, message)
        return forward

    def post_bus_message(self, channel: str, message: str) -> None:
        """Queue a bus message (called on the Redis subscriber thread)."""
        self.loop.post(self.handle_bus_message, channel, message)

    def handle_bus_message(self, channel: str, message: str) -> None:
        """Dispatch one bus message. Runs on the event loop."""
        try:
            if channel == Channel.COMMAND:
                self._on_command(parse_command(message))
            elif channel in (Channel.RECOMMENDATION, Channel.ACTION):
                self._on_recommendation(parse_recommendation(message))
            else:
                logger.debug(f"Message on unexpected channel {channel} dropped")
        except MessageParseError as e:
            logger.error(f"[JSON] received on {channel}: {message!r}, error: {e}")
        except CommandRejected as e:
            logger.warning(f"{e}")
            self.publish_state({"rejected": {"command": e.command, "reason": e.reason}})

    def _on_command(self, command) -> None:
        if isinstance(command, JoinCommand):
            self.session.join(command.game_type, command.game_id)
        elif isinstance(command, LeaveCommand):
            self.session.leave()
            self._discard_match()
        elif isinstance(command, OptionsCommand):
            self.session.set_options(command.game_speed)
        elif isinstance(command, ForceStartCommand):
            self.session.force_start()
        elif isinstance(command, StatusCommand):
            self.publish_state({"status": self.status()})

    def _on_recommendation(self, recommendation: Recommendation) -> None:
        if self.session.phase != Phase.PLAYING or self.game_state is None:
            logger.debug(f"Recommendation from {recommendation.recommender} outside a match dropped")
            return
        if recommendation.interrupt:
            self.session.clear_moves()
        for attack in recommendation.actions:
            self.session.attack(attack.start, attack.end, attack.is50)
        self.game_state.record_moves(len(recommendation.actions))
        logger.debug(
            f"Issued {len(recommendation.actions)} attack(s) from {recommendation.recommender}"
            + (" (interrupt)" if recommendation.interrupt else "")
        )

    # --- Outbound ---

    def publish_state(self, message: dict) -> None:
        self.bus.publish_json(Channel.STATE, message)

    def status(self) -> dict:
        status = self.session.status()
        status["botId"] = self.bot_id
        if self.game_state is not None:
            status["turn"] = self.game_state.turn
            status["moveCount"] = self.game_state.move_count
            # Last turn consumers can read from the match keyspace
            status["storedTurn"] = self.bus.get_game_keys("turn").get("turn")
        return status
