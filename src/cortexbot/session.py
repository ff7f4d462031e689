"""Session phase machine for the game server connection.

Tracks where the bot is in the connect -> lobby -> play lifecycle and
decides which commands may be sent to the server. Commands that do not
fit the current phase are rejected, never queued.

Lobby setup (force start, custom options) is retried from several
triggers: explicit bus commands, lobby population changes and delayed
timers after joining. Each of the two actions has a one-shot latch that
is set together with the send, so whichever trigger fires first sends
and the rest are no-ops until the latch is reset.
"""

import logging
import random
from enum import Enum
from typing import Any, Callable, Optional, Protocol

import socketio

from cortexbot.settings import GameConfig

logger = logging.getLogger(__name__)

# Disconnect reasons passed to the disconnect handler by python-socketio
SERVER_DISCONNECT = socketio.Client.reason.SERVER_DISCONNECT
CLIENT_DISCONNECT = socketio.Client.reason.CLIENT_DISCONNECT

# Process exit statuses
EXIT_CLEAN = 0
EXIT_SERVER_DISCONNECT = 3

# Delays (seconds) before lobby setup actions
CUSTOM_OPTIONS_DELAY = 0.1
FORCE_START_DELAY = 2.0
FORCE_START_COMMAND_DELAY = 0.1
QUEUE_FORCE_START_DELAY = 1.0
WAR_CRY_INTERVAL = 3.0


class Phase(Enum):
    """Session lifecycle phases."""
    UNINITIALIZED = "uninitialized"
    CONNECTED = "connected"
    JOINED_LOBBY = "joined_lobby"
    PLAYING = "playing"


class GameType(Enum):
    """Game queues the bot can join."""
    FFA = "ffa"
    DUEL = "1v1"
    CUSTOM = "custom"


class CommandRejected(Exception):
    """Raised when a command is not legal in the current phase."""

    def __init__(self, command: str, reason: str) -> None:
        super().__init__(f"[{command}] {reason}")
        self.command = command
        self.reason = reason


class ServerLink(Protocol):
    def emit(self, event: str, *args: Any) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, fn: Callable[..., Any], *args: Any) -> Any: ...


class Session:
    """Phase machine and outbound command gate.

    All methods must be called from the serialized event loop.

    Example:
        session = Session(config.game, server=client, scheduler=loop)
        session.on_connect()
        session.join("custom", "my_game")
    """

    def __init__(
        self,
        config: GameConfig,
        server: ServerLink,
        scheduler: Scheduler,
        notify: Optional[Callable[[dict], None]] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        """Initialize the session in UNINITIALIZED.

        Args:
            config: Game settings (user id, custom game, turn limit...).
            server: Outbound link to the game server.
            scheduler: Provides ``call_later`` for delayed events.
            notify: Called with session-state notifications for the bus.
            rng: Random source for chat timing.
        """
        self.config = config
        self.server = server
        self.scheduler = scheduler
        self._notify = notify
        self._rng = rng or random.Random()

        self.phase: Phase = Phase.UNINITIALIZED
        self.game_type: Optional[GameType] = None
        self.game_id: Optional[str] = None
        self.replay_id: Optional[str] = None
        self.usernames: list[str] = []
        self.queue_num_players: int = 0

        # Latches: True once the action was sent for the current lobby
        self.force_start_sent: bool = False
        self.custom_options_sent: bool = False

    # --- Server events ---

    def on_connect(self) -> None:
        """Handle the server acknowledging the connection."""
        if self.phase != Phase.UNINITIALIZED:
            logger.warning(f"connect received while {self.phase.value}; resetting session")
        self._set_phase(Phase.CONNECTED)
        logger.info(f"[connected] {self.config.username}")
        self._publish({"connected": self.config.username})

        if self.config.set_username:
            self.server.emit("set_username", self.config.user_id, self.config.username)
            logger.debug(f"sent: set_username, {self.config.username}")

    def on_disconnect(self, reason: Optional[str]) -> Optional[int]:
        """Handle losing the server connection.

        Returns:
            The exit status when the disconnect is terminal, else None
            (the transport will reconnect and fire connect again).
        """
        self._set_phase(Phase.UNINITIALIZED)
        self._reset_latches()
        self._publish({"disconnected": reason or ""})

        if reason == SERVER_DISCONNECT:
            logger.error(f"disconnected: {reason}")
            return EXIT_SERVER_DISCONNECT
        if reason == CLIENT_DISCONNECT:
            logger.info("disconnected by client")
            return EXIT_CLEAN
        logger.warning(f"disconnected: {reason}; waiting for reconnection")
        return None

    def on_username_result(self, message: str) -> None:
        if message == "":
            logger.info(f"[set_username] username set to {self.config.username}")
        else:
            logger.error(f"[error_set_username] {message}")

    def on_game_start(self, data: dict) -> None:
        """Enter PLAYING for a newly started match."""
        if self.phase != Phase.JOINED_LOBBY:
            # The server is authoritative about match membership
            logger.warning(f"game_start received while {self.phase.value}")
        self.replay_id = data.get("replay_id")
        self.usernames = list(data.get("usernames") or [])
        self._set_phase(Phase.PLAYING)
        logger.info(f"[game_start] replay: {self.replay_id}, users: {self.usernames}")
        self._publish({"game_start": data})
        self._schedule_war_cry(data.get("chat_room"))

    def on_game_won(self) -> None:
        logger.info(f"[game_won] {self.replay_id}")
        self._publish({"game_won": {"replay_id": self.replay_id}})
        self._end_match()

    def on_game_lost(self, data: dict) -> None:
        killer = data.get("killer")
        killer_name = data.get("killer_name")
        if killer_name is None and isinstance(killer, int) and 0 <= killer < len(self.usernames):
            killer_name = self.usernames[killer]
        logger.info(f"[game_lost] {self.replay_id}, killer: {killer_name}")
        self._publish({"game_lost": {"replay_id": self.replay_id, "killer": killer, "killer_name": killer_name}})
        self._end_match()

    def on_turn(self, turn: int) -> bool:
        """Check the turn limit for an incoming update.

        Returns:
            True if the update may be processed, False if the turn limit
            was exceeded and the match was left instead.
        """
        if self.phase != Phase.PLAYING:
            return False
        if turn > self.config.max_turns:
            logger.warning(f"Turn {turn} exceeds limit {self.config.max_turns}; leaving {self.replay_id}")
            self.leave()
            return False
        return True

    def on_queue_update(self, data: dict) -> None:
        """React to lobby population changes.

        Re-arms force start whenever the lobby is not forcing, and
        re-applies the custom game speed when this bot hosts the lobby
        and the player count changed.
        """
        if self.phase != Phase.JOINED_LOBBY:
            logger.debug(f"queue_update ignored while {self.phase.value}")
            return

        if not data.get("isForcing"):
            self.force_start_sent = False
            self.scheduler.call_later(QUEUE_FORCE_START_DELAY, self.send_force_start)

        usernames = data.get("usernames") or []
        num_players = data.get("numPlayers", 0)
        options = data.get("options") or {}
        if (
            self.game_type == GameType.CUSTOM
            and usernames
            and usernames[0] == self.config.username
            and num_players != self.queue_num_players
            and options.get("game_speed") != self.config.custom_game_speed
        ):
            self.custom_options_sent = False
            self.scheduler.call_later(CUSTOM_OPTIONS_DELAY, self.send_custom_options)
        self.queue_num_players = num_players

    # --- Commands ---

    def join(self, game_type: str, game_id: Optional[str] = None) -> None:
        """Join a game queue or a private lobby.

        Raises:
            CommandRejected: If not CONNECTED or the game type is unknown.
        """
        if self.phase != Phase.CONNECTED:
            raise CommandRejected("join", f"cannot join while {self.phase.value}")
        try:
            kind = GameType(game_type)
        except ValueError:
            raise CommandRejected("join", f"invalid gameType: {game_type}") from None

        user_id = self.config.user_id
        if kind == GameType.FFA:
            self.server.emit("play", user_id)
            self.game_id = None
        elif kind == GameType.DUEL:
            self.server.emit("join_1v1", user_id)
            self.game_id = None
        else:
            self.game_id = game_id or self.config.custom_game_id
            if not self.game_id:
                raise CommandRejected("join", "custom game requires a gameId")
            self.server.emit("join_private", self.game_id, user_id)

        self.game_type = kind
        self.queue_num_players = 0
        self._reset_latches()
        self._set_phase(Phase.JOINED_LOBBY)

        label = f"custom: {self.game_id}" if kind == GameType.CUSTOM else kind.value
        logger.info(f"[joined] {label}")
        joined = {"gameType": kind.value}
        if self.game_id:
            joined["gameId"] = self.game_id
        self._publish({"joined": joined})

        if kind == GameType.CUSTOM:
            self.scheduler.call_later(CUSTOM_OPTIONS_DELAY, self.send_custom_options)
            self.scheduler.call_later(FORCE_START_DELAY, self.send_force_start)

    def leave(self) -> None:
        """Leave the lobby (``cancel``) or the running match (``leave_game``).

        Raises:
            CommandRejected: If not in a lobby or match.
        """
        if self.phase == Phase.JOINED_LOBBY:
            self.server.emit("cancel")
            logger.debug("sent: cancel")
        elif self.phase == Phase.PLAYING:
            self.server.emit("leave_game")
            logger.debug("sent: leave_game")
        else:
            raise CommandRejected("leave", "not in a game")

        self._set_phase(Phase.CONNECTED)
        self._reset_latches()
        self._publish({"left": True})

    def set_options(self, game_speed: Optional[int] = None) -> None:
        """Re-apply custom game options, optionally with a new speed.

        Raises:
            CommandRejected: If not in a custom lobby.
        """
        if self.phase != Phase.JOINED_LOBBY:
            raise CommandRejected("options", "not in lobby")
        if self.game_type != GameType.CUSTOM:
            raise CommandRejected("options", "options only apply to custom games")
        if game_speed is not None:
            self.config.custom_game_speed = game_speed
        self.custom_options_sent = False
        self.scheduler.call_later(CUSTOM_OPTIONS_DELAY, self.send_custom_options)

    def force_start(self) -> None:
        """Request force start on behalf of a bus command.

        Raises:
            CommandRejected: If not in a lobby.
        """
        if self.phase != Phase.JOINED_LOBBY:
            raise CommandRejected("forceStart", "not in lobby")
        self.force_start_sent = False
        self.scheduler.call_later(FORCE_START_COMMAND_DELAY, self.send_force_start)

    def attack(self, start: int, end: int, is50: bool = False) -> None:
        """Send one attack.

        Raises:
            CommandRejected: If no match is running.
        """
        if self.phase != Phase.PLAYING:
            raise CommandRejected("attack", "not playing")
        self.server.emit("attack", start, end, is50)

    def clear_moves(self) -> None:
        if self.phase != Phase.PLAYING:
            raise CommandRejected("clear_moves", "not playing")
        self.server.emit("clear_moves")

    def status(self) -> dict:
        """Current session status for status queries."""
        return {
            "phase": self.phase.value,
            "gameType": self.game_type.value if self.game_type else None,
            "gameId": self.game_id,
            "replay_id": self.replay_id if self.phase == Phase.PLAYING else None,
            "forceStartSent": self.force_start_sent,
            "customOptionsSent": self.custom_options_sent,
        }

    # --- Latched lobby actions (timer targets) ---

    def send_force_start(self) -> bool:
        """Send force start once per latch cycle.

        Returns:
            True if the message was sent by this call.
        """
        if self.phase != Phase.JOINED_LOBBY or self.force_start_sent:
            return False
        self.force_start_sent = True
        self.server.emit("set_force_start", self.game_id or "", True)
        logger.debug("sent: set_force_start")
        return True

    def send_custom_options(self) -> bool:
        """Send custom game options once per latch cycle.

        Returns:
            True if the message was sent by this call.
        """
        if (
            self.phase != Phase.JOINED_LOBBY
            or self.game_type != GameType.CUSTOM
            or self.custom_options_sent
        ):
            return False
        self.custom_options_sent = True
        self.server.emit(
            "set_custom_options",
            self.game_id,
            {"game_speed": self.config.custom_game_speed},
        )
        logger.debug(f"sent: set_custom_options (game_speed={self.config.custom_game_speed})")
        return True

    def send_chat(self, chat_room: str, text: str, replay_id: Optional[str] = None) -> bool:
        """Send a chat line if still in the match it was meant for."""
        if self.phase != Phase.PLAYING or (replay_id and replay_id != self.replay_id):
            return False
        self.server.emit("chat_message", chat_room, text)
        logger.debug(f"sent: [chat_message] {text}")
        return True

    # --- Internals ---

    def _end_match(self) -> None:
        if self.phase == Phase.PLAYING:
            self.server.emit("leave_game")
            logger.debug("sent: leave_game")
        self._set_phase(Phase.CONNECTED)
        self._reset_latches()

    def _schedule_war_cry(self, chat_room: Optional[str]) -> None:
        # Spread lines out at random intervals to appear more human
        if not chat_room:
            return
        for i, line in enumerate(self.config.war_cry):
            delay = self._rng.uniform(i * WAR_CRY_INTERVAL, (i + 1) * WAR_CRY_INTERVAL)
            self.scheduler.call_later(delay, self.send_chat, chat_room, line, self.replay_id)

    def _reset_latches(self) -> None:
        self.force_start_sent = False
        self.custom_options_sent = False

    def _set_phase(self, phase: Phase) -> None:
        if phase != self.phase:
            logger.debug(f"phase: {self.phase.value} -> {phase.value}")
        self.phase = phase

    def _publish(self, message: dict) -> None:
        if self._notify:
            self._notify(message)
