"""Socket.io connection to the generals.io bot server.

The client only moves messages. Every inbound server event is handed to
a single ``on_event(name, *args)`` callback; the caller decides which
thread handles it. Outbound messages are fire-and-forget emits.
"""

import logging
from typing import Any, Callable, Optional

import socketio

logger = logging.getLogger(__name__)

# Server events forwarded to the handler
SERVER_EVENTS = (
    "connect",
    "disconnect",
    "error_set_username",
    "queue_update",
    "game_start",
    "game_update",
    "game_lost",
    "game_won",
    "chat_message",
)


class GameClient:
    """Thin wrapper around ``socketio.Client``.

    Example:
        client = GameClient(url, on_event=lambda name, *args: print(name))
        client.connect()
        client.emit("join_1v1", user_id)
    """

    def __init__(
        self,
        url: str,
        on_event: Callable[..., None],
        sio: Optional[socketio.Client] = None,
    ) -> None:
        """Initialize the client and register event forwarding.

        Args:
            url: Game server URL (``wss://...``).
            on_event: Called as ``on_event(event_name, *args)``.
            sio: Socket.io client to use; tests pass a mock.
        """
        self.url = url
        self._on_event = on_event
        self.sio = sio or socketio.Client(
            reconnection=True,
            ssl_verify=False,
            logger=False,
        )
        for name in SERVER_EVENTS:
            self.sio.on(name, self._forwarder(name))
        self.sio.on("connect_error", self._on_connect_error)

    def _forwarder(self, name: str) -> Callable[..., None]:
        if name == "disconnect":
            # The reason is one of socketio.Client.reason
            def forward_disconnect(reason: Optional[str] = None) -> None:
                self._on_event("disconnect", reason)
            return forward_disconnect

        def forward(*args: Any) -> None:
            self._on_event(name, *args)
        return forward

    def _on_connect_error(self, data: Any = None) -> None:
        logger.error(f"[socket.io] connect error: {data}")

    @property
    def connected(self) -> bool:
        return bool(self.sio.connected)

    def connect(self) -> None:
        """Connect to the game server.

        Raises:
            socketio.exceptions.ConnectionError: If the first connection
                attempt fails. Later drops reconnect automatically.
        """
        logger.info(f"[socket.io] connecting to {self.url}")
        self.sio.connect(self.url, transports=["websocket"])

    def emit(self, event: str, *args: Any) -> None:
        """Send an event with positional arguments."""
        if not self.sio.connected:
            logger.warning(f"[socket.io] not connected, dropping {event}")
            return
        try:
            # A tuple is sent as multiple arguments
            self.sio.emit(event, args if len(args) != 1 else args[0])
        except socketio.exceptions.SocketIOError as e:
            logger.error(f"[socket.io] emit {event} failed: {e}")

    def disconnect(self) -> None:
        if self.sio.connected:
            self.sio.disconnect()
