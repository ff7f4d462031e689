"""Startup check for another live instance using the same bot id.

Two processes configured with the same user id would share every bus
channel and fight over one game account. On startup each instance pings
its deconfliction channel and answers pings from others:

    1. subscribe to ``<prefix>-deconflict``
    2. once the subscription is confirmed, publish ``ping``
    3. on ``ping``: publish ``pong``
    4. on ``pong``: count it; a second pong within the window means a
       second instance answered, so this process exits.

Redis delivers our own publishes back to our subscriber, so our own
``pong`` is always the first response. This is an approximate lock,
not a consensus protocol: two instances starting at the same moment can
both detect each other, and a slow bus can hide a collision.
"""

import logging
import time
from enum import Enum
from typing import Any, Callable, Optional, Protocol

logger = logging.getLogger(__name__)

PING = "ping"
PONG = "pong"

# Seconds after our ping during which a second pong counts as a collision
DECONFLICT_WINDOW = 10.0
# Responses needed to prove another instance exists (self-echo + other)
COLLISION_RESPONSES = 2
# Process exit status on identity collision
EXIT_DECONFLICT = 15


class BusLink(Protocol):
    def publish(self, channel: str, message: str) -> Any: ...
    def subscribe(
        self,
        channel: str,
        handler: Callable[[str], None],
        on_subscribed: Optional[Callable[[], None]] = None,
    ) -> Any: ...


class EventScheduler(Protocol):
    def post(self, fn: Callable[..., Any], *args: Any) -> None: ...
    def call_later(self, delay: float, fn: Callable[..., Any], *args: Any) -> Any: ...


class DeconflictState(Enum):
    IDLE = "idle"
    PENDING = "pending"
    CLEAN = "clean"
    COLLISION = "collision"


class Deconflictor:
    """One-shot duplicate instance detector.

    Example:
        deconflictor = Deconflictor(bus, f"{prefix}-deconflict", loop,
                                    on_collision=app.shutdown)
        deconflictor.start()
    """

    def __init__(
        self,
        bus: BusLink,
        channel: str,
        scheduler: EventScheduler,
        on_collision: Callable[[int], None],
        on_clean: Optional[Callable[[], None]] = None,
        window: float = DECONFLICT_WINDOW,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the detector.

        Args:
            bus: Bus used to publish and subscribe.
            channel: The per-identity deconfliction channel.
            scheduler: Serialized event loop; bus messages and the
                window timer are run through it.
            on_collision: Called once with EXIT_DECONFLICT when another
                instance is detected.
            on_clean: Called once when the window closes cleanly.
            window: Seconds to wait for a second response.
            clock: Monotonic time source.
        """
        self.bus = bus
        self.channel = channel
        self.scheduler = scheduler
        self.on_collision = on_collision
        self.on_clean = on_clean
        self.window = window
        self._clock = clock

        self.state = DeconflictState.IDLE
        self.responses = 0
        self.started_at: Optional[float] = None

    def start(self) -> bool:
        """Run the handshake. Only the first call has any effect.

        The ping is sent once the bus confirms the subscription, so our
        own ping and pong are always seen.

        Returns:
            True if this call started the handshake.
        """
        if self.state != DeconflictState.IDLE:
            return False
        self.state = DeconflictState.PENDING

        self.bus.subscribe(self.channel, self._on_bus_message, on_subscribed=self._on_subscribed)
        logger.debug(f"Deconfliction started on {self.channel}")
        return True

    def _on_subscribed(self) -> None:
        # Called on the bus thread
        self.scheduler.post(self._send_ping)

    def _send_ping(self) -> None:
        if self.state != DeconflictState.PENDING or self.started_at is not None:
            return
        self.started_at = self._clock()
        self.bus.publish(self.channel, PING)
        self.scheduler.call_later(self.window, self._close_window)

    def _on_bus_message(self, message: str) -> None:
        # Called on the bus thread
        self.scheduler.post(self.handle_message, message)

    def handle_message(self, message: str) -> None:
        """Process one message from the deconfliction channel."""
        if message == PING:
            # Let a late-starting instance know we exist
            self.bus.publish(self.channel, PONG)
        elif message == PONG:
            self._on_pong()
        else:
            logger.debug(f"Ignoring unexpected deconfliction message: {message!r}")

    def _on_pong(self) -> None:
        # Pongs before our own ping answer some other instance
        if self.state != DeconflictState.PENDING or self.started_at is None:
            return
        self.responses += 1
        if self.responses < COLLISION_RESPONSES:
            return

        elapsed = self._clock() - self.started_at
        if elapsed < self.window:
            self.state = DeconflictState.COLLISION
            logger.error(
                f"Deconfliction failed: another instance answered on {self.channel} "
                f"after {elapsed:.1f}s. Select a unique userId and try again."
            )
            self.on_collision(EXIT_DECONFLICT)
        else:
            self._close_window()

    def _close_window(self) -> None:
        if self.state != DeconflictState.PENDING:
            return
        self.state = DeconflictState.CLEAN
        logger.info(f"Deconfliction complete ({self.responses} response(s))")
        if self.on_clean:
            self.on_clean()
