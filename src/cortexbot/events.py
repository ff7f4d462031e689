"""Serialized event loop.

Socket.io callbacks, Redis subscriber callbacks and timers all arrive on
their own threads. None of them touch session or board state directly:
they post a callable here, and a single worker thread runs the posted
callables one at a time in arrival order.
"""

import logging
import queue
import threading
import traceback
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

# Sentinel placed on the queue to stop the worker
_STOP = object()


class EventLoop:
    """Single-threaded executor for all handlers and timers.

    Example:
        loop = EventLoop()
        loop.start()
        loop.post(handler, payload)
        loop.call_later(1.0, retry)
        loop.stop()
    """

    def __init__(self, name: str = "CortexEvents") -> None:
        self.name = name
        self._queue: queue.Queue = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def post(self, fn: Callable[..., Any], *args: Any) -> None:
        """Queue ``fn(*args)`` to run on the worker thread."""
        self._queue.put((fn, args))

    def call_later(self, delay: float, fn: Callable[..., Any], *args: Any) -> threading.Timer:
        """Post ``fn(*args)`` after ``delay`` seconds.

        There is no cancellation: the callable must check whether it is
        still relevant when it runs.

        Returns:
            The underlying timer (daemon), mainly for tests.
        """
        timer = threading.Timer(delay, self.post, args=(fn, *args))
        timer.daemon = True
        timer.start()
        return timer

    def start(self) -> None:
        """Start the worker thread. Does nothing if already started."""
        if self._running:
            return
        self._running = True
        self._thread = threading.Thread(target=self._run, daemon=True, name=self.name)
        self._thread.start()
        logger.debug(f"{self.name} started")

    def stop(self, timeout: float = 2.0) -> None:
        """Stop the worker after the events already queued."""
        if not self._running:
            return
        self._running = False
        self._queue.put(_STOP)
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        self._thread = None
        logger.debug(f"{self.name} stopped")

    def run_pending(self) -> int:
        """Run every queued event on the calling thread.

        Used when no worker is running (tests, shutdown).

        Returns:
            Number of events run.
        """
        count = 0
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return count
            if item is _STOP:
                continue
            self._dispatch(*item)
            count += 1

    def _run(self) -> None:
        while self._running:
            item = self._queue.get()
            if item is _STOP:
                break
            self._dispatch(*item)

    def _dispatch(self, fn: Callable[..., Any], args: tuple) -> None:
        try:
            fn(*args)
        except Exception as e:
            # One bad event must not kill the loop
            logger.error(f"Event handler {getattr(fn, '__name__', fn)} failed: {e}")
            logger.debug(traceback.format_exc())
