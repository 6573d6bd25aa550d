"""FIFO rate limiter for destination API calls."""

import threading
import time
from collections import deque
from typing import Callable, TypeVar

from convoport.errors import QueueTimeoutError
from convoport.logging import get_logger

logger = get_logger("rate_limiter")

T = TypeVar("T")

WINDOW_SECONDS = 60.0
# Extra wait after the oldest dispatch leaves the window
WINDOW_BUFFER_SECONDS = 0.1


class _Ticket:
    __slots__ = ("enqueued_at",)

    def __init__(self, enqueued_at: float) -> None:
        self.enqueued_at = enqueued_at


class DestinationRateLimiter:
    """Single-worker FIFO queue in front of a rate-limited API.

    Guarantees:
      - at most `requests_per_minute` dispatches in any trailing 60s window
      - a call that waited longer than `max_queue_seconds` is rejected with
        QueueTimeoutError instead of being dispatched
      - calls are dispatched one at a time, in arrival order
      - after each dispatch the worker pauses: `short_delay` while the
        backlog is at most `backlog_threshold`, `long_delay` above it
    """

    def __init__(
        self,
        requests_per_minute: int = 30,
        max_queue_seconds: float = 300.0,
        backlog_threshold: int = 50,
        short_delay: float = 0.2,
        long_delay: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if requests_per_minute < 1:
            raise ValueError("requests_per_minute must be at least 1")
        self.requests_per_minute = requests_per_minute
        self.max_queue_seconds = max_queue_seconds
        self.backlog_threshold = backlog_threshold
        self.short_delay = short_delay
        self.long_delay = long_delay
        self._clock = clock
        self._sleep = sleep
        self._queue: deque[_Ticket] = deque()
        self._dispatches: deque[float] = deque()
        self._cond = threading.Condition()
        self._busy = False

    @property
    def queue_length(self) -> int:
        """Calls waiting or in flight."""
        with self._cond:
            return len(self._queue)

    def throttle(self, fn: Callable[[], T]) -> T:
        """Queue fn and run it when its turn comes and the window allows.

        Exceptions raised by fn propagate to the caller.
        """
        ticket = _Ticket(self._clock())
        with self._cond:
            self._queue.append(ticket)
            while self._busy or self._queue[0] is not ticket:
                self._cond.wait()
            self._busy = True

        try:
            return self._dispatch(ticket, fn)
        finally:
            with self._cond:
                self._queue.popleft()
                self._busy = False
                self._cond.notify_all()

    def _prune(self, now: float) -> None:
        while self._dispatches and now - self._dispatches[0] >= WINDOW_SECONDS:
            self._dispatches.popleft()

    def _dispatch(self, ticket: _Ticket, fn: Callable[[], T]) -> T:
        while True:
            now = self._clock()
            waited = now - ticket.enqueued_at
            if waited > self.max_queue_seconds:
                logger.warning("Rejecting stale request: waited=%.1fs", waited)
                raise QueueTimeoutError("Request timeout: took too long in queue")

            self._prune(now)
            if len(self._dispatches) < self.requests_per_minute:
                break

            wait = WINDOW_SECONDS - (now - self._dispatches[0]) + WINDOW_BUFFER_SECONDS
            logger.debug("Rate limit reached, waiting %.1fs", wait)
            self._sleep(wait)

        self._dispatches.append(self._clock())
        try:
            return fn()
        finally:
            backlog = self.queue_length - 1
            self._sleep(self.long_delay if backlog > self.backlog_threshold else self.short_delay)
