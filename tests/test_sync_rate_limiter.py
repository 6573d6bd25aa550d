"""Tests for the destination rate limiter."""

import threading
import time

import pytest

from convoport.errors import QueueTimeoutError
from convoport.sync.rate_limiter import DestinationRateLimiter


class FakeTime:
    """Clock whose sleep advances time instead of blocking."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []
        self._lock = threading.Lock()

    def clock(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        with self._lock:
            self.sleeps.append(seconds)
            self.now += seconds


@pytest.fixture
def fake_time() -> FakeTime:
    return FakeTime()


def make_limiter(fake_time: FakeTime, **kwargs) -> DestinationRateLimiter:
    kwargs.setdefault("short_delay", 0.0)
    kwargs.setdefault("long_delay", 0.0)
    return DestinationRateLimiter(clock=fake_time.clock, sleep=fake_time.sleep, **kwargs)


class TestSlidingWindow:
    """Tests for the per-minute ceiling."""

    def test_calls_under_limit_not_delayed(self, fake_time: FakeTime) -> None:
        limiter = make_limiter(fake_time, requests_per_minute=3)
        results = [limiter.throttle(lambda i=i: i) for i in range(3)]

        assert results == [0, 1, 2]
        assert fake_time.now == 0.0

    def test_waits_for_oldest_dispatch_to_leave_window(self, fake_time: FakeTime) -> None:
        limiter = make_limiter(fake_time, requests_per_minute=3)
        dispatched: list[float] = []

        for _ in range(5):
            limiter.throttle(lambda: dispatched.append(fake_time.now))

        assert dispatched == pytest.approx([0.0, 0.0, 0.0, 60.1, 60.1])

    def test_window_never_exceeds_limit(self, fake_time: FakeTime) -> None:
        """No trailing 60s window should contain more than the limit."""
        limiter = make_limiter(fake_time, requests_per_minute=4, short_delay=7.0)
        dispatched: list[float] = []

        for _ in range(20):
            limiter.throttle(lambda: dispatched.append(fake_time.now))

        for start in dispatched:
            in_window = [t for t in dispatched if start <= t < start + 60]
            assert len(in_window) <= 4

    def test_invalid_limit(self) -> None:
        with pytest.raises(ValueError):
            DestinationRateLimiter(requests_per_minute=0)


class TestQueueTimeout:
    def test_stale_call_rejected(self, fake_time: FakeTime) -> None:
        """A call that waited past max_queue_seconds is rejected, not dispatched."""
        limiter = make_limiter(fake_time, requests_per_minute=1, max_queue_seconds=30)
        calls: list[int] = []

        limiter.throttle(lambda: calls.append(1))
        with pytest.raises(QueueTimeoutError):
            limiter.throttle(lambda: calls.append(2))

        assert calls == [1]
        assert limiter.queue_length == 0

    def test_limiter_usable_after_rejection(self, fake_time: FakeTime) -> None:
        limiter = make_limiter(fake_time, requests_per_minute=1, max_queue_seconds=30)
        limiter.throttle(lambda: None)
        with pytest.raises(QueueTimeoutError):
            limiter.throttle(lambda: None)

        assert limiter.throttle(lambda: "ok") == "ok"


class TestDispatchDelay:
    def test_short_delay_for_small_backlog(self, fake_time: FakeTime) -> None:
        limiter = make_limiter(fake_time, short_delay=0.2, long_delay=0.5)
        limiter.throttle(lambda: None)
        assert fake_time.sleeps == [0.2]

    def test_delay_applied_when_call_fails(self, fake_time: FakeTime) -> None:
        limiter = make_limiter(fake_time, short_delay=0.2)

        def fail() -> None:
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            limiter.throttle(fail)
        assert fake_time.sleeps == [0.2]

    def test_long_delay_for_large_backlog(self, fake_time: FakeTime) -> None:
        """The pause after a dispatch grows once the backlog passes the threshold."""
        limiter = make_limiter(fake_time, backlog_threshold=1, short_delay=0.2, long_delay=0.5)
        release = threading.Event()
        started = threading.Event()

        def blocking() -> None:
            started.set()
            release.wait(5)

        first = threading.Thread(target=limiter.throttle, args=(blocking,))
        first.start()
        assert started.wait(5)

        waiters = [threading.Thread(target=limiter.throttle, args=(lambda: None,)) for _ in range(2)]
        for w in waiters:
            w.start()
        deadline = time.monotonic() + 5
        while limiter.queue_length < 3 and time.monotonic() < deadline:
            time.sleep(0.001)

        release.set()
        for t in [first, *waiters]:
            t.join(5)

        assert fake_time.sleeps[0] == 0.5
        assert limiter.queue_length == 0


class TestOrdering:
    def test_concurrent_callers_dispatched_in_arrival_order(self, fake_time: FakeTime) -> None:
        """Callers queued behind a busy dispatch run in the order they arrived."""
        limiter = make_limiter(fake_time)
        release = threading.Event()
        started = threading.Event()
        order: list[int] = []

        def blocking() -> None:
            started.set()
            release.wait(5)

        head = threading.Thread(target=limiter.throttle, args=(blocking,))
        head.start()
        assert started.wait(5)

        waiters = []
        for i in range(6):
            waiter = threading.Thread(target=limiter.throttle, args=(lambda i=i: order.append(i),))
            waiter.start()
            waiters.append(waiter)
            # Wait for this caller to be queued before starting the next
            deadline = time.monotonic() + 5
            while limiter.queue_length < i + 2 and time.monotonic() < deadline:
                time.sleep(0.001)
            assert limiter.queue_length == i + 2

        release.set()
        for t in [head, *waiters]:
            t.join(5)

        assert order == [0, 1, 2, 3, 4, 5]
        assert limiter.queue_length == 0
