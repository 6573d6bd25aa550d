"""Error classification and recovery directives."""

import re
import threading
import time
from dataclasses import dataclass
from typing import Callable

import httpx

from convoport.errors import ErrorClass, SyncError
from convoport.logging import get_logger

logger = get_logger("recovery")

RATE_LIMIT_COOLDOWN_SECONDS = 60.0
NETWORK_RETRY_DELAY_SECONDS = 5.0
CHECK_INTERVAL_SECONDS = 5.0
CHECK_TIMEOUT_SECONDS = 5.0

# Fallback for exceptions raised outside convoport (third-party clients, callbacks)
MESSAGE_MARKERS: list[tuple[ErrorClass, re.Pattern[str]]] = [
    (ErrorClass.RATE_LIMIT, re.compile(r"\b429\b|rate[ _-]?limit|too many requests")),
    (ErrorClass.AUTH_ERROR, re.compile(r"\b401\b|unauthori[sz]ed")),
    (ErrorClass.NETWORK_ERROR, re.compile(r"network|fetch|connection|timed out|timeout")),
    (ErrorClass.DATA_ERROR, re.compile(r"validation|invalid")),
]


def classify_error(exc: BaseException) -> ErrorClass:
    """Map an exception to an error class.

    convoport errors carry their class; httpx transport failures are
    network errors; anything else is matched on its message.
    """
    if isinstance(exc, SyncError):
        return exc.error_class
    if isinstance(exc, (httpx.TransportError, ConnectionError, TimeoutError)):
        return ErrorClass.NETWORK_ERROR

    message = str(exc).lower()
    for error_class, pattern in MESSAGE_MARKERS:
        if pattern.search(message):
            return error_class
    return ErrorClass.UNKNOWN


def is_retryable(exc: BaseException) -> bool:
    """Auth and data errors never succeed on a second try."""
    if not isinstance(exc, Exception):
        return False
    return classify_error(exc) not in (ErrorClass.AUTH_ERROR, ErrorClass.DATA_ERROR)


class Connectivity:
    """Online/offline signal that callers can block on.

    With a check, waiting also runs the check (at most once per
    `check_interval`) and flips back online as soon as it succeeds.
    """

    def __init__(
        self,
        online: bool = True,
        check: Callable[[], bool] | None = None,
        check_interval: float = CHECK_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._online = threading.Event()
        if online:
            self._online.set()
        self._check = check
        self._check_interval = check_interval
        self._clock = clock
        self._last_check: float | None = None

    def is_online(self) -> bool:
        return self._online.is_set()

    def mark_online(self) -> None:
        if not self._online.is_set():
            logger.info("Connectivity restored")
        self._online.set()

    def mark_offline(self) -> None:
        if self._online.is_set():
            logger.warning("Connectivity lost")
        self._online.clear()

    def _poll_check(self) -> None:
        now = self._clock()
        if self._last_check is not None and now - self._last_check < self._check_interval:
            return
        self._last_check = now
        if self._check():
            self.mark_online()

    def wait_until_online(self, timeout: float | None = None) -> bool:
        """Block until connectivity is restored. False on timeout."""
        if self._check is not None and not self._online.is_set():
            self._poll_check()
        return self._online.wait(timeout)


def reachability_check(url: str, timeout: float = CHECK_TIMEOUT_SECONDS) -> Callable[[], bool]:
    """Build a connectivity check: any HTTP response from url counts as online."""

    def check() -> bool:
        try:
            httpx.head(url, timeout=timeout)
        except httpx.TransportError:
            return False
        return True

    return check


@dataclass
class RecoveryDirective:
    error_class: ErrorClass
    retry: bool
    message: str
    delay: float = 0.0
    wait_for_online: bool = False
    skip: bool = False
    user_action: str | None = None


class ErrorRecovery:
    """Decides what the orchestrator does with a failed item."""

    def __init__(
        self,
        connectivity: Connectivity | None = None,
        rate_limit_cooldown: float = RATE_LIMIT_COOLDOWN_SECONDS,
        network_retry_delay: float = NETWORK_RETRY_DELAY_SECONDS,
    ) -> None:
        self.connectivity = connectivity or Connectivity()
        self.rate_limit_cooldown = rate_limit_cooldown
        self.network_retry_delay = network_retry_delay

    def directive_for(self, exc: BaseException) -> RecoveryDirective:
        error_class = classify_error(exc)

        if error_class is ErrorClass.RATE_LIMIT:
            return RecoveryDirective(
                error_class,
                retry=True,
                delay=self.rate_limit_cooldown,
                message=f"Rate limited. Waiting {self.rate_limit_cooldown:.0f}s...",
            )
        if error_class is ErrorClass.AUTH_ERROR:
            return RecoveryDirective(
                error_class,
                retry=False,
                user_action="reauthenticate",
                message=f"Please re-authenticate: {exc}",
            )
        if error_class is ErrorClass.NETWORK_ERROR:
            if not self.connectivity.is_online():
                return RecoveryDirective(
                    error_class, retry=True, wait_for_online=True, message="Waiting for internet..."
                )
            return RecoveryDirective(
                error_class,
                retry=True,
                delay=self.network_retry_delay,
                message="Network error. Retrying...",
            )
        if error_class is ErrorClass.DATA_ERROR:
            return RecoveryDirective(error_class, retry=False, skip=True, message=f"Invalid data, skipping: {exc}")

        return RecoveryDirective(error_class, retry=False, message=str(exc) or type(exc).__name__)
