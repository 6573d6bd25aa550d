"""Typed request/response channel across an execution-context boundary.

Some platforms only hand out session data (anti-CSRF tokens, page globals)
from inside the page that owns the session. The far side registers
handlers in a DispatchTable; this side posts ChannelRequest envelopes
through a transport and blocks until the ChannelResponse with the same
request id arrives, or the timeout expires.
"""

import itertools
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from convoport.errors import TransientNetworkError, UnknownSyncError
from convoport.logging import get_logger

logger = get_logger("sources.channel")

DEFAULT_TIMEOUT_SECONDS = 10.0


@dataclass
class ChannelRequest:
    request_id: str
    action: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class ChannelResponse:
    request_id: str
    success: bool
    data: Any = None
    error: str | None = None


Transport = Callable[[ChannelRequest], None]
Handler = Callable[[dict[str, Any]], Any]


class DispatchTable:
    """Maps request actions to handlers on the responding side."""

    def __init__(self) -> None:
        self._handlers: dict[str, Handler] = {}

    def register(self, action: str, handler: Handler) -> None:
        self._handlers[action] = handler

    def handle(self, request: ChannelRequest) -> ChannelResponse:
        handler = self._handlers.get(request.action)
        if handler is None:
            return ChannelResponse(request.request_id, success=False, error=f"Unknown action: {request.action}")
        try:
            data = handler(request.payload)
        except Exception as e:
            logger.warning("Channel handler failed: action=%s error=%s", request.action, e)
            return ChannelResponse(request.request_id, success=False, error=str(e))
        return ChannelResponse(request.request_id, success=True, data=data)


class _Pending:
    def __init__(self) -> None:
        self.event = threading.Event()
        self.response: ChannelResponse | None = None


class RequestChannel:
    """Correlates outgoing requests with incoming responses by request id."""

    def __init__(self, transport: Transport, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self._transport = transport
        self._timeout = timeout_seconds
        self._pending: dict[str, _Pending] = {}
        self._lock = threading.Lock()
        self._counter = itertools.count(1)

    @classmethod
    def loopback(cls, table: DispatchTable, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS) -> "RequestChannel":
        """Build a channel whose far side is an in-process dispatch table."""
        channel: RequestChannel

        def transport(request: ChannelRequest) -> None:
            channel.deliver(table.handle(request))

        channel = cls(transport, timeout_seconds)
        return channel

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def _next_id(self) -> str:
        return f"req_{int(time.time() * 1000)}_{next(self._counter)}"

    def request(self, action: str, payload: dict[str, Any] | None = None, timeout: float | None = None) -> Any:
        """Send a request and wait for its response data.

        Raises:
            TransientNetworkError: no response arrived in time
            UnknownSyncError: the far side reported a failure
        """
        request = ChannelRequest(self._next_id(), action, payload or {})
        pending = _Pending()
        with self._lock:
            self._pending[request.request_id] = pending

        try:
            self._transport(request)
            if not pending.event.wait(self._timeout if timeout is None else timeout):
                raise TransientNetworkError(f"Request timeout: {action}")
        finally:
            with self._lock:
                self._pending.pop(request.request_id, None)

        response = pending.response
        if response is None or not response.success:
            raise UnknownSyncError(response.error if response and response.error else "Unknown error")
        return response.data

    def deliver(self, response: ChannelResponse) -> bool:
        """Resolve the pending request matching the response.

        Returns:
            False if no request is waiting for this id (late or unknown)
        """
        with self._lock:
            pending = self._pending.get(response.request_id)
        if pending is None:
            logger.debug("Dropping response for unknown request: request_id=%s", response.request_id)
            return False
        pending.response = response
        pending.event.set()
        return True
