"""Tests for the request/response channel."""

import threading

import pytest

from convoport.errors import TransientNetworkError, UnknownSyncError
from convoport.sources.channel import (
    ChannelRequest,
    ChannelResponse,
    DispatchTable,
    RequestChannel,
)


@pytest.fixture
def table() -> DispatchTable:
    t = DispatchTable()
    t.register("ECHO", lambda payload: payload)
    t.register("BOOM", lambda payload: 1 / 0)
    return t


class TestDispatchTable:
    def test_known_action(self, table: DispatchTable) -> None:
        response = table.handle(ChannelRequest("r1", "ECHO", {"a": 1}))
        assert response == ChannelResponse("r1", success=True, data={"a": 1})

    def test_unknown_action(self, table: DispatchTable) -> None:
        response = table.handle(ChannelRequest("r2", "NOPE"))
        assert response.success is False
        assert response.error == "Unknown action: NOPE"

    def test_handler_exception_becomes_failure(self, table: DispatchTable) -> None:
        response = table.handle(ChannelRequest("r3", "BOOM"))
        assert response.success is False
        assert "division" in response.error


class TestRequestChannel:
    """Tests for request correlation and timeouts."""

    def test_loopback_round_trip(self, table: DispatchTable) -> None:
        channel = RequestChannel.loopback(table)
        assert channel.request("ECHO", {"x": 2}) == {"x": 2}
        assert channel.pending_count == 0

    def test_far_side_failure(self, table: DispatchTable) -> None:
        channel = RequestChannel.loopback(table)
        with pytest.raises(UnknownSyncError, match="Unknown action"):
            channel.request("NOPE")

    def test_timeout(self) -> None:
        """A request with no response should fail after the timeout."""
        sent: list[ChannelRequest] = []
        channel = RequestChannel(sent.append, timeout_seconds=0.01)

        with pytest.raises(TransientNetworkError, match="Request timeout: SLOW"):
            channel.request("SLOW")

        assert channel.pending_count == 0
        # A response arriving after the timeout is dropped
        assert channel.deliver(ChannelResponse(sent[0].request_id, success=True)) is False

    def test_responses_matched_by_request_id(self) -> None:
        """Concurrent requests should each receive their own response."""
        sent: list[ChannelRequest] = []
        ready = threading.Event()

        def transport(request: ChannelRequest) -> None:
            sent.append(request)
            if len(sent) == 2:
                ready.set()

        channel = RequestChannel(transport, timeout_seconds=5)
        results: dict[str, object] = {}

        def call(action: str) -> None:
            results[action] = channel.request(action)

        workers = [threading.Thread(target=call, args=(a,)) for a in ("A", "B")]
        for w in workers:
            w.start()
        assert ready.wait(5)

        # Answer in reverse order
        for request in reversed(sent):
            assert channel.deliver(ChannelResponse(request.request_id, True, data=request.action.lower()))
        for w in workers:
            w.join(5)

        assert results == {"A": "a", "B": "b"}

    def test_unique_request_ids(self) -> None:
        sent: list[ChannelRequest] = []
        channel = RequestChannel(sent.append, timeout_seconds=0.001)
        for _ in range(3):
            with pytest.raises(TransientNetworkError):
                channel.request("X")
        assert len({r.request_id for r in sent}) == 3
