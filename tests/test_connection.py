"""Tests for the connection manager: lifecycle, heartbeat and reconnect backoff."""

import asyncio
import logging

import pytest

from collabsync.client import ConnectionManager, ConnectionState, backoff_delay, build_url
from collabsync.config import SyncConfig
from collabsync.errors import ReconnectExhaustedError, TransportError
from collabsync.models import Envelope


def _config(**overrides) -> SyncConfig:
    values = {
        "ws_url": "ws://test.invalid/ws",
        "heartbeat_interval": 3600,
        "reconnect_base_delay": 0.001,
        "max_reconnect_attempts": 5,
    }
    values.update(overrides)
    return SyncConfig(**values)


def _pings(server) -> int:
    if not server.transports:
        return 0
    return server.current.sent_types().count("ping")


class TestBackoff:
    """Tests for the backoff schedule and URL building."""

    def test_doubling(self):
        """Test that each attempt doubles the delay."""
        assert [backoff_delay(1.0, n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 16.0]

    def test_custom_base(self):
        """Test a non-default base delay."""
        assert backoff_delay(0.5, 3) == 2.0

    def test_url_without_token(self):
        """Test that userId is always appended."""
        assert build_url("ws://h/ws", "user-a") == "ws://h/ws?userId=user-a"

    def test_url_with_token(self):
        """Test that the token comes before the user id."""
        assert build_url("ws://h/ws", "user-a", "t0k") == "ws://h/ws?token=t0k&userId=user-a"

    def test_url_keeps_existing_query(self):
        """Test appending to a URL that already has parameters."""
        assert build_url("wss://h/ws?v=2", "u 1") == "wss://h/ws?v=2&userId=u+1"


class TestConnect:
    """Tests for opening a connection."""

    @pytest.mark.asyncio
    async def test_connect_sends_auth_first(self, manager, connected):
        """Test that auth is the first frame after the socket opens."""
        transport = await connected("user-a")
        envelopes = transport.sent_envelopes()
        assert envelopes[0]["type"] == "auth"
        assert envelopes[0]["payload"] == {"userId": "user-a"}
        assert manager.is_connected()

    @pytest.mark.asyncio
    async def test_connect_url(self, manager, server, connected):
        """Test the socket URL carries token and user id."""
        await connected("user-a", token="secret")
        assert server.urls == ["ws://test.invalid/ws?token=secret&userId=user-a"]

    @pytest.mark.asyncio
    async def test_state_transitions(self, manager, connected):
        """Test that listeners see connecting then connected."""
        states = []
        manager.add_listener(states.append)
        await connected()
        assert states == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]

    @pytest.mark.asyncio
    async def test_listener_removal(self, manager, connected):
        """Test that removed listeners stop receiving transitions."""
        states = []
        remove = manager.add_listener(states.append)
        remove()
        await connected()
        assert states == []

    @pytest.mark.asyncio
    async def test_connect_twice_same_user(self, manager, server, connected):
        """Test that connecting again as the same user is a no-op."""
        await connected("user-a")
        await manager.connect("user-a")
        assert server.attempts == 1
        assert manager.state == ConnectionState.CONNECTED

    @pytest.mark.asyncio
    async def test_connect_as_other_user_replaces(self, manager, server, connected, eventually):
        """Test that switching user closes the old socket first."""
        first = await connected("user-a")
        await manager.connect("user-b")
        await eventually(lambda: manager.state == ConnectionState.CONNECTED)

        assert first.closed_with == 1000
        assert server.urls[-1].endswith("userId=user-b")
        assert manager.dispatcher.local_user_id == "user-b"

    @pytest.mark.asyncio
    async def test_inbound_frames_reach_stores(self, manager, state, connected, eventually, make_comment):
        """Test that received envelopes are applied to the stores."""
        transport = await connected()
        comment = make_comment(author_id="user-b")
        transport.push(Envelope.build("comment_added", comment))
        await eventually(lambda: state.comments.find(comment.id) is not None)

    @pytest.mark.asyncio
    async def test_garbage_frame_keeps_connection(self, manager, state, connected, eventually, make_comment):
        """Test that a malformed frame does not drop the socket."""
        transport = await connected()
        transport.push("not json at all")
        comment = make_comment()
        transport.push(Envelope.build("comment_added", comment))
        await eventually(lambda: state.comments.find(comment.id) is not None)
        assert manager.state == ConnectionState.CONNECTED


class TestWaitConnected:
    """Tests for waiting on the connection."""

    @pytest.mark.asyncio
    async def test_wait_until_open(self, manager):
        """Test waiting for a successful open."""
        await manager.connect("user-a")
        await manager.wait_connected(timeout=2)
        assert manager.state == ConnectionState.CONNECTED

    @pytest.mark.asyncio
    async def test_wait_times_out(self, manager, server):
        """Test the timeout while the server never answers."""
        server.gate = asyncio.Event()
        await manager.connect("user-a")
        with pytest.raises(TimeoutError):
            await manager.wait_connected(timeout=0.05)

    @pytest.mark.asyncio
    async def test_wait_raises_when_exhausted(self, manager, server):
        """Test that waiting surfaces the fatal error."""
        server.refuse = True
        await manager.connect("user-a")
        with pytest.raises(ReconnectExhaustedError):
            await manager.wait_connected(timeout=2)

    @pytest.mark.asyncio
    async def test_wait_when_never_connected(self, manager):
        """Test waiting on an idle manager."""
        with pytest.raises(TransportError, match="Not connected"):
            await manager.wait_connected(timeout=1)


class TestReconnect:
    """Tests for abnormal closure handling."""

    @pytest.mark.asyncio
    async def test_backoff_until_exhausted(self, manager, server, eventually):
        """Test the full backoff schedule and the fatal state after it."""
        server.refuse = True
        delays = []
        manager.add_listener(
            lambda s: delays.append(manager.last_reconnect_delay)
            if s == ConnectionState.RECONNECTING else None
        )

        await manager.connect("user-a")
        await eventually(lambda: manager.fatal)

        assert delays == [0.001, 0.002, 0.004, 0.008, 0.016]
        assert server.attempts == 6
        assert manager.state == ConnectionState.DISCONNECTED
        assert isinstance(manager.last_error, ReconnectExhaustedError)
        assert manager.last_error.attempts == 5
        assert "5 reconnection attempts" in str(manager.last_error)
        assert not manager.has_pending_work

    @pytest.mark.asyncio
    async def test_no_reconnect_after_fatal(self, manager, server, eventually):
        """Test that nothing is retried after giving up."""
        server.refuse = True
        await manager.connect("user-a")
        await eventually(lambda: manager.fatal)
        await asyncio.sleep(0.05)
        assert server.attempts == 6

    @pytest.mark.asyncio
    async def test_fatal_is_logged(self, manager, server, eventually, caplog):
        """Test the error log when the budget is spent."""
        server.refuse = True
        with caplog.at_level(logging.ERROR, logger="collabsync.client.connection"):
            await manager.connect("user-a")
            await eventually(lambda: manager.fatal)
        assert "Max reconnection attempts reached" in caplog.text

    @pytest.mark.asyncio
    async def test_success_resets_attempts(self, manager, server, eventually):
        """Test that a successful open resets the backoff schedule."""
        server.fail_first = 2
        delays = []
        manager.add_listener(
            lambda s: delays.append(manager.last_reconnect_delay)
            if s == ConnectionState.RECONNECTING else None
        )

        await manager.connect("user-a")
        await eventually(lambda: manager.state == ConnectionState.CONNECTED)
        assert manager.reconnect_attempt == 0

        server.current.server_close(1006)
        await eventually(lambda: len(server.transports) == 2)
        await eventually(lambda: manager.state == ConnectionState.CONNECTED)

        assert delays == [0.001, 0.002, 0.001]
        assert manager.reconnect_attempt == 0

    @pytest.mark.asyncio
    async def test_reconnect_sends_auth_again(self, manager, server, connected, eventually):
        """Test that every new socket authenticates."""
        first = await connected()
        first.server_close(1011, "server restart")
        await eventually(lambda: len(server.transports) == 2)
        await eventually(lambda: manager.state == ConnectionState.CONNECTED)
        assert server.current.sent_types()[0] == "auth"

    @pytest.mark.asyncio
    async def test_normal_close_does_not_reconnect(self, manager, server, connected, eventually):
        """Test that a 1000 close ends the session without retrying."""
        transport = await connected()
        transport.server_close(1000)
        await eventually(lambda: manager.state == ConnectionState.DISCONNECTED)
        await asyncio.sleep(0.02)
        assert server.attempts == 1
        assert manager.fatal is False

    @pytest.mark.asyncio
    async def test_zero_attempts_budget(self, state, server, eventually):
        """Test that a zero budget fails on the first abnormal close."""
        server.refuse = True
        manager = ConnectionManager(state, _config(max_reconnect_attempts=0), transport_factory=server)
        try:
            await manager.connect("user-a")
            await eventually(lambda: manager.fatal)
            assert server.attempts == 1
            assert manager.last_error.attempts == 0
        finally:
            await manager.disconnect()

    @pytest.mark.asyncio
    async def test_manual_retry_after_fatal(self, manager, server, eventually):
        """Test that connect() starts over after a fatal loss."""
        server.refuse = True
        await manager.connect("user-a")
        await eventually(lambda: manager.fatal)

        server.refuse = False
        await manager.connect("user-a")
        await eventually(lambda: manager.state == ConnectionState.CONNECTED)
        assert manager.fatal is False
        assert manager.last_error is None


class TestDisconnect:
    """Tests for tearing down the connection."""

    @pytest.mark.asyncio
    async def test_disconnect_closes_normally(self, manager, connected):
        """Test that disconnect closes with 1000 and cancels all tasks."""
        transport = await connected()
        await manager.disconnect()
        assert transport.closed_with == 1000
        assert manager.state == ConnectionState.DISCONNECTED
        assert not manager.has_pending_work
        assert manager.reconnect_attempt == 0

    @pytest.mark.asyncio
    async def test_disconnect_clears_typing(self, manager, state, clock, connected, eventually):
        """Test that typing entries and their timers are dropped on disconnect."""
        transport = await connected()
        transport.push(Envelope.build("user_typing", {
            "resourceId": "task-1", "userId": "user-b", "userName": "Bob", "isTyping": True,
        }))
        await eventually(lambda: state.typing.typing_users("task-1") == ["Bob"])

        await manager.disconnect()

        assert state.typing.typing_users("task-1") == []
        assert clock.pending == 0

    @pytest.mark.asyncio
    async def test_disconnect_during_backoff(self, state, server, eventually):
        """Test that no reconnect fires after disconnect in the reconnecting state."""
        server.refuse = True
        manager = ConnectionManager(
            state, _config(reconnect_base_delay=0.05), transport_factory=server
        )
        await manager.connect("user-a")
        await eventually(lambda: manager.state == ConnectionState.RECONNECTING)

        await manager.disconnect()
        attempts = server.attempts
        await asyncio.sleep(0.2)

        assert server.attempts == attempts
        assert manager.state == ConnectionState.DISCONNECTED
        assert not manager.has_pending_work

    @pytest.mark.asyncio
    async def test_disconnect_when_idle(self, manager):
        """Test that disconnecting an idle manager is harmless."""
        await manager.disconnect()
        assert manager.state == ConnectionState.DISCONNECTED


class TestHeartbeat:
    """Tests for the ping heartbeat."""

    @pytest.mark.asyncio
    async def test_pings_while_connected(self, state, server, eventually):
        """Test that pings are sent on the heartbeat interval."""
        manager = ConnectionManager(state, _config(heartbeat_interval=0.01), transport_factory=server)
        try:
            await manager.connect("user-a")
            await eventually(lambda: manager.state == ConnectionState.CONNECTED)
            await eventually(lambda: _pings(server) >= 2)
            assert server.current.sent_types()[0] == "auth"
        finally:
            await manager.disconnect()

    @pytest.mark.asyncio
    async def test_no_pings_after_disconnect(self, state, server, eventually):
        """Test that the heartbeat stops with the connection."""
        manager = ConnectionManager(state, _config(heartbeat_interval=0.01), transport_factory=server)
        await manager.connect("user-a")
        await eventually(lambda: _pings(server) >= 1)
        await manager.disconnect()

        sent = len(server.current.sent)
        await asyncio.sleep(0.05)
        assert len(server.current.sent) == sent

    @pytest.mark.asyncio
    async def test_missing_pong_does_not_disconnect(self, state, server, eventually):
        """Test that unanswered pings never close the socket on their own."""
        manager = ConnectionManager(state, _config(heartbeat_interval=0.005), transport_factory=server)
        try:
            await manager.connect("user-a")
            await eventually(lambda: _pings(server) >= 5)
            assert manager.state == ConnectionState.CONNECTED
            assert server.attempts == 1
        finally:
            await manager.disconnect()


class TestSend:
    """Tests for sending envelopes."""

    @pytest.mark.asyncio
    async def test_send_when_connected(self, manager, connected):
        """Test that envelopes go out on the socket."""
        transport = await connected()
        assert await manager.send_envelope(Envelope.build("ping")) is True
        assert transport.sent_types()[-1] == "ping"

    @pytest.mark.asyncio
    async def test_send_when_offline_drops(self, manager, caplog):
        """Test that offline sends are dropped with a warning."""
        with caplog.at_level(logging.WARNING, logger="collabsync.client.connection"):
            assert await manager.send_envelope(Envelope.build("typing")) is False
        assert "Not connected; dropping typing message" in caplog.text

    @pytest.mark.asyncio
    async def test_offline_messages_are_not_replayed(self, manager, connected):
        """Test that nothing sent while offline is delivered after connecting."""
        await manager.send_envelope(Envelope.build("comment_delete", {"commentId": "c1"}))
        transport = await connected()
        assert "comment_delete" not in transport.sent_types()
