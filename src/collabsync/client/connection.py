"""Connection lifecycle: connect, heartbeat, reconnect with backoff."""

import asyncio
import contextlib
import logging
from enum import Enum
from typing import Callable

from collabsync.client.dispatcher import MessageDispatcher
from collabsync.client.notify import NotificationPermission, Notifier
from collabsync.client.transport import (
    ABNORMAL_CLOSURE,
    NORMAL_CLOSURE,
    Transport,
    TransportFactory,
    WebSocketTransport,
    build_url,
)
from collabsync.config import SyncConfig
from collabsync.errors import ReconnectExhaustedError, SyncError, TransportClosed, TransportError
from collabsync.models.envelope import AuthPayload, ClientMessageType, Envelope
from collabsync.store.state import SyncState

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


StateListener = Callable[[ConnectionState], None]


def backoff_delay(base: float, attempt: int) -> float:
    """Delay before reconnect ``attempt`` (1-based): base, 2*base, 4*base, ..."""
    return base * 2 ** (attempt - 1)


class ConnectionManager:
    """Owns the socket to the collaboration server.

    A single supervising task runs the connect / receive / backoff loop and
    owns the heartbeat as a child task. ``disconnect()`` cancels both, so no
    reconnect can fire after it returns.

    State machine::

        disconnected -> connecting -> connected
        connected --close 1000--> disconnected
        connected --abnormal close--> reconnecting -> connecting
        reconnecting --attempts exhausted--> disconnected (fatal)

    There is no pong timeout: a half-open socket that stops answering pings
    is not detected until the socket itself reports closure.
    """

    def __init__(
        self,
        sync_state: SyncState,
        config: SyncConfig | None = None,
        transport_factory: TransportFactory | None = None,
        notifier: Notifier | None = None,
        notification_permission: NotificationPermission = NotificationPermission.DEFAULT,
    ) -> None:
        self.sync_state = sync_state
        self.config = config or SyncConfig()
        self.dispatcher = MessageDispatcher(
            sync_state,
            notifier=notifier,
            notification_permission=notification_permission,
        )
        self._transport_factory = transport_factory or WebSocketTransport.open

        self.state = ConnectionState.DISCONNECTED
        self.reconnect_attempt = 0
        self.last_reconnect_delay: float | None = None
        self.fatal = False
        self.last_error: SyncError | None = None
        self.user_id: str | None = None
        self._token: str | None = None

        self._transport: Transport | None = None
        self._supervisor: asyncio.Task | None = None
        self._heartbeat: asyncio.Task | None = None
        self._listeners: list[StateListener] = []
        self._settled = asyncio.Event()
        self._settled.set()

    # --- Public API ---

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        """Call ``listener`` on every state transition. Returns an unsubscribe function."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED and self._transport is not None

    @property
    def has_pending_work(self) -> bool:
        """Whether a supervisor or heartbeat task is still scheduled."""
        return any(
            task is not None and not task.done() for task in (self._supervisor, self._heartbeat)
        )

    async def connect(self, user_id: str, token: str | None = None) -> None:
        """Start connecting in the background. Also the manual retry after a fatal loss."""
        if self._supervisor is not None and not self._supervisor.done():
            if user_id == self.user_id:
                logger.debug("Already connecting or connected as %s", user_id)
                return
            await self.disconnect()

        self.user_id = user_id
        self._token = token
        self.dispatcher.local_user_id = user_id
        self.fatal = False
        self.last_error = None
        self.reconnect_attempt = 0
        self.last_reconnect_delay = None
        self._set_state(ConnectionState.CONNECTING)
        self._supervisor = asyncio.create_task(self._run(), name="collabsync-connection")

    async def disconnect(self) -> None:
        """Tear down the connection and every pending timer, from any state."""
        supervisor, self._supervisor = self._supervisor, None
        heartbeat, self._heartbeat = self._heartbeat, None
        transport = self._transport

        for task in (heartbeat, supervisor):
            if task is None or task.done():
                continue
            task.cancel()
            if task is not asyncio.current_task():
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        self._transport = None
        if transport is not None:
            try:
                await transport.close(NORMAL_CLOSURE, "Client disconnect")
            except TransportError as e:
                logger.debug("Error closing socket: %s", e)

        self.sync_state.typing.clear()
        self.reconnect_attempt = 0
        self._set_state(ConnectionState.DISCONNECTED)

    async def wait_connected(self, timeout: float | None = None) -> None:
        """Wait until connected.

        Raises ReconnectExhaustedError if the manager gave up, TransportError
        if the connection ended some other way, TimeoutError on timeout.
        """
        await asyncio.wait_for(self._settled.wait(), timeout)
        if self.state == ConnectionState.CONNECTED:
            return
        if self.last_error is not None:
            raise self.last_error
        raise TransportError("Not connected")

    async def send_envelope(self, envelope: Envelope) -> bool:
        """Send an envelope. Returns False (and warns) if it could not be sent.

        Nothing is queued: messages sent while disconnected are lost.
        """
        transport = self._transport
        if transport is None or self.state != ConnectionState.CONNECTED:
            logger.warning("Not connected; dropping %s message", envelope.type)
            return False
        try:
            await transport.send(envelope.to_json())
        except TransportError as e:
            logger.warning("Failed to send %s message: %s", envelope.type, e)
            return False
        return True

    # --- Supervisor ---

    async def _run(self) -> None:
        try:
            while True:
                code = await self._session()
                if code == NORMAL_CLOSURE:
                    logger.info("Connection closed normally")
                    self._set_state(ConnectionState.DISCONNECTED)
                    return

                if self.reconnect_attempt >= self.config.max_reconnect_attempts:
                    self.fatal = True
                    self.last_error = ReconnectExhaustedError(self.reconnect_attempt)
                    logger.error(
                        "Max reconnection attempts reached (%d); manual reconnect required",
                        self.reconnect_attempt,
                    )
                    self._set_state(ConnectionState.DISCONNECTED)
                    return

                self.reconnect_attempt += 1
                delay = backoff_delay(self.config.reconnect_base_delay, self.reconnect_attempt)
                self.last_reconnect_delay = delay
                logger.info(
                    "Reconnecting in %.2fs (attempt %d/%d)",
                    delay,
                    self.reconnect_attempt,
                    self.config.max_reconnect_attempts,
                )
                self._set_state(ConnectionState.RECONNECTING)
                await asyncio.sleep(delay)
                self._set_state(ConnectionState.CONNECTING)
        finally:
            self._stop_heartbeat()

    async def _session(self) -> int:
        """Open one socket and pump it until it closes. Returns the close code."""
        url = build_url(self.config.ws_url, self.user_id or "", self._token)
        try:
            transport = await self._transport_factory(url)
        except TransportError as e:
            logger.warning("Connection failed: %s", e)
            return ABNORMAL_CLOSURE

        self._transport = transport
        try:
            await self._on_open()
            return await self._receive(transport)
        finally:
            self._stop_heartbeat()
            if self._transport is transport:
                self._transport = None

    async def _on_open(self) -> None:
        logger.info("Connected as %s", self.user_id)
        self.reconnect_attempt = 0
        self.last_reconnect_delay = None
        self._set_state(ConnectionState.CONNECTED)
        self._heartbeat = asyncio.create_task(
            self._heartbeat_loop(), name="collabsync-heartbeat"
        )
        await self.send_envelope(
            Envelope.build(ClientMessageType.AUTH, AuthPayload(user_id=self.user_id or ""))
        )

    async def _receive(self, transport: Transport) -> int:
        while True:
            try:
                raw = await transport.recv()
            except TransportClosed as e:
                logger.info("Socket closed: code=%s reason=%s", e.code, e.reason)
                return e.code
            except TransportError as e:
                logger.warning("Socket error: %s", e)
                return ABNORMAL_CLOSURE
            self.dispatcher.handle(raw)

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.heartbeat_interval)
            if self.is_connected():
                await self.send_envelope(Envelope.build(ClientMessageType.PING))

    def _stop_heartbeat(self) -> None:
        heartbeat, self._heartbeat = self._heartbeat, None
        if heartbeat is not None and not heartbeat.done():
            heartbeat.cancel()

    def _set_state(self, state: ConnectionState) -> None:
        if state == self.state:
            return
        logger.debug("Connection state: %s -> %s", self.state.value, state.value)
        self.state = state
        if state in (ConnectionState.CONNECTED, ConnectionState.DISCONNECTED):
            self._settled.set()
        else:
            self._settled.clear()
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Connection state listener failed")
