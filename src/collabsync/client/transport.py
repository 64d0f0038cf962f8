"""Socket transport used by the connection manager."""

import logging
from typing import Awaitable, Callable, Protocol
from urllib.parse import urlencode, urlsplit, urlunsplit

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from collabsync.errors import TransportClosed, TransportError

logger = logging.getLogger(__name__)

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006


class Transport(Protocol):
    """A bidirectional text-frame connection."""

    async def send(self, data: str) -> None: ...

    async def recv(self) -> str | bytes: ...

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None: ...


TransportFactory = Callable[[str], Awaitable[Transport]]


def build_url(base_url: str, user_id: str, token: str | None = None) -> str:
    """Append the ``token`` and ``userId`` query parameters to the socket URL."""
    parts = urlsplit(base_url)
    params = {"token": token, "userId": user_id} if token else {"userId": user_id}
    query = "&".join(q for q in (parts.query, urlencode(params)) if q)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def _closed(exc: ConnectionClosed) -> TransportClosed:
    if exc.rcvd is not None:
        return TransportClosed(exc.rcvd.code, exc.rcvd.reason)
    return TransportClosed(ABNORMAL_CLOSURE, "connection lost without close frame")


class WebSocketTransport:
    """Transport backed by a ``websockets`` client connection.

    The library's own keepalive pings are disabled: liveness is the
    application heartbeat's job, and an unanswered ping does not close the
    socket.
    """

    def __init__(self, connection: ClientConnection) -> None:
        self._ws = connection

    @classmethod
    async def open(cls, url: str, open_timeout: float = 10.0) -> "WebSocketTransport":
        try:
            ws = await connect(url, ping_interval=None, open_timeout=open_timeout)
        except (OSError, TimeoutError, WebSocketException) as e:
            raise TransportError(f"Could not connect to {url}: {e}") from e
        logger.debug("Socket opened: %s", url)
        return cls(ws)

    async def send(self, data: str) -> None:
        try:
            await self._ws.send(data)
        except ConnectionClosed as e:
            raise _closed(e) from e

    async def recv(self) -> str | bytes:
        try:
            return await self._ws.recv()
        except ConnectionClosed as e:
            raise _closed(e) from e

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        await self._ws.close(code, reason)
