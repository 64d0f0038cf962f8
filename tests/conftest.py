"""Pytest configuration and fixtures."""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Callable

import pytest
import pytest_asyncio

from collabsync.client.connection import ConnectionManager, ConnectionState
from collabsync.config import SyncConfig
from collabsync.errors import TransportClosed, TransportError
from collabsync.models import Comment, Envelope, Identity, Notification
from collabsync.store import SyncState

BASE_TIME = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeTransport:
    """In-memory transport: tests push frames in and inspect frames sent out."""

    def __init__(self):
        self.sent: list[str] = []
        self.closed_with: int | None = None
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, data: str) -> None:
        if self.closed_with is not None:
            raise TransportClosed(self.closed_with)
        self.sent.append(data)

    async def recv(self) -> str:
        item = await self._inbox.get()
        if isinstance(item, TransportClosed):
            raise item
        return item

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed_with = code
        self._inbox.put_nowait(TransportClosed(code, reason))

    # --- test helpers ---

    def push(self, message: Envelope | dict | str) -> None:
        """Deliver a frame as if the server had sent it."""
        if isinstance(message, Envelope):
            message = message.to_json()
        elif isinstance(message, dict):
            message = json.dumps(message)
        self._inbox.put_nowait(message)

    def server_close(self, code: int = 1006, reason: str = "") -> None:
        """Simulate the server (or network) closing the socket."""
        self.closed_with = code
        self._inbox.put_nowait(TransportClosed(code, reason))

    def sent_envelopes(self) -> list[dict]:
        return [json.loads(raw) for raw in self.sent]

    def sent_types(self) -> list[str]:
        return [env["type"] for env in self.sent_envelopes()]


class FakeServer:
    """Transport factory that records connection attempts.

    ``fail_first`` attempts raise TransportError; ``refuse`` makes every
    attempt fail; ``gate`` (when set) blocks attempts until released.
    """

    def __init__(self, fail_first: int = 0, refuse: bool = False):
        self.fail_first = fail_first
        self.refuse = refuse
        self.urls: list[str] = []
        self.transports: list[FakeTransport] = []
        self.gate: asyncio.Event | None = None

    async def __call__(self, url: str) -> FakeTransport:
        self.urls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        if self.refuse or len(self.urls) <= self.fail_first:
            raise TransportError("connection refused")
        transport = FakeTransport()
        self.transports.append(transport)
        return transport

    @property
    def attempts(self) -> int:
        return len(self.urls)

    @property
    def current(self) -> FakeTransport:
        return self.transports[-1]


class ManualHandle:
    def __init__(self, when: float, callback: Callable[[], None]):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualClock:
    """Deterministic replacement for ``loop.call_later``."""

    def __init__(self):
        self.now = 0.0
        self._timers: list[ManualHandle] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualHandle:
        handle = ManualHandle(self.now + delay, callback)
        self._timers.append(handle)
        return handle

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [h for h in self._timers if not h.cancelled and h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda h: h.when)
            self._timers.remove(handle)
            self.now = handle.when
            handle.callback()
        self.now = target

    @property
    def pending(self) -> int:
        return sum(1 for h in self._timers if not h.cancelled)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def state(clock: ManualClock) -> SyncState:
    """Stores whose typing timers run on the manual clock."""
    return SyncState(typing_timeout=3.0, call_later=clock.call_later)


@pytest.fixture
def config() -> SyncConfig:
    """Fast backoff and a heartbeat that never fires during a test."""
    return SyncConfig(
        ws_url="ws://test.invalid/ws",
        heartbeat_interval=3600,
        reconnect_base_delay=0.001,
        max_reconnect_attempts=5,
        typing_timeout=3.0,
    )


@pytest.fixture
def server() -> FakeServer:
    return FakeServer()


@pytest_asyncio.fixture
async def manager(state: SyncState, config: SyncConfig, server: FakeServer):
    """A connection manager wired to the fake server; always torn down."""
    mgr = ConnectionManager(state, config, transport_factory=server)
    yield mgr
    await mgr.disconnect()


@pytest.fixture
def alice() -> Identity:
    return Identity(user_id="user-a", display_name="Alice", avatar="https://example.com/a.png")


@pytest.fixture
def make_comment() -> Callable[..., Comment]:
    """Factory for comments with sensible defaults; minutes offsets BASE_TIME."""
    counter = {"n": 0}

    def _make(minutes: int = 0, **overrides) -> Comment:
        counter["n"] += 1
        created = BASE_TIME + timedelta(minutes=minutes)
        data = {
            "id": f"c{counter['n']}",
            "content": f"comment {counter['n']}",
            "author_id": "user-b",
            "author_name": "Bob",
            "resource_type": "task",
            "resource_id": "task-1",
            "created_at": created,
            "updated_at": created,
        }
        data.update(overrides)
        return Comment(**data)

    return _make


@pytest.fixture
def make_notification() -> Callable[..., Notification]:
    counter = {"n": 0}

    def _make(days_ago: float = 0, now: datetime = BASE_TIME, **overrides) -> Notification:
        counter["n"] += 1
        data = {
            "id": f"n{counter['n']}",
            "type": "mention",
            "comment_id": "c1",
            "resource_type": "task",
            "resource_id": "task-1",
            "from_user_id": "user-b",
            "from_user_name": "Bob",
            "to_user_id": "user-a",
            "message": "Bob mentioned you",
            "created_at": now - timedelta(days=days_ago),
        }
        data.update(overrides)
        return Notification(**data)

    return _make


@pytest.fixture
def eventually():
    """Await until ``predicate()`` is true, failing after ``timeout`` seconds."""

    async def _eventually(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.001)

    return _eventually


@pytest.fixture
def connected(manager: ConnectionManager, server: FakeServer, eventually):
    """Connect ``manager`` as user-a and wait until the socket is open."""

    async def _connect(user_id: str = "user-a", token: str | None = None) -> FakeTransport:
        await manager.connect(user_id, token)
        await eventually(lambda: manager.state == ConnectionState.CONNECTED)
        return server.current

    return _connect
