"""Real-time sync client."""

from collabsync.client.commands import CommandAPI
from collabsync.client.connection import ConnectionManager, ConnectionState, backoff_delay
from collabsync.client.dispatcher import MessageDispatcher
from collabsync.client.notify import NotificationPermission, Notifier
from collabsync.client.session import SyncClient
from collabsync.client.transport import Transport, WebSocketTransport, build_url

__all__ = [
    "CommandAPI",
    "ConnectionManager",
    "ConnectionState",
    "MessageDispatcher",
    "NotificationPermission",
    "Notifier",
    "SyncClient",
    "Transport",
    "WebSocketTransport",
    "backoff_delay",
    "build_url",
]
