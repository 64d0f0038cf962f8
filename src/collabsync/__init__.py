"""collabsync - real-time comment, notification and typing-presence sync."""

__version__ = "0.1.0"

from collabsync.client import CommandAPI, ConnectionManager, ConnectionState, SyncClient
from collabsync.config import SyncConfig
from collabsync.models import Comment, Envelope, Identity, Notification, Reaction
from collabsync.store import SyncState

__all__ = [
    "CommandAPI",
    "Comment",
    "ConnectionManager",
    "ConnectionState",
    "Envelope",
    "Identity",
    "Notification",
    "Reaction",
    "SyncClient",
    "SyncConfig",
    "SyncState",
]
