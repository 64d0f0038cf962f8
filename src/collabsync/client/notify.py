"""Hook for surfacing notifications through the host platform."""

from enum import Enum
from typing import Protocol

from collabsync.models.notification import Notification


class NotificationPermission(str, Enum):
    """Platform notification permission, as already negotiated by the caller."""

    DEFAULT = "default"
    GRANTED = "granted"
    DENIED = "denied"


class Notifier(Protocol):
    """Shows a native notification. Implemented by the embedding application."""

    def notify(self, notification: Notification) -> None: ...
