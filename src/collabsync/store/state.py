"""The injectable container holding the three shared stores."""

from collabsync.store.comments import CommentStore
from collabsync.store.notifications import NotificationStore
from collabsync.store.presence import DEFAULT_TYPING_TIMEOUT, CallLater, TypingPresenceTracker


class SyncState:
    """Comments, notifications and typing presence for one session.

    One instance per session; pass it to the connection manager and read it
    from the UI. Nothing here is module-global, so sessions and tests stay
    isolated.
    """

    def __init__(
        self,
        typing_timeout: float = DEFAULT_TYPING_TIMEOUT,
        call_later: CallLater | None = None,
    ) -> None:
        self.comments = CommentStore()
        self.notifications = NotificationStore()
        self.typing = TypingPresenceTracker(timeout=typing_timeout, call_later=call_later)

    def reset(self) -> None:
        self.comments.clear()
        self.notifications.clear()
        self.typing.clear()
