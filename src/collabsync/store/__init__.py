"""Local state containers read by the UI and written by the sync client."""

from collabsync.store.comments import (
    CommentNode,
    CommentStore,
    SortOrder,
    build_thread,
    pinned_comments,
    reaction_counts,
    replies_of,
    sort_for_display,
    top_level_comments,
)
from collabsync.store.notifications import (
    NotificationStore,
    group_notifications,
    notification_group,
)
from collabsync.store.presence import TypingPresenceTracker
from collabsync.store.state import SyncState

__all__ = [
    "CommentNode",
    "CommentStore",
    "NotificationStore",
    "SortOrder",
    "SyncState",
    "TypingPresenceTracker",
    "build_thread",
    "group_notifications",
    "notification_group",
    "pinned_comments",
    "reaction_counts",
    "replies_of",
    "sort_for_display",
    "top_level_comments",
]
