"""Per-user notification ledger."""

import logging
from datetime import datetime
from typing import Iterable

from collabsync.models.base import as_utc, utcnow
from collabsync.models.notification import Notification, NotificationGroup

logger = logging.getLogger(__name__)


class NotificationStore:
    """Notifications for the local user, newest first."""

    def __init__(self) -> None:
        self._items: list[Notification] = []

    @property
    def items(self) -> list[Notification]:
        return list(self._items)

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self._items if not n.is_read)

    def unread(self) -> list[Notification]:
        return [n for n in self._items if not n.is_read]

    def replace_all(self, notifications: Iterable[Notification]) -> None:
        """Load a full notification list, ordering it newest first."""
        self._items = sorted(notifications, key=lambda n: n.created_at, reverse=True)

    def append(self, notification: Notification) -> None:
        self._items.insert(0, notification)

    def mark_read(self, notification_id: str) -> bool:
        for notification in self._items:
            if notification.id == notification_id:
                notification.is_read = True
                return True
        logger.debug("Mark read skipped: notification %s not found", notification_id)
        return False

    def mark_all_read(self) -> int:
        """Mark every notification read; returns how many were unread."""
        changed = 0
        for notification in self._items:
            if not notification.is_read:
                notification.is_read = True
                changed += 1
        return changed

    def clear(self) -> None:
        self._items.clear()


def notification_group(created_at: datetime, now: datetime | None = None) -> NotificationGroup:
    """Bucket a timestamp by whole days elapsed since it."""
    now = as_utc(now) if now is not None else utcnow()
    days = (now - as_utc(created_at)).days
    if days <= 0:
        return NotificationGroup.TODAY
    if days == 1:
        return NotificationGroup.YESTERDAY
    if days <= 7:
        return NotificationGroup.THIS_WEEK
    if days <= 30:
        return NotificationGroup.THIS_MONTH
    return NotificationGroup.EARLIER


def group_notifications(
    notifications: Iterable[Notification],
    now: datetime | None = None,
    unread_only: bool = False,
) -> dict[NotificationGroup, list[Notification]]:
    """Group notifications into display buckets.

    Only non-empty groups are returned, in display order; each group keeps
    the input order. Storage is never touched.
    """
    now = now or utcnow()
    grouped: dict[NotificationGroup, list[Notification]] = {}
    for notification in notifications:
        if unread_only and notification.is_read:
            continue
        grouped.setdefault(notification_group(notification.created_at, now), []).append(
            notification
        )
    return {group: grouped[group] for group in NotificationGroup if group in grouped}
