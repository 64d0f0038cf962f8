"""Notification model."""

from datetime import datetime
from enum import Enum

from pydantic import Field, field_validator

from collabsync.models.base import WireModel, as_utc, utcnow


class NotificationType(str, Enum):
    """Why a notification was raised."""

    MENTION = "mention"
    REPLY = "reply"
    REACTION = "reaction"
    NEW_COMMENT = "new_comment"


class NotificationGroup(str, Enum):
    """Display buckets, in the order they are shown."""

    TODAY = "today"
    YESTERDAY = "yesterday"
    THIS_WEEK = "this_week"
    THIS_MONTH = "this_month"
    EARLIER = "earlier"


class Notification(WireModel):
    """A notification addressed to one user about a comment."""

    id: str = Field(..., min_length=1)
    type: NotificationType
    comment_id: str
    resource_type: str
    resource_id: str
    from_user_id: str
    from_user_name: str
    to_user_id: str
    message: str
    is_read: bool = False
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("created_at")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return as_utc(v)
