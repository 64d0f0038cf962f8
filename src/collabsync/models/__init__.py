"""Wire and domain models."""

from collabsync.models.comment import (
    TOMBSTONE,
    AttachmentType,
    Comment,
    CommentAttachment,
    Reaction,
    ReactionType,
    ResourceType,
)
from collabsync.models.envelope import (
    AuthPayload,
    ClientMessageType,
    CommentDeletePayload,
    CommentUpdatePayload,
    Envelope,
    ServerMessageType,
    SubscriptionPayload,
    TypingPayload,
    UserTypingPayload,
)
from collabsync.models.identity import Identity
from collabsync.models.notification import Notification, NotificationGroup, NotificationType

__all__ = [
    "TOMBSTONE",
    "AttachmentType",
    "AuthPayload",
    "ClientMessageType",
    "Comment",
    "CommentAttachment",
    "CommentDeletePayload",
    "CommentUpdatePayload",
    "Envelope",
    "Identity",
    "Notification",
    "NotificationGroup",
    "NotificationType",
    "Reaction",
    "ReactionType",
    "ResourceType",
    "ServerMessageType",
    "SubscriptionPayload",
    "TypingPayload",
    "UserTypingPayload",
]
