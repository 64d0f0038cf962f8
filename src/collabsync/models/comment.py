"""Comment model and its attachments and reactions."""

from datetime import datetime
from enum import Enum

from pydantic import Field, field_validator

from collabsync.models.base import WireModel, as_utc, utcnow

TOMBSTONE = "[This comment has been deleted]"


class ResourceType(str, Enum):
    """Kinds of entity a comment thread can hang off."""

    TASK = "task"
    PROJECT = "project"
    NOTEBOOK = "notebook"
    POMODORO = "pomodoro"


class AttachmentType(str, Enum):
    """Attachment kinds."""

    IMAGE = "image"
    FILE = "file"
    LINK = "link"


class ReactionType(str, Enum):
    """The emoji reactions a user can leave on a comment."""

    THUMBS_UP = "👍"
    THUMBS_DOWN = "👎"
    HEART = "❤️"
    LAUGH = "😄"
    SURPRISED = "😮"
    SAD = "😢"
    ANGRY = "😡"


class CommentAttachment(WireModel):
    """A file, image or link attached to a comment."""

    id: str = Field(..., description="Attachment identifier")
    name: str = Field(..., description="Display name")
    type: AttachmentType = Field(..., description="Attachment kind")
    url: str = Field(..., description="Where the attachment can be fetched")
    size: int | None = Field(None, ge=0, description="Size in bytes")
    mime_type: str | None = Field(None, description="MIME type if known")


class Reaction(WireModel):
    """A single user's reaction to a comment."""

    id: str
    type: ReactionType
    user_id: str
    user_name: str
    comment_id: str | None = None
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("created_at")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return as_utc(v)


class Comment(WireModel):
    """A comment on a resource.

    Replies point at their parent through ``parent_id``; the reply tree is
    rebuilt at read time rather than stored.
    """

    id: str = Field(..., min_length=1, description="Unique comment identifier")
    content: str = Field(..., description="Comment body")
    author_id: str = Field(..., min_length=1)
    author_name: str
    author_avatar: str | None = None
    resource_type: ResourceType
    resource_id: str = Field(..., min_length=1)
    parent_id: str | None = Field(None, description="Comment this one replies to")
    mentions: list[str] = Field(default_factory=list, description="Mentioned user ids")
    attachments: list[CommentAttachment] = Field(default_factory=list)
    reactions: list[Reaction] = Field(default_factory=list)
    is_edited: bool = False
    is_pinned: bool = False
    is_deleted: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("created_at", "updated_at")
    @classmethod
    def normalize_timestamps(cls, v: datetime) -> datetime:
        return as_utc(v)

    @field_validator("parent_id")
    @classmethod
    def empty_parent_is_root(cls, v: str | None) -> str | None:
        """Treat an empty parent pointer as no parent."""
        return v or None

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    def reaction_of(self, user_id: str) -> Reaction | None:
        """Return the reaction left by ``user_id``, if any."""
        for reaction in self.reactions:
            if reaction.user_id == user_id:
                return reaction
        return None
