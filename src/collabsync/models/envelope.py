"""Wire envelope and the typed payloads it carries."""

import json
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import Field, ValidationError, field_validator

from collabsync.errors import ProtocolError
from collabsync.models.base import WireModel, as_utc, utcnow
from collabsync.models.comment import ResourceType

# Maximum accepted inbound frame size (64 KB)
MAX_ENVELOPE_SIZE = 65536


class ClientMessageType(str, Enum):
    """Envelope types sent by the client."""

    AUTH = "auth"
    PING = "ping"
    COMMENT_ADD = "comment_add"
    COMMENT_UPDATE = "comment_update"
    COMMENT_DELETE = "comment_delete"
    TYPING = "typing"
    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"


class ServerMessageType(str, Enum):
    """Envelope types sent by the server."""

    COMMENT_ADDED = "comment_added"
    COMMENT_UPDATED = "comment_updated"
    COMMENT_DELETED = "comment_deleted"
    USER_TYPING = "user_typing"
    NOTIFICATION = "notification"
    PONG = "pong"
    ERROR = "error"


class Envelope(WireModel):
    """The ``{type, payload, timestamp}`` frame around every message."""

    type: str = Field(..., min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return as_utc(v)

    @classmethod
    def build(cls, type: str | Enum, payload: WireModel | dict[str, Any] | None = None) -> "Envelope":
        """Create an envelope stamped with the current time."""
        if isinstance(type, Enum):
            type = type.value
        if isinstance(payload, WireModel):
            payload = payload.to_wire()
        return cls(type=type, payload=payload or {}, timestamp=utcnow())

    @classmethod
    def from_json(cls, raw: str | bytes) -> "Envelope":
        """Parse a raw frame, raising ProtocolError if it is not a valid envelope."""
        if len(raw) > MAX_ENVELOPE_SIZE:
            raise ProtocolError("Envelope too large")
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ProtocolError(f"Invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ProtocolError("Envelope must be a JSON object")
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ProtocolError(f"Malformed envelope: {e.error_count()} error(s)") from e

    def to_json(self) -> str:
        return json.dumps(self.to_wire(), ensure_ascii=False)


class AuthPayload(WireModel):
    user_id: str


class CommentUpdatePayload(WireModel):
    comment_id: str = Field(..., min_length=1)
    updates: dict[str, Any] = Field(default_factory=dict)


class CommentDeletePayload(WireModel):
    comment_id: str = Field(..., min_length=1)


class TypingPayload(WireModel):
    """Outbound typing signal; the server adds the user's display name."""

    resource_id: str
    user_id: str
    is_typing: bool


class UserTypingPayload(WireModel):
    resource_id: str
    user_id: str
    user_name: str
    is_typing: bool


class SubscriptionPayload(WireModel):
    resource_type: ResourceType
    resource_id: str = Field(..., min_length=1)
