"""Shared base for models that travel over the wire."""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC so that timestamps always compare."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class WireModel(BaseModel):
    """Base model: snake_case attributes, camelCase JSON keys."""

    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "extra": "ignore",
    }

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the JSON-compatible camelCase form sent over the socket."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def field_name_for(cls, key: str) -> str | None:
        """Resolve a wire key or attribute name to the attribute name."""
        if key in cls.model_fields:
            return key
        for name, info in cls.model_fields.items():
            if info.alias == key:
                return name
        return None
