"""Session identity supplied by the authentication layer."""

from pydantic import BaseModel, Field


class Identity(BaseModel):
    """Who the local user is for the lifetime of a session."""

    user_id: str = Field(..., min_length=1, description="Stable user identifier")
    display_name: str = Field(..., min_length=1, description="Name shown to other users")
    avatar: str | None = Field(None, description="Avatar URL")
    token: str | None = Field(None, description="Bearer token passed on connect")

    model_config = {"extra": "forbid"}
