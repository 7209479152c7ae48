"""Node and profile Pydantic schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class NodeResponse(BaseModel):
    """Public information about a node."""

    address: str
    url: str
    title: str
    description: str | None = None
    profile_version: int = 0
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class NodeListResponse(BaseModel):
    items: list[NodeResponse]
    total: int


class ProfileUpdate(BaseModel):
    """Owner edit of the local profile; omitted fields stay unchanged."""

    title: str | None = Field(None, max_length=255)
    description: str | None = Field(None, max_length=160)
    url: str | None = Field(None, max_length=2048)


class BroadcastResponse(BaseModel):
    delivered: int
