"""Publication-related Pydantic schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from epress_node.schemas.node import NodeResponse


class PostCreate(BaseModel):
    """Schema for creating a POST publication."""

    body: str = Field(..., min_length=1, description="Markdown content")


class PublicationUpdate(BaseModel):
    """Schema for editing an unsigned publication."""

    body: str | None = Field(None, min_length=1, description="New markdown content (POST)")
    description: str | None = Field(None, min_length=1, description="New caption (FILE)")


class SignatureSubmit(BaseModel):
    signature: str = Field(..., min_length=1)


class ContentResponse(BaseModel):
    content_hash: str
    type: str
    body: str | None = None
    filename: str | None = None
    mimetype: str | None = None
    size: int | None = None

    model_config = ConfigDict(from_attributes=True)


class PublicationResponse(BaseModel):
    """Schema for publication information returned by the API."""

    id: int
    content_hash: str
    author_address: str
    description: str | None = None
    signature: str | None = None
    is_signed: bool = False
    comment_count: int = 0
    created_at: datetime
    updated_at: datetime | None = None
    content: ContentResponse | None = None
    author: NodeResponse | None = None
    hashtags: list[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _from_orm(cls, data: object) -> object:
        if not isinstance(data, dict):
            data = {name: getattr(data, name, None) for name in cls.model_fields}
        data["is_signed"] = bool(data.get("signature"))
        data["hashtags"] = [getattr(tag, "hashtag", tag) for tag in data.get("hashtags") or []]
        return data

    model_config = ConfigDict(from_attributes=True)


class PublicationListResponse(BaseModel):
    items: list[PublicationResponse]
    total: int


class FeedItem(BaseModel):
    """One signed publication in the ``/ewp/publications`` feed."""

    content_hash: str
    author_address: str
    signature: str | None = None
    comment_count: int = 0
    created_at: datetime
    timestamp: int


class FeedPagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int = Field(serialization_alias="totalPages")
    has_next_page: bool = Field(serialization_alias="hasNextPage")
    has_prev_page: bool = Field(serialization_alias="hasPrevPage")


class PublicationFeedResponse(BaseModel):
    data: list[FeedItem]
    pagination: FeedPagination
