"""Comment-related Pydantic schemas."""

import re
from datetime import datetime
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from epress_node.models.comment import AUTH_TYPE_EMAIL

ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")
SIGNATURE_PATTERN = re.compile(r"^0x[0-9a-fA-F]{130}$")


def _check_signature(value: str) -> str:
    if not SIGNATURE_PATTERN.match(value):
        raise ValueError("signature must be a 65-byte 0x-prefixed hex string")
    return value


class EthereumAuth(BaseModel):
    """Wallet channel: the comment is authenticated by a CommentSignature."""

    type: Literal["ETHEREUM"] = "ETHEREUM"
    address: str = Field(..., description="Commenter account address")
    signature: str = Field(..., description="EIP-712 signature over the CommentSignature")
    timestamp: int = Field(..., ge=0, description="Unix time used in the signed statement")

    @field_validator("address")
    @classmethod
    def _validate_address(cls, value: str) -> str:
        if not ADDRESS_PATTERN.match(value):
            raise ValueError("address must be a 20-byte 0x-prefixed hex string")
        return value

    @field_validator("signature")
    @classmethod
    def _validate_signature(cls, value: str) -> str:
        return _check_signature(value)


class EmailAuth(BaseModel):
    """Email channel: the comment is confirmed by a mailed link."""

    type: Literal["EMAIL"] = "EMAIL"
    email: EmailStr = Field(..., description="Address the confirmation is sent to")


CommentAuth = Annotated[EthereumAuth | EmailAuth, Field(discriminator="type")]


class EthereumDeletionAuth(BaseModel):
    """Wallet deletion: a DeleteComment signature by the original commenter."""

    type: Literal["ETHEREUM"] = "ETHEREUM"
    signature: str

    @field_validator("signature")
    @classmethod
    def _validate_signature(cls, value: str) -> str:
        return _check_signature(value)


CommentDeletionAuth = Annotated[EthereumDeletionAuth | EmailAuth, Field(discriminator="type")]


class CommentCreate(BaseModel):
    """Schema for submitting a comment on a publication."""

    publication_id: int = Field(..., ge=1)
    body: str = Field(..., min_length=1, max_length=10000)
    author_name: str = Field(..., min_length=1, max_length=50)
    auth: CommentAuth

    @field_validator("body", "author_name")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value


class CommentDeleteRequest(BaseModel):
    """Schema for a commenter's deletion request."""

    auth: CommentDeletionAuth


class CommentResponse(BaseModel):
    """Schema for comment information returned by the API.

    ``author_id`` is withheld for email comments.
    """

    id: int
    publication_id: int
    body: str
    status: str
    auth_type: str
    author_name: str
    author_id: str | None = None
    credential: str | None = None
    created_at: datetime

    @model_validator(mode="before")
    @classmethod
    def _hide_email(cls, data: object) -> object:
        if not isinstance(data, dict):
            data = {name: getattr(data, name, None) for name in cls.model_fields}
        if data.get("auth_type") == AUTH_TYPE_EMAIL:
            data["author_id"] = None
        return data

    model_config = ConfigDict(from_attributes=True)


class CommentListResponse(BaseModel):
    items: list[CommentResponse]
    total: int


class DeletionRequestResponse(BaseModel):
    """Outcome of a deletion request: ``deleted`` or ``confirmation_sent``."""

    status: Literal["deleted", "confirmation_sent"]


class VerifyRequest(BaseModel):
    token: str = Field(..., min_length=1)


class VerifyResponse(BaseModel):
    """Result of following an emailed confirmation link."""

    ok: bool
    action: Literal["confirm", "destroy"] | None = None
    comment_id: int | None = None
    detail: str | None = None
