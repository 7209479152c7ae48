"""Schemas for signed typed statements exchanged over the API and EWP."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TypedDataResponse(BaseModel):
    """EIP-712 payload a wallet signs: ``{domain, types, primaryType, message}``."""

    domain: dict[str, Any]
    types: dict[str, list[dict[str, str]]]
    primary_type: str = Field(..., alias="primaryType")
    message: dict[str, Any]

    model_config = ConfigDict(populate_by_name=True)


class SignedStatement(BaseModel):
    """A typed statement together with the signature over it."""

    typed_data: dict[str, Any] = Field(..., alias="typedData")
    signature: str = Field(..., min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class StatusResponse(BaseModel):
    status: str
