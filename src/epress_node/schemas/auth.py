"""Owner authentication schemas."""

from pydantic import BaseModel, Field


class NonceResponse(BaseModel):
    """Login challenge: sign ``message`` and send it back with ``nonce``."""

    nonce: str
    message: str


class LoginRequest(BaseModel):
    nonce: str = Field(..., min_length=1)
    signature: str = Field(..., min_length=1)


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class SessionRequest(BaseModel):
    token: str = Field(..., min_length=1)


class SessionStatus(BaseModel):
    """Presence of a session cookie; never the token itself."""

    authenticated: bool
