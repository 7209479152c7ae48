"""Owner authentication endpoints for the epress API."""

from fastapi import APIRouter, HTTPException, Request, Response, status

from epress_node.api.v1.dependencies import SessionDep, http_error
from epress_node.core.settings import settings
from epress_node.db.time import utcnow
from epress_node.errors import ProtocolError, TokenRejectedError
from epress_node.schemas.auth import (
    LoginRequest,
    LoginResponse,
    NonceResponse,
    SessionRequest,
    SessionStatus,
)
from epress_node.services import auth as auth_service
from epress_node.services import tokens

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/nonce", response_model=NonceResponse)
async def issue_nonce(db: SessionDep) -> NonceResponse:
    """Issue a login challenge for the node owner to sign."""
    try:
        challenge = auth_service.issue_challenge(db)
    except ProtocolError as err:
        raise http_error(err) from err
    return NonceResponse(nonce=challenge.token, message=challenge.message)


@router.post("/login", response_model=LoginResponse)
async def login(payload: LoginRequest, db: SessionDep) -> LoginResponse:
    """Exchange a signed challenge for a session token.

    Args:
        payload: The nonce token and the owner's signature over its message.
        db: Database session

    Returns:
        A bearer session token.

    Raises:
        HTTPException: 400 if the nonce is stale or the signature is not
            the owner's.
    """
    try:
        token = auth_service.login(db, payload.nonce, payload.signature)
    except ProtocolError as err:
        raise http_error(err) from err
    return LoginResponse(access_token=token)


@router.post("/session", response_model=SessionStatus)
async def set_session(payload: SessionRequest, response: Response) -> SessionStatus:
    """Store a session token in an httpOnly cookie.

    The cookie lifetime follows the token's own expiry and falls back to
    ``SESSION_COOKIE_DEFAULT_SECONDS`` when the token carries none.
    """
    try:
        claims = tokens.decode_session(payload.token)
    except TokenRejectedError as err:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        ) from err

    if claims.expires_at is not None:
        max_age = max(0, int((claims.expires_at - utcnow()).total_seconds()))
    else:
        max_age = settings.session_cookie_default_seconds
    response.set_cookie(
        key=settings.session_cookie_name,
        value=payload.token,
        max_age=max_age,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
        path="/",
    )
    return SessionStatus(authenticated=True)


@router.get("/session", response_model=SessionStatus)
async def get_session(request: Request) -> SessionStatus:
    """Report whether a session cookie is present, without revealing it."""
    return SessionStatus(authenticated=bool(request.cookies.get(settings.session_cookie_name)))


@router.delete("/session", response_model=SessionStatus)
async def clear_session(response: Response) -> SessionStatus:
    response.delete_cookie(
        key=settings.session_cookie_name,
        path="/",
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )
    return SessionStatus(authenticated=False)
