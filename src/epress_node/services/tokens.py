"""Self-verifying bearer tokens.

Three token families share one HMAC secret and are kept apart by audience:

* ``comment``: email confirmation and deletion links (``confirm``/``destroy``).
* ``client``: the node owner's session.
* ``nonce``: the short-lived challenge signed during owner login.

Tokens are never persisted; validity is purely signature plus expiry.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Final

from jose import ExpiredSignatureError, JWTError, jwt

from epress_node.core.settings import settings
from epress_node.db.time import from_unix, utcnow
from epress_node.errors import TokenExpiredError, TokenInvalidError

logger = logging.getLogger(__name__)

COMMENT_AUDIENCE: Final = "comment"
SESSION_AUDIENCE: Final = "client"
NONCE_AUDIENCE: Final = "nonce"

ACTION_CONFIRM: Final = "confirm"
ACTION_DESTROY: Final = "destroy"
ACTIONS: Final = frozenset({ACTION_CONFIRM, ACTION_DESTROY})


@dataclass(frozen=True)
class ConfirmationClaims:
    """Validated payload of an email confirmation token."""

    action: str
    comment_id: int
    email: str
    issued_at: datetime
    expires_at: datetime
    token_id: str


@dataclass(frozen=True)
class SessionClaims:
    """Validated payload of an owner session token."""

    address: str
    expires_at: datetime | None


@dataclass(frozen=True)
class NonceClaims:
    """Validated payload of a login challenge."""

    nonce: str
    issued_at: int


def _encode(claims: dict[str, Any]) -> str:
    encoded: str = jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)
    return encoded


def _decode(token: str, audience: str) -> dict[str, Any]:
    if not token or not isinstance(token, str):
        raise TokenInvalidError("Token missing")
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
            audience=audience,
        )
    except ExpiredSignatureError as err:
        raise TokenExpiredError("Token expired") from err
    except JWTError as err:
        raise TokenInvalidError("Token invalid") from err
    return payload


def issue(
    action: str,
    comment_id: int,
    email: str,
    *,
    ttl_seconds: int | None = None,
) -> str:
    """Issue a confirmation token for ``action`` on ``comment_id``.

    Args:
        action: ``confirm`` or ``destroy``.
        comment_id: Identifier of the comment the token acts on.
        email: Address the token is mailed to; becomes the ``sub`` claim.
        ttl_seconds: Lifetime override, defaults to ``COMMENT_TOKEN_TTL_SECONDS``.

    Returns:
        The encoded JWT.

    Raises:
        ValueError: If ``action`` is not a known action.
    """
    if action not in ACTIONS:
        raise ValueError(f"Unknown token action: {action}")
    ttl = settings.comment_token_ttl_seconds if ttl_seconds is None else ttl_seconds
    now = utcnow()
    claims: dict[str, Any] = {
        "aud": COMMENT_AUDIENCE,
        "sub": email,
        "comment_id": int(comment_id),
        "action": action,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=ttl)).timestamp()),
        "jti": uuid.uuid4().hex,
    }
    return _encode(claims)


def validate(token: str) -> ConfirmationClaims:
    """Decode and check a confirmation token.

    Raises:
        TokenExpiredError: If the signature is valid but ``exp`` has passed.
        TokenInvalidError: If the token is forged, malformed, or its claims
            are unusable (including an unknown ``action``).
    """
    payload = _decode(token, COMMENT_AUDIENCE)
    action = payload.get("action")
    if action not in ACTIONS:
        raise TokenInvalidError("Unknown token action")
    comment_id = payload.get("comment_id")
    email = payload.get("sub")
    if isinstance(comment_id, bool) or not isinstance(comment_id, int):
        raise TokenInvalidError("Token is missing a comment id")
    if not isinstance(email, str) or not email:
        raise TokenInvalidError("Token is missing a subject")
    return ConfirmationClaims(
        action=action,
        comment_id=comment_id,
        email=email,
        issued_at=from_unix(payload.get("iat", 0)),
        expires_at=from_unix(payload["exp"]),
        token_id=str(payload.get("jti", "")),
    )


def peek_action(token: str) -> str | None:
    """Return the unverified ``action`` claim, or ``None`` if unreadable.

    Only used to route a verification request; the full check happens in
    :func:`validate`.
    """
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError:
        return None
    action = claims.get("action")
    return action if action in ACTIONS else None


def issue_session(address: str, *, expire_minutes: int | None = None) -> str:
    """Issue a session token for the node owner."""
    minutes = settings.session_token_expire_minutes if expire_minutes is None else expire_minutes
    now = utcnow()
    return _encode(
        {
            "aud": SESSION_AUDIENCE,
            "sub": address,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(minutes=minutes)).timestamp()),
        }
    )


def decode_session(token: str) -> SessionClaims:
    """Validate a session token and return its claims."""
    payload = _decode(token, SESSION_AUDIENCE)
    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise TokenInvalidError("Session token has no subject")
    expires = payload.get("exp")
    return SessionClaims(
        address=subject, expires_at=from_unix(expires) if expires is not None else None
    )


def issue_nonce() -> tuple[str, NonceClaims]:
    """Issue a login challenge token together with its decoded claims."""
    now = int(utcnow().timestamp())
    nonce = secrets.token_hex(16)
    token = _encode(
        {
            "aud": NONCE_AUDIENCE,
            "nonce": nonce,
            "iat": now,
            "exp": now + settings.login_nonce_ttl_seconds,
        }
    )
    return token, NonceClaims(nonce=nonce, issued_at=now)


def decode_nonce(token: str) -> NonceClaims:
    """Validate a login challenge token."""
    payload = _decode(token, NONCE_AUDIENCE)
    nonce = payload.get("nonce")
    if not isinstance(nonce, str) or not nonce:
        raise TokenInvalidError("Nonce token has no nonce")
    return NonceClaims(nonce=nonce, issued_at=int(payload.get("iat", 0)))
