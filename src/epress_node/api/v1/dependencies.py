"""Shared API dependencies for authentication and common functionality."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from epress_node.core.settings import settings
from epress_node.db.session import get_db
from epress_node.errors import ProtocolError, TokenRejectedError
from epress_node.models import Node
from epress_node.services import tokens
from epress_node.services.federation import FederationClient, get_federation_client
from epress_node.services.mailer import Mailer, get_mailer
from epress_node.services.node_settings import get_self_node

# Bearer scheme is optional: the session may also arrive as a cookie.
bearer_scheme = HTTPBearer(auto_error=False)

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]

STATUS_BY_CODE: dict[str, int] = {
    "VALIDATION_FAILED": status.HTTP_400_BAD_REQUEST,
    "INVALID_SIGNATURE": status.HTTP_400_BAD_REQUEST,
    "VERIFICATION_FAILED": status.HTTP_400_BAD_REQUEST,
    "IMMUTABLE": status.HTTP_403_FORBIDDEN,
    "FORBIDDEN": status.HTTP_403_FORBIDDEN,
    "FEATURE_DISABLED": status.HTTP_403_FORBIDDEN,
    "COMMENT_DISABLED": status.HTTP_403_FORBIDDEN,
    "FOLLOW_DISABLED": status.HTTP_403_FORBIDDEN,
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "CONFLICT": status.HTTP_409_CONFLICT,
    "FEDERATION_FAILED": status.HTTP_502_BAD_GATEWAY,
}


def http_error(err: ProtocolError) -> HTTPException:
    """Translate a service rejection into an HTTP error with a stable code."""
    return HTTPException(
        status_code=STATUS_BY_CODE.get(err.code, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail={"code": err.code, "message": err.message},
    )


def _session_token(
    request: Request, credentials: HTTPAuthorizationCredentials | None
) -> str | None:
    if credentials is not None and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(settings.session_cookie_name)


def get_current_owner(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    db: SessionDep,
) -> Node:
    """Return the self node if the request carries the owner's session.

    Raises:
        HTTPException: 401 without a valid session, 403 if the session
            belongs to another address.
    """
    token = _session_token(request, credentials)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    try:
        claims = tokens.decode_session(token)
    except TokenRejectedError as err:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        ) from err

    node = get_self_node(db)
    if node is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Node is not installed",
        )
    if claims.address.lower() != node.address.lower():
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions",
        )
    return node


def get_federation() -> FederationClient:
    return get_federation_client()


def get_mailer_dep() -> Mailer:
    return get_mailer()


# Type aliases for dependency injection
OwnerDep = Annotated[Node, Depends(get_current_owner)]
FederationDep = Annotated[FederationClient, Depends(get_federation)]
MailerDep = Annotated[Mailer, Depends(get_mailer_dep)]
