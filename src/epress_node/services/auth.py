"""Owner login by wallet signature."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from epress_node.errors import NotFoundError, SignatureMismatchError
from epress_node.models import Node
from epress_node.services import signatures, statements, tokens
from epress_node.services.node_settings import get_self_node

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoginChallenge:
    token: str
    message: str


def _owner(db: Session) -> Node:
    node = get_self_node(db)
    if node is None:
        raise NotFoundError("Node is not installed")
    return node


def issue_challenge(db: Session) -> LoginChallenge:
    """Return a nonce token and the exact text the owner must sign."""
    node = _owner(db)
    token, claims = tokens.issue_nonce()
    message = statements.login_message(node.url, node.address, claims.nonce, claims.issued_at)
    return LoginChallenge(token=token, message=message)


def login(db: Session, nonce_token: str, signature: str) -> str:
    """Exchange a signed challenge for a session token.

    Raises:
        TokenRejectedError: If the nonce token is expired or forged.
        SignatureMismatchError: If the signature is not the owner's.
    """
    node = _owner(db)
    claims = tokens.decode_nonce(nonce_token)
    message = statements.login_message(node.url, node.address, claims.nonce, claims.issued_at)
    if not signatures.verify_message(message, signature, node.address):
        logger.warning("Rejected owner login signature")
        raise SignatureMismatchError("Invalid signature")
    logger.info("Owner %s logged in", node.address)
    return tokens.issue_session(node.address)
