"""Signature recovery and verification for typed statements.

Verification is fail-closed: malformed signatures, malformed statements and
recovery errors all produce ``False`` instead of an exception. Comparisons
between addresses are case-insensitive.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from eth_account import Account
from eth_account.messages import SignableMessage
from eth_utils import to_hex

from epress_node.db.time import to_unix
from epress_node.services.statements import (
    COMMENT_SIGNATURE,
    STATEMENT_OF_SOURCE,
    TypedStatement,
    login_signable,
)
from epress_node.utils.hash import body_hash

if TYPE_CHECKING:
    from epress_node.models import Publication

logger = logging.getLogger(__name__)


def _same_address(left: str | None, right: str | None) -> bool:
    if not left or not right:
        return False
    return left.lower() == right.lower()


def recover_signer(statement: TypedStatement, signature: str | bytes) -> str | None:
    """Return the checksum address that produced ``signature`` or ``None``."""
    try:
        return Account.recover_message(statement.signable(), signature=signature)
    except Exception as err:
        logger.debug("Signature recovery failed for %s: %s", statement.primary_type, err)
        return None


def verify(statement: TypedStatement, signature: str | bytes, expected_signer: str) -> bool:
    """Return ``True`` only if ``signature`` over ``statement`` recovers to ``expected_signer``."""
    recovered = recover_signer(statement, signature)
    return _same_address(recovered, expected_signer)


def verify_message(text: str, signature: str | bytes, expected_signer: str) -> bool:
    """Verify an EIP-191 personal-sign signature over ``text``."""
    try:
        recovered = Account.recover_message(login_signable(text), signature=signature)
    except Exception as err:
        logger.debug("Message signature recovery failed: %s", err)
        return False
    return _same_address(recovered, expected_signer)


def verify_statement_of_source(
    publication: Publication,
    statement: TypedStatement,
    signature: str | bytes,
) -> bool:
    """Verify a StatementOfSource against the stored publication.

    The statement must name the publication's content hash and author, and
    its timestamp must equal the publication's creation time.
    """
    if statement.primary_type != STATEMENT_OF_SOURCE:
        return False
    message = statement.message
    if message["contentHash"] != publication.content_hash.lower():
        return False
    if not _same_address(message["publisherAddress"], publication.author_address):
        return False
    if message["timestamp"] != to_unix(publication.created_at):
        return False
    return verify(statement, signature, publication.author_address)


@dataclass(frozen=True)
class CommentContext:
    """Server-side facts a comment signature must be bound to."""

    node_address: str
    publication_id: int
    commenter_address: str
    body: str


def verify_comment_signature(
    context: CommentContext,
    statement: TypedStatement,
    signature: str | bytes,
) -> bool:
    """Verify a CommentSignature statement against server-side context."""
    if statement.primary_type != COMMENT_SIGNATURE:
        return False
    message = statement.message
    if message["publicationId"] != context.publication_id:
        return False
    if not _same_address(message["nodeAddress"], context.node_address):
        return False
    if not _same_address(message["commenterAddress"], context.commenter_address):
        return False
    if message["commentBodyHash"] != body_hash(context.body):
        return False
    return verify(statement, signature, context.commenter_address)


class Signer(Protocol):
    """Anything able to sign an encoded message on behalf of one address."""

    address: str

    def sign(self, message: SignableMessage) -> str:
        """Return a ``0x`` hex signature over ``message``."""
        ...


class LocalAccountSigner:
    """Signer backed by a private key held in memory."""

    def __init__(self, private_key: str | bytes) -> None:
        self._account = Account.from_key(private_key)

    @classmethod
    def create(cls) -> LocalAccountSigner:
        account = Account.create()
        return cls(account.key)

    @property
    def address(self) -> str:
        return self._account.address

    def sign(self, message: SignableMessage) -> str:
        signed = self._account.sign_message(message)
        return to_hex(signed.signature)

    def sign_statement(self, statement: TypedStatement) -> str:
        return self.sign(statement.signable())

    def sign_text(self, text: str) -> str:
        return self.sign(login_signable(text))
