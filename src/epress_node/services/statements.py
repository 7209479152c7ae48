"""Typed statement construction (EIP-712).

Every attestable action is expressed as an EIP-712 typed message sharing one
domain separator (application name, version, chain id), so a signature made
for one statement kind, application, or protocol version never verifies as
another. This module only builds data; signing happens in the caller's
wallet and verification lives in :mod:`epress_node.services.signatures`.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Final

from eth_account.messages import SignableMessage, encode_defunct, encode_typed_data
from eth_utils import is_address, keccak, to_checksum_address

from epress_node.core.settings import settings
from epress_node.db.time import to_unix
from epress_node.errors import MalformedStatementError
from epress_node.utils.hash import normalize_content_hash

STATEMENT_OF_SOURCE: Final = "StatementOfSource"
CREATE_CONNECTION: Final = "CreateConnection"
DELETE_CONNECTION: Final = "DeleteConnection"
COMMENT_SIGNATURE: Final = "CommentSignature"
DELETE_COMMENT: Final = "DeleteComment"
NODE_PROFILE_UPDATE: Final = "NodeProfileUpdate"
INSTALL: Final = "Install"

DOMAIN_FIELDS: Final[list[dict[str, str]]] = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
]

# Struct definitions per primary type, including any nested struct types.
STATEMENT_TYPES: Final[dict[str, dict[str, list[dict[str, str]]]]] = {
    STATEMENT_OF_SOURCE: {
        STATEMENT_OF_SOURCE: [
            {"name": "contentHash", "type": "bytes32"},
            {"name": "publisherAddress", "type": "address"},
            {"name": "timestamp", "type": "uint64"},
        ],
    },
    CREATE_CONNECTION: {
        CREATE_CONNECTION: [
            {"name": "followeeAddress", "type": "address"},
            {"name": "followeeUrl", "type": "string"},
            {"name": "followerUrl", "type": "string"},
            {"name": "timestamp", "type": "uint256"},
        ],
    },
    DELETE_CONNECTION: {
        DELETE_CONNECTION: [
            {"name": "followeeAddress", "type": "address"},
            {"name": "followerAddress", "type": "address"},
            {"name": "timestamp", "type": "uint256"},
        ],
    },
    COMMENT_SIGNATURE: {
        COMMENT_SIGNATURE: [
            {"name": "nodeAddress", "type": "address"},
            {"name": "commenterAddress", "type": "address"},
            {"name": "publicationId", "type": "uint256"},
            {"name": "commentBodyHash", "type": "bytes32"},
            {"name": "timestamp", "type": "uint256"},
        ],
    },
    DELETE_COMMENT: {
        DELETE_COMMENT: [
            {"name": "nodeAddress", "type": "address"},
            {"name": "commentId", "type": "uint256"},
            {"name": "commenterAddress", "type": "address"},
        ],
    },
    NODE_PROFILE_UPDATE: {
        NODE_PROFILE_UPDATE: [
            {"name": "publisherAddress", "type": "address"},
            {"name": "url", "type": "string"},
            {"name": "title", "type": "string"},
            {"name": "description", "type": "string"},
            {"name": "profileVersion", "type": "uint256"},
            {"name": "timestamp", "type": "uint256"},
        ],
    },
    INSTALL: {
        INSTALL: [
            {"name": "node", "type": "NodeInfo"},
            {"name": "settings", "type": "InstallSettings"},
            {"name": "timestamp", "type": "uint256"},
        ],
        "NodeInfo": [
            {"name": "address", "type": "address"},
            {"name": "url", "type": "string"},
            {"name": "title", "type": "string"},
            {"name": "description", "type": "string"},
        ],
        "InstallSettings": [
            {"name": "defaultLanguage", "type": "string"},
            {"name": "defaultTheme", "type": "string"},
            {"name": "mailFrom", "type": "string"},
        ],
    },
}

_UINT64_MAX: Final = 2**64 - 1
_UINT256_MAX: Final = 2**256 - 1


def default_domain() -> dict[str, Any]:
    """Return the configured domain separator."""
    return dict(settings.statement_domain)


@dataclass(frozen=True)
class TypedStatement:
    """A canonical, signable statement.

    ``message`` values are JSON friendly: addresses in checksum form, bytes32
    values as ``0x`` hex strings, integers as ints.
    """

    primary_type: str
    message: Mapping[str, Any]
    domain: Mapping[str, Any] = field(default_factory=default_domain)

    @property
    def types(self) -> dict[str, list[dict[str, str]]]:
        return {"EIP712Domain": list(DOMAIN_FIELDS), **STATEMENT_TYPES[self.primary_type]}

    def typed_data(self) -> dict[str, Any]:
        """Return the full ``{domain, types, primaryType, message}`` payload."""
        return {
            "domain": dict(self.domain),
            "types": self.types,
            "primaryType": self.primary_type,
            "message": _copy(self.message),
        }

    def signable(self) -> SignableMessage:
        """Return the EIP-712 encoding handed to a signer or recoverer."""
        payload = self.typed_data()
        payload["message"] = _binary_message(self.types, self.primary_type, payload["message"])
        return encode_typed_data(full_message=payload)

    def canonical_bytes(self) -> bytes:
        """Return ``0x19 || 0x01 || domainSeparator || hashStruct(message)``."""
        signable = self.signable()
        return b"\x19" + signable.version + signable.header + signable.body

    def digest(self) -> bytes:
        """Return the 32-byte EIP-712 hash that wallets actually sign."""
        return keccak(self.canonical_bytes())

    def get(self, name: str) -> Any:
        return self.message[name]


def _copy(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _copy(item) for key, item in value.items()}
    return value


def _binary_message(
    types: Mapping[str, list[dict[str, str]]], struct: str, message: Mapping[str, Any]
) -> dict[str, Any]:
    """Convert bytes32 hex strings to bytes for the encoder."""
    converted: dict[str, Any] = {}
    for field in types[struct]:
        name, type_ = field["name"], field["type"]
        value = message[name]
        if type_ in types:
            converted[name] = _binary_message(types, type_, value)
        elif type_ == "bytes32":
            converted[name] = bytes.fromhex(value[2:])
        else:
            converted[name] = value
    return converted


# --- field normalizers -------------------------------------------------------------


def normalize_address(value: Any, field_name: str = "address") -> str:
    """Return ``value`` as a checksum address.

    Raises:
        MalformedStatementError: If the value is not a 20-byte hex address.
    """
    if not isinstance(value, str) or not is_address(value):
        raise MalformedStatementError(f"Invalid address for {field_name}")
    return to_checksum_address(value)


def _uint(value: Any, field_name: str, maximum: int = _UINT256_MAX) -> int:
    if isinstance(value, datetime):
        value = to_unix(value)
    if isinstance(value, bool):
        raise MalformedStatementError(f"Invalid integer for {field_name}")
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if not isinstance(value, int) or value < 0 or value > maximum:
        raise MalformedStatementError(f"Invalid integer for {field_name}")
    return value


def _bytes32(value: Any, field_name: str) -> str:
    if not isinstance(value, str):
        raise MalformedStatementError(f"Invalid bytes32 for {field_name}")
    try:
        return normalize_content_hash(value)
    except ValueError as err:
        raise MalformedStatementError(f"Invalid bytes32 for {field_name}") from err


def _string(value: Any, field_name: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise MalformedStatementError(f"Invalid string for {field_name}")
    return value


def _required_string(value: Any, field_name: str) -> str:
    text = _string(value, field_name)
    if not text:
        raise MalformedStatementError(f"Missing value for {field_name}")
    return text


# --- builders ----------------------------------------------------------------------


def statement_of_source(
    content_hash: str,
    publisher_address: str,
    timestamp: int | datetime,
) -> TypedStatement:
    """Build the publisher's claim to be the source of a content hash.

    ``timestamp`` must be the publication's original ``created_at``; signing
    later does not move the attested moment.
    """
    return TypedStatement(
        STATEMENT_OF_SOURCE,
        {
            "contentHash": _bytes32(content_hash, "contentHash"),
            "publisherAddress": normalize_address(publisher_address, "publisherAddress"),
            "timestamp": _uint(timestamp, "timestamp", _UINT64_MAX),
        },
    )


def create_connection(
    followee_address: str,
    followee_url: str,
    follower_url: str,
    timestamp: int | datetime,
) -> TypedStatement:
    """Build the follower's attestation that it follows ``followee_address``."""
    return TypedStatement(
        CREATE_CONNECTION,
        {
            "followeeAddress": normalize_address(followee_address, "followeeAddress"),
            "followeeUrl": _required_string(followee_url, "followeeUrl"),
            "followerUrl": _required_string(follower_url, "followerUrl"),
            "timestamp": _uint(timestamp, "timestamp"),
        },
    )


def delete_connection(
    followee_address: str,
    follower_address: str,
    timestamp: int | datetime,
) -> TypedStatement:
    """Build an attested unfollow."""
    return TypedStatement(
        DELETE_CONNECTION,
        {
            "followeeAddress": normalize_address(followee_address, "followeeAddress"),
            "followerAddress": normalize_address(follower_address, "followerAddress"),
            "timestamp": _uint(timestamp, "timestamp"),
        },
    )


def comment_signature(
    node_address: str,
    commenter_address: str,
    publication_id: int,
    comment_body_hash: str,
    timestamp: int | datetime,
) -> TypedStatement:
    """Build the commenter's authorship claim for a comment on one publication."""
    return TypedStatement(
        COMMENT_SIGNATURE,
        {
            "nodeAddress": normalize_address(node_address, "nodeAddress"),
            "commenterAddress": normalize_address(commenter_address, "commenterAddress"),
            "publicationId": _uint(publication_id, "publicationId"),
            "commentBodyHash": _bytes32(comment_body_hash, "commentBodyHash"),
            "timestamp": _uint(timestamp, "timestamp"),
        },
    )


def delete_comment(
    node_address: str,
    comment_id: int,
    commenter_address: str,
) -> TypedStatement:
    """Build the deletion intent for a comment hosted by ``node_address``."""
    return TypedStatement(
        DELETE_COMMENT,
        {
            "nodeAddress": normalize_address(node_address, "nodeAddress"),
            "commentId": _uint(comment_id, "commentId"),
            "commenterAddress": normalize_address(commenter_address, "commenterAddress"),
        },
    )


def node_profile_update(
    publisher_address: str,
    url: str,
    title: str,
    description: str | None,
    timestamp: int | datetime,
    profile_version: int = 0,
) -> TypedStatement:
    """Build a node's attestation of its current profile fields."""
    return TypedStatement(
        NODE_PROFILE_UPDATE,
        {
            "publisherAddress": normalize_address(publisher_address, "publisherAddress"),
            "url": _required_string(url, "url"),
            "title": _string(title, "title"),
            "description": _string(description, "description"),
            "profileVersion": _uint(profile_version, "profileVersion"),
            "timestamp": _uint(timestamp, "timestamp"),
        },
    )


def install(
    node: Mapping[str, Any],
    install_settings: Mapping[str, Any] | None,
    timestamp: int | datetime,
) -> TypedStatement:
    """Build the owner's attestation that initialises a node."""
    if not isinstance(node, Mapping):
        raise MalformedStatementError("Invalid node section")
    install_settings = install_settings or {}
    if not isinstance(install_settings, Mapping):
        raise MalformedStatementError("Invalid settings section")
    return TypedStatement(
        INSTALL,
        {
            "node": {
                "address": normalize_address(node.get("address"), "node.address"),
                "url": _required_string(node.get("url"), "node.url"),
                "title": _required_string(node.get("title"), "node.title"),
                "description": _string(node.get("description"), "node.description"),
            },
            "settings": {
                "defaultLanguage": _string(
                    install_settings.get("defaultLanguage"), "settings.defaultLanguage"
                ),
                "defaultTheme": _string(
                    install_settings.get("defaultTheme"), "settings.defaultTheme"
                ),
                "mailFrom": _string(install_settings.get("mailFrom"), "settings.mailFrom"),
            },
            "timestamp": _uint(timestamp, "timestamp"),
        },
    )


def _from_message(primary_type: str, message: Mapping[str, Any]) -> TypedStatement:
    if primary_type == STATEMENT_OF_SOURCE:
        return statement_of_source(
            message.get("contentHash"), message.get("publisherAddress"), message.get("timestamp")
        )
    if primary_type == CREATE_CONNECTION:
        return create_connection(
            message.get("followeeAddress"),
            message.get("followeeUrl"),
            message.get("followerUrl"),
            message.get("timestamp"),
        )
    if primary_type == DELETE_CONNECTION:
        return delete_connection(
            message.get("followeeAddress"), message.get("followerAddress"), message.get("timestamp")
        )
    if primary_type == COMMENT_SIGNATURE:
        return comment_signature(
            message.get("nodeAddress"),
            message.get("commenterAddress"),
            message.get("publicationId"),
            message.get("commentBodyHash"),
            message.get("timestamp"),
        )
    if primary_type == DELETE_COMMENT:
        return delete_comment(
            message.get("nodeAddress"), message.get("commentId"), message.get("commenterAddress")
        )
    if primary_type == NODE_PROFILE_UPDATE:
        return node_profile_update(
            message.get("publisherAddress"),
            message.get("url"),
            message.get("title"),
            message.get("description"),
            message.get("timestamp"),
            message.get("profileVersion", 0),
        )
    if primary_type == INSTALL:
        return install(message.get("node"), message.get("settings"), message.get("timestamp"))
    raise MalformedStatementError(f"Unknown statement kind: {primary_type}")


def statement_from_typed_data(
    payload: Mapping[str, Any],
    *,
    expected_kind: str | None = None,
) -> TypedStatement:
    """Rebuild a statement from a client supplied typed-data payload.

    The client's ``types`` section is ignored in favour of the canonical
    schema; the domain must equal this node's domain separator.

    Raises:
        MalformedStatementError: On a foreign domain, unknown or unexpected
            kind, or invalid message fields.
    """
    if not isinstance(payload, Mapping):
        raise MalformedStatementError("Typed data must be an object")
    primary_type = payload.get("primaryType")
    message = payload.get("message")
    if not isinstance(primary_type, str) or not isinstance(message, Mapping):
        raise MalformedStatementError("Typed data is missing primaryType or message")
    if primary_type not in STATEMENT_TYPES:
        raise MalformedStatementError(f"Unknown statement kind: {primary_type}")
    if expected_kind is not None and primary_type != expected_kind:
        raise MalformedStatementError(f"Expected a {expected_kind} statement")
    if not _same_domain(payload.get("domain")):
        raise MalformedStatementError("Statement domain does not match this network")
    return _from_message(primary_type, message)


def _same_domain(domain: Any) -> bool:
    if not isinstance(domain, Mapping):
        return False
    expected = default_domain()
    try:
        chain_id = int(domain.get("chainId"))
    except (TypeError, ValueError):
        return False
    return (
        domain.get("name") == expected["name"]
        and str(domain.get("version")) == expected["version"]
        and chain_id == expected["chainId"]
    )


def login_message(node_url: str, address: str, nonce: str, issued_at: int) -> str:
    """Return the human readable text the node owner signs to log in."""
    return (
        f"{node_url} wants you to sign in with your account:\n"
        f"{normalize_address(address)}\n\n"
        f"Nonce: {nonce}\n"
        f"Issued At: {issued_at}"
    )


def login_signable(message: str) -> SignableMessage:
    """Return the EIP-191 encoding of a login message."""
    return encode_defunct(text=message)
