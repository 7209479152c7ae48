# src/epress_node/utils/hash.py
"""Content addressing helpers.

Content identity is the sha256 digest of the raw bytes rendered as a
``0x``-prefixed hex string, which is also the ``bytes32`` value signed in
typed statements.
"""

from __future__ import annotations

import hashlib
import re

_CONTENT_HASH_RE = re.compile(r"^0x[0-9a-f]{64}$")


def _as_bytes(data: bytes | bytearray | memoryview | str) -> bytes:
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)


def sha256_hexdigest(data: bytes | bytearray | memoryview | str) -> str:
    """Return the bare hexadecimal sha256 digest of the supplied data."""
    return hashlib.sha256(_as_bytes(data)).hexdigest()


def content_hash(data: bytes | bytearray | memoryview | str) -> str:
    """Return the content hash identifying ``data`` across all nodes.

    Strings are hashed as their UTF-8 encoding. Empty input is valid.
    """
    return f"0x{sha256_hexdigest(data)}"


def body_hash(body: str) -> str:
    """Return the hash of a comment body as used in ``CommentSignature``."""
    return content_hash(body)


def is_content_hash(value: str) -> bool:
    """Return True if ``value`` is a well-formed lowercase content hash."""
    return bool(_CONTENT_HASH_RE.match(value or ""))


def normalize_content_hash(value: str) -> str:
    """Lowercase a hash and add the ``0x`` prefix when it is missing.

    Raises:
        ValueError: If the value is not 32 bytes of hex.
    """
    cleaned = (value or "").strip().lower()
    if not cleaned.startswith("0x"):
        cleaned = f"0x{cleaned}"
    if not _CONTENT_HASH_RE.match(cleaned):
        raise ValueError("Content hash must be 32 bytes of hex")
    return cleaned
