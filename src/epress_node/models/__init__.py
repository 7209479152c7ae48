# src/epress_node/models/__init__.py
"""SQLAlchemy models for the epress node application."""

from .comment import (
    AUTH_TYPE_EMAIL,
    AUTH_TYPE_ETHEREUM,
    COMMENT_STATUS_CONFIRMED,
    COMMENT_STATUS_EXPIRED,
    COMMENT_STATUS_PENDING,
    COMMENT_STATUS_REJECTED,
    Comment,
)
from .connection import Connection
from .content import CONTENT_TYPE_FILE, CONTENT_TYPE_POST, Content
from .hashtag import Hashtag, PublicationHashtag
from .node import Node
from .publication import Publication
from .setting import Setting

__all__ = [
    "Comment",
    "AUTH_TYPE_EMAIL", "AUTH_TYPE_ETHEREUM",
    "COMMENT_STATUS_PENDING", "COMMENT_STATUS_CONFIRMED",
    "COMMENT_STATUS_REJECTED", "COMMENT_STATUS_EXPIRED",
    "Connection",
    "Content", "CONTENT_TYPE_POST", "CONTENT_TYPE_FILE",
    "Hashtag", "PublicationHashtag",
    "Node",
    "Publication",
    "Setting",
]
