# src/epress_node/models/comment.py
"""SQLAlchemy model for comments and their confirmation lifecycle."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from epress_node.db.session import Base
from epress_node.db.time import utcnow

# Lifecycle: PENDING -> CONFIRMED | REJECTED | EXPIRED (terminal).
COMMENT_STATUS_PENDING = "PENDING"
COMMENT_STATUS_CONFIRMED = "CONFIRMED"
COMMENT_STATUS_REJECTED = "REJECTED"
COMMENT_STATUS_EXPIRED = "EXPIRED"

AUTH_TYPE_EMAIL = "EMAIL"
AUTH_TYPE_ETHEREUM = "ETHEREUM"


class Comment(Base):
    """A comment left on a publication by a visitor.

    ``author_id`` holds an email address for EMAIL comments and a checksum
    account address for ETHEREUM comments. ``credential`` holds the wallet
    signature for ETHEREUM comments and stays null for EMAIL comments.
    """

    __tablename__ = "comment"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    publication_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("publication.id", ondelete="CASCADE"), nullable=False, index=True
    )
    body: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=COMMENT_STATUS_PENDING
    )
    auth_type: Mapped[str] = mapped_column(String(16), nullable=False)
    author_name: Mapped[str] = mapped_column(String(50), nullable=False)
    author_id: Mapped[str] = mapped_column(String(320), nullable=False)
    credential: Mapped[str | None] = mapped_column(String(132), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    @property
    def is_terminal(self) -> bool:
        """Return True once the comment left the PENDING state."""
        return self.status != COMMENT_STATUS_PENDING
