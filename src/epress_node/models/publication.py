# src/epress_node/models/publication.py
"""SQLAlchemy model for publications."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from epress_node.db.session import Base
from epress_node.db.time import utcnow

from .content import Content
from .hashtag import Hashtag
from .node import Node


class Publication(Base):
    """A node's publication of one piece of content.

    ``signature`` attests to ``(content_hash, author_address, created_at)``.
    A null signature marks an editable draft; once set the row is frozen.
    """

    __tablename__ = "publication"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    content_hash: Mapped[str] = mapped_column(
        String(66), ForeignKey("content.content_hash"), nullable=False, index=True
    )
    author_address: Mapped[str] = mapped_column(
        String(42), ForeignKey("node.address"), nullable=False, index=True
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    signature: Mapped[str | None] = mapped_column(String(132), nullable=True)
    comment_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    content: Mapped[Content] = relationship("Content", lazy="joined")
    author: Mapped[Node] = relationship("Node", lazy="joined")
    hashtags: Mapped[list[Hashtag]] = relationship(
        "Hashtag",
        secondary="publication_hashtag",
        lazy="selectin",
        order_by="Hashtag.hashtag",
    )

    @property
    def is_signed(self) -> bool:
        """Return True once the publication carries an attestation."""
        return bool(self.signature)
