# src/epress_node/models/hashtag.py
"""SQLAlchemy models for hashtags and their links to publications."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from epress_node.db.session import Base
from epress_node.db.time import utcnow


class Hashtag(Base):
    """A lowercase tag, stored without the leading ``#``."""

    __tablename__ = "hashtag"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    hashtag: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class PublicationHashtag(Base):
    __tablename__ = "publication_hashtag"

    publication_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("publication.id", ondelete="CASCADE"), primary_key=True
    )
    hashtag_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("hashtag.id", ondelete="CASCADE"), primary_key=True, index=True
    )
