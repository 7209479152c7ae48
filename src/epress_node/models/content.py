# src/epress_node/models/content.py
"""SQLAlchemy model for content-addressed blobs."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from epress_node.db.session import Base
from epress_node.db.time import utcnow

CONTENT_TYPE_POST = "POST"
CONTENT_TYPE_FILE = "FILE"


class Content(Base):
    """Immutable content keyed by the hash of its bytes.

    Posts keep their markdown in ``body``; files are written to disk and only
    their metadata and ``local_path`` are stored.
    """

    __tablename__ = "content"

    content_hash: Mapped[str] = mapped_column(String(66), primary_key=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    filename: Mapped[str | None] = mapped_column(String(255), nullable=True)
    mimetype: Mapped[str | None] = mapped_column(String(255), nullable=True)
    size: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    local_path: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
