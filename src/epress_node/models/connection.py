# src/epress_node/models/connection.py
"""SQLAlchemy model for follow relationships between nodes."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from epress_node.db.session import Base
from epress_node.db.time import utcnow


class Connection(Base):
    """Directed edge: ``follower_address`` follows ``followee_address``."""

    __tablename__ = "connection"
    __table_args__ = (
        UniqueConstraint("follower_address", "followee_address", name="uq_connection_pair"),
    )

    follower_address: Mapped[str] = mapped_column(
        String(42), ForeignKey("node.address", ondelete="CASCADE"), primary_key=True
    )
    followee_address: Mapped[str] = mapped_column(
        String(42), ForeignKey("node.address", ondelete="CASCADE"), primary_key=True
    )
    signature: Mapped[str | None] = mapped_column(String(132), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
