# src/epress_node/models/node.py
"""SQLAlchemy model for network nodes (identities)."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from epress_node.db.session import Base
from epress_node.db.time import utcnow


class Node(Base):
    """A participant in the network keyed by its account address.

    Exactly one row per database carries ``is_self = True``: the identity of
    the local node. All other rows are remote nodes learned through follow
    relationships or replication.
    """

    __tablename__ = "node"

    address: Mapped[str] = mapped_column(String(42), primary_key=True)
    url: Mapped[str] = mapped_column(String(2048), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_self: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Bumped on every profile field change so peers can detect stale copies.
    profile_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
