# src/epress_node/models/setting.py
"""Key/value node settings managed by the node owner."""

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from epress_node.db.session import Base


class Setting(Base):
    """A single owner-controlled setting such as ``allow_comment``."""

    __tablename__ = "setting"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str | None] = mapped_column(Text, nullable=True)
