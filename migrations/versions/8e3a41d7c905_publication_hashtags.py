"""publication hashtags

Revision ID: 8e3a41d7c905
Revises: 5c1f0e8a2b7d
Create Date: 2026-10-18 16:40:07.118342

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "8e3a41d7c905"
down_revision: Union[str, Sequence[str], None] = "5c1f0e8a2b7d"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create hashtag and publication_hashtag tables."""
    op.create_table(
        "hashtag",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("hashtag", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("hashtag"),
    )
    op.create_table(
        "publication_hashtag",
        sa.Column("publication_id", sa.Integer(), nullable=False),
        sa.Column("hashtag_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["publication_id"], ["publication.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["hashtag_id"], ["hashtag.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("publication_id", "hashtag_id"),
    )
    op.create_index(
        op.f("ix_publication_hashtag_hashtag_id"),
        "publication_hashtag",
        ["hashtag_id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index(op.f("ix_publication_hashtag_hashtag_id"), table_name="publication_hashtag")
    op.drop_table("publication_hashtag")
    op.drop_table("hashtag")
