"""initial schema

Revision ID: 5c1f0e8a2b7d
Revises:
Create Date: 2026-10-18 09:12:41.503218

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "5c1f0e8a2b7d"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create node, content, publication, comment, connection and setting tables."""
    op.create_table(
        "node",
        sa.Column("address", sa.String(length=42), nullable=False),
        sa.Column("url", sa.String(length=2048), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_self", sa.Boolean(), nullable=False),
        sa.Column("profile_version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("address"),
        sa.UniqueConstraint("url"),
    )
    op.create_table(
        "content",
        sa.Column("content_hash", sa.String(length=66), nullable=False),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("filename", sa.String(length=255), nullable=True),
        sa.Column("mimetype", sa.String(length=255), nullable=True),
        sa.Column("size", sa.BigInteger(), nullable=True),
        sa.Column("local_path", sa.String(length=512), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("content_hash"),
    )
    op.create_table(
        "publication",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("content_hash", sa.String(length=66), nullable=False),
        sa.Column("author_address", sa.String(length=42), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("signature", sa.String(length=132), nullable=True),
        sa.Column("comment_count", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["content_hash"], ["content.content_hash"]),
        sa.ForeignKeyConstraint(["author_address"], ["node.address"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_publication_content_hash"), "publication", ["content_hash"], unique=False
    )
    op.create_index(
        op.f("ix_publication_author_address"), "publication", ["author_address"], unique=False
    )
    op.create_table(
        "comment",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("publication_id", sa.Integer(), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("auth_type", sa.String(length=16), nullable=False),
        sa.Column("author_name", sa.String(length=50), nullable=False),
        sa.Column("author_id", sa.String(length=320), nullable=False),
        sa.Column("credential", sa.String(length=132), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["publication_id"], ["publication.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_comment_publication_id"), "comment", ["publication_id"], unique=False
    )
    op.create_table(
        "connection",
        sa.Column("follower_address", sa.String(length=42), nullable=False),
        sa.Column("followee_address", sa.String(length=42), nullable=False),
        sa.Column("signature", sa.String(length=132), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["follower_address"], ["node.address"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["followee_address"], ["node.address"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("follower_address", "followee_address"),
        sa.UniqueConstraint(
            "follower_address", "followee_address", name="uq_connection_pair"
        ),
    )
    op.create_table(
        "setting",
        sa.Column("key", sa.String(length=64), nullable=False),
        sa.Column("value", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("key"),
    )


def downgrade() -> None:
    """Drop every table created by the initial schema."""
    op.drop_table("setting")
    op.drop_table("connection")
    op.drop_index(op.f("ix_comment_publication_id"), table_name="comment")
    op.drop_table("comment")
    op.drop_index(op.f("ix_publication_author_address"), table_name="publication")
    op.drop_index(op.f("ix_publication_content_hash"), table_name="publication")
    op.drop_table("publication")
    op.drop_table("content")
    op.drop_table("node")
