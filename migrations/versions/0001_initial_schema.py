"""Initial schema: albums, media_items

Revision ID: 0001
Revises: None
Create Date: 2026-01-01 00:00:00
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | None = None
depends_on: str | None = None


def _table_exists(name: str) -> bool:
    """Check whether a table already exists in the database."""
    conn = op.get_bind()
    result = conn.execute(
        sa.text("SELECT 1 FROM sqlite_master WHERE type='table' AND name=:n"),
        {"n": name},
    )
    return result.fetchone() is not None


def upgrade() -> None:
    # Guarded so the migration also applies to a database that init_db()
    # already created with SQLModel.metadata.create_all().

    if not _table_exists("albums"):
        op.create_table(
            "albums",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )

    if not _table_exists("media_items"):
        op.create_table(
            "media_items",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("album_id", sa.Integer(), sa.ForeignKey("albums.id"), nullable=False),
            sa.Column("object_key", sa.String(), nullable=False),
            sa.Column("filename", sa.String(), nullable=False),
            sa.Column("captured_at", sa.DateTime(), nullable=True),
            sa.Column("byte_size", sa.Integer(), nullable=False),
            sa.Column("media_kind", sa.String(), nullable=False, server_default="image"),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_media_items_album_id", "media_items", ["album_id"])
        op.create_index("ix_media_items_object_key", "media_items", ["object_key"], unique=True)
        op.create_index("ix_media_items_captured_at", "media_items", ["captured_at"])


def downgrade() -> None:
    op.drop_index("ix_media_items_captured_at", table_name="media_items")
    op.drop_index("ix_media_items_object_key", table_name="media_items")
    op.drop_index("ix_media_items_album_id", table_name="media_items")
    op.drop_table("media_items")
    op.drop_table("albums")
