"""Initial schema: libraries, files, file_metadata, series

Revision ID: 0001
Revises: None
Create Date: 2026-10-17 00:00:00
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
    # Guarded so the migration can run against a DB created by init_db().

    if not _table_exists("libraries"):
        op.create_table(
            "libraries",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("root_path", sa.String(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_libraries_root_path", "libraries", ["root_path"], unique=True)

    if not _table_exists("files"):
        op.create_table(
            "files",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("library_id", sa.Integer(), sa.ForeignKey("libraries.id"), nullable=False),
            sa.Column("absolute_path", sa.String(), nullable=False),
            sa.Column("relative_path", sa.String(), nullable=False),
            sa.Column("filename", sa.String(), nullable=False),
            sa.Column("extension", sa.String(), nullable=False),
            sa.Column("size_bytes", sa.Integer(), nullable=False),
            sa.Column("modified_at", sa.DateTime(), nullable=False),
            sa.Column("content_hash", sa.String(), nullable=True),
            sa.Column("status", sa.String(), nullable=False, server_default="pending"),
            sa.Column("series_name_raw", sa.String(), nullable=True),
            sa.Column("cover_hash", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("last_scanned_at", sa.DateTime(), nullable=True),
        )
        op.create_index("ix_files_library_id", "files", ["library_id"])
        op.create_index("ix_files_absolute_path", "files", ["absolute_path"], unique=True)
        op.create_index("ix_files_content_hash", "files", ["content_hash"])
        op.create_index("ix_files_status", "files", ["status"])
        op.create_index("ix_files_series_name_raw", "files", ["series_name_raw"])

    if not _table_exists("file_metadata"):
        op.create_table(
            "file_metadata",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("file_id", sa.Integer(), sa.ForeignKey("files.id"), unique=True, nullable=False),
            sa.Column("series", sa.String(), nullable=True),
            sa.Column("title", sa.String(), nullable=True),
            sa.Column("issue_number", sa.String(), nullable=True),
            sa.Column("issue_number_sort", sa.Float(), nullable=True),
            sa.Column("volume", sa.Integer(), nullable=True),
            sa.Column("publisher", sa.String(), nullable=True),
            sa.Column("year", sa.Integer(), nullable=True),
            sa.Column("month", sa.Integer(), nullable=True),
            sa.Column("writer", sa.String(), nullable=True),
            sa.Column("penciller", sa.String(), nullable=True),
            sa.Column("summary", sa.String(), nullable=True),
            sa.Column("notes", sa.String(), nullable=True),
            sa.Column("web", sa.String(), nullable=True),
            sa.Column("language_iso", sa.String(), nullable=True),
            sa.Column("genre", sa.String(), nullable=True),
            sa.Column("page_count", sa.Integer(), nullable=True),
            sa.Column("source", sa.String(), nullable=False, server_default="filename"),
        )

    if not _table_exists("series"):
        op.create_table(
            "series",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("library_id", sa.Integer(), sa.ForeignKey("libraries.id"), nullable=False),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("cover_source", sa.String(), nullable=False, server_default="auto"),
            sa.Column("cover_file_id", sa.Integer(), nullable=True),
            sa.Column("resolved_cover_hash", sa.String(), nullable=True),
            sa.Column("resolved_cover_source", sa.String(), nullable=False, server_default="none"),
            sa.Column("resolved_cover_file_id", sa.Integer(), nullable=True),
            sa.Column("resolved_cover_updated_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.UniqueConstraint("library_id", "name", name="uq_series_library_name"),
        )
        op.create_index("ix_series_library_id", "series", ["library_id"])


def downgrade() -> None:
    # Reverse FK order.
    op.drop_table("series")
    op.drop_table("file_metadata")
    op.drop_table("files")
    op.drop_table("libraries")
