"""add media_assets table for analysis status

Revision ID: 7c1e4b2a9d05
Revises:
Create Date: 2026-10-19 10:12:41.318204

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "7c1e4b2a9d05"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "media_assets",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("project_id", sa.Text, nullable=False, comment="Owning project"),
        sa.Column(
            "kind",
            sa.Text,
            nullable=False,
            server_default="image",
            comment="image|video",
        ),
        sa.Column("name", sa.Text, nullable=True),
        sa.Column(
            "size", sa.BigInteger, nullable=True, comment="Blob size in bytes"
        ),
        sa.Column("storage_url", sa.Text, nullable=True),
        sa.Column(
            "status",
            sa.Text,
            nullable=False,
            server_default="uploaded",
            comment="uploaded|queued|processing|completed|failed",
        ),
        sa.Column(
            "job_id",
            sa.Text,
            nullable=True,
            comment="Pipeline job handling this record",
        ),
        sa.Column("result", sa.JSON, nullable=True),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column("deleted_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "status IN ('uploaded', 'queued', 'processing', 'completed', 'failed')",
            name="media_assets_status_check",
        ),
    )

    op.create_index(
        "ix_media_assets_project_status", "media_assets", ["project_id", "status"]
    )
    # Change feed tails the table by updated_at
    op.create_index("ix_media_assets_updated_at", "media_assets", ["updated_at"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("ix_media_assets_updated_at", table_name="media_assets")
    op.drop_index("ix_media_assets_project_status", table_name="media_assets")
    op.drop_table("media_assets")
