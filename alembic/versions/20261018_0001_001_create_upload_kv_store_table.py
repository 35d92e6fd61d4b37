"""create_upload_kv_store_table

Revision ID: 20261018_0001_create_upload_kv_store_table
Revises:
Create Date: 2026-10-18

This migration creates the durable key-value table backing the upload queue.

Keys:
    - upload_queue:<owner_id>    Full JSON snapshot of the owner's live queue
    - upload_history:<owner_id>  Bounded JSON list of archived completed uploads

Every queue mutation rewrites the owner's snapshot row, so the table stays
at two rows per active owner.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "20261018_0001_create_upload_kv_store_table"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create upload_kv_store.

    Columns:
        - key: VARCHAR(255) primary key
        - value: TEXT (serialized JSON)
        - updated_at: TIMESTAMPTZ (last write)
    """
    op.create_table(
        "upload_kv_store",
        sa.Column("key", sa.String(length=255), nullable=False),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.PrimaryKeyConstraint("key", name="pk_upload_kv_store"),
    )


def downgrade() -> None:
    """Drop upload_kv_store."""
    op.drop_table("upload_kv_store")
