"""Track redelivered sign-ins and bundles awaiting a CRM sync."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20261019_01_sync_retry_state"
down_revision = "20261012_01_user_records"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        "user_records",
        sa.Column("bundle_sync_pending", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.add_column(
        "user_records",
        sa.Column("recent_sign_in_ids", sa.JSON(), nullable=False, server_default="[]"),
    )


def downgrade() -> None:
    with op.batch_alter_table("user_records") as batch:
        batch.drop_column("recent_sign_in_ids")
        batch.drop_column("bundle_sync_pending")
