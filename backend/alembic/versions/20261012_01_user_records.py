"""Per-identity user sync records."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20261012_01_user_records"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "user_records",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("identity", sa.String(length=320), nullable=False),
        sa.Column("sign_in_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_enrollment_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("enrolled_courses", sa.JSON(), nullable=False),
        sa.Column("bundle_history", sa.JSON(), nullable=False),
        sa.Column("last_updated", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )
    op.create_index("ix_user_records_identity", "user_records", ["identity"], unique=True)


def downgrade() -> None:
    op.drop_index("ix_user_records_identity", table_name="user_records")
    op.drop_table("user_records")
