"""add attendance logs and pay rate columns

Revision ID: 8c2d4e6f1a93
Revises: 3f9a1c7e5b20
Create Date: 2026-10-18 00:00:00.000000

"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "8c2d4e6f1a93"
down_revision = "3f9a1c7e5b20"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "attendance_logs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("owner_id", sa.String(length=255), nullable=False),
        sa.Column("check_in", sa.DateTime(timezone=True), nullable=False),
        sa.Column("check_out", sa.DateTime(timezone=True), nullable=True),
        sa.Column("source", sa.String(length=50), nullable=False),
        sa.Column("verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("(CURRENT_TIMESTAMP)"),
            nullable=True,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_attendance_logs_owner_check_in", "attendance_logs", ["owner_id", "check_in"]
    )

    op.add_column(
        "overtime_requests",
        sa.Column("is_night_shift", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.add_column(
        "overtime_requests",
        sa.Column("is_holiday", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.add_column(
        "overtime_requests",
        sa.Column("pay_multiplier", sa.Float(), nullable=False, server_default="1.0"),
    )


def downgrade() -> None:
    op.drop_column("overtime_requests", "pay_multiplier")
    op.drop_column("overtime_requests", "is_holiday")
    op.drop_column("overtime_requests", "is_night_shift")

    op.drop_index("ix_attendance_logs_owner_check_in", table_name="attendance_logs")
    op.drop_table("attendance_logs")
