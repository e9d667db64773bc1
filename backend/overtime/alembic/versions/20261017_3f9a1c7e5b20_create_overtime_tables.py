"""create overtime tables

Revision ID: 3f9a1c7e5b20
Revises:
Create Date: 2026-10-17 00:00:00.000000

"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "3f9a1c7e5b20"
down_revision = None
branch_labels = None
depends_on = None


def _now() -> sa.TextClause:
    return sa.text("(CURRENT_TIMESTAMP)")


def upgrade() -> None:
    is_postgres = op.get_bind().dialect.name == "postgresql"
    if is_postgres:
        op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")

    op.create_table(
        "overtime_requests",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("owner_id", sa.String(length=255), nullable=False),
        sa.Column("department_id", sa.String(length=36), nullable=True),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
        sa.Column("current_level", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_level", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("row_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=_now(), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("end_at > start_at", name="ck_overtime_requests_window"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_overtime_requests_owner_id", "overtime_requests", ["owner_id"])
    op.create_index("ix_overtime_requests_department_id", "overtime_requests", ["department_id"])
    op.create_index("ix_overtime_requests_status", "overtime_requests", ["status"])
    op.create_index("ix_overtime_requests_created_at", "overtime_requests", ["created_at"])
    op.create_index(
        "ix_overtime_requests_owner_window", "overtime_requests", ["owner_id", "start_at", "end_at"]
    )
    op.create_index(
        "ix_overtime_requests_owner_status", "overtime_requests", ["owner_id", "status"]
    )
    if is_postgres:
        op.execute(
            "ALTER TABLE overtime_requests ADD CONSTRAINT ex_overtime_requests_owner_window "
            "EXCLUDE USING gist (owner_id WITH =, tstzrange(start_at, end_at, '[]') WITH &&) "
            "WHERE (is_active AND status NOT IN ('rejected', 'canceled', 'expired'))"
        )

    op.create_table(
        "approval_steps",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("request_id", sa.String(length=36), nullable=False),
        sa.Column("step_order", sa.Integer(), nullable=False),
        sa.Column("approver_kind", sa.String(length=10), nullable=False),
        sa.Column("approver_value", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("escalate_after_minutes", sa.Integer(), nullable=True),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("due_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("decided_by", sa.String(length=255), nullable=True),
        sa.Column("decision_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("row_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now(), nullable=True),
        sa.ForeignKeyConstraint(["request_id"], ["overtime_requests.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("request_id", "step_order", name="uq_approval_steps_request_order"),
    )
    op.create_index("ix_approval_steps_request_id", "approval_steps", ["request_id"])
    op.create_index("ix_approval_steps_status_due_at", "approval_steps", ["status", "due_at"])

    op.create_table(
        "audit_entries",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("entity_table", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.String(length=36), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(length=50), nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=True),
        sa.Column("performed_at", sa.DateTime(timezone=True), server_default=_now(), nullable=True),
        sa.Column("diff", sa.JSON(), nullable=False),
        sa.Column("content_hash", sa.String(length=64), nullable=False),
        sa.Column("previous_hash", sa.String(length=64), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "entity_table", "entity_id", "sequence", name="uq_audit_entries_entity_sequence"
        ),
    )
    op.create_index("ix_audit_entries_entity", "audit_entries", ["entity_table", "entity_id"])
    op.create_index("ix_audit_entries_action", "audit_entries", ["action"])

    op.create_table(
        "idempotency_records",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("idempotency_key", sa.String(length=255), nullable=False),
        sa.Column("owner_id", sa.String(length=255), nullable=False),
        sa.Column("request_method", sa.String(length=10), nullable=False),
        sa.Column("request_path", sa.String(length=500), nullable=False),
        sa.Column("request_hash", sa.String(length=64), nullable=True),
        sa.Column("response_status", sa.Integer(), nullable=True),
        sa.Column("response_body", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now(), nullable=True),
        sa.Column("consumed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_idempotency_records_idempotency_key",
        "idempotency_records",
        ["idempotency_key"],
        unique=True,
    )
    op.create_index("ix_idempotency_records_owner_id", "idempotency_records", ["owner_id"])
    op.create_index("ix_idempotency_records_expires_at", "idempotency_records", ["expires_at"])

    op.create_table(
        "policy_configs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("key", sa.String(length=100), nullable=False),
        sa.Column("value", sa.JSON(), nullable=False),
        sa.Column("effective_from", sa.DateTime(timezone=True), server_default=_now(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=_now(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_policy_configs_key", "policy_configs", ["key"], unique=True)

    op.create_table(
        "approval_chains",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("department_id", sa.String(length=36), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_approval_chains_department_id", "approval_chains", ["department_id"], unique=True
    )

    op.create_table(
        "approval_chain_steps",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("chain_id", sa.String(length=36), nullable=False),
        sa.Column("step_order", sa.Integer(), nullable=False),
        sa.Column("approver_kind", sa.String(length=10), nullable=False),
        sa.Column("approver_value", sa.String(length=255), nullable=False),
        sa.Column("escalate_after_minutes", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["chain_id"], ["approval_chains.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("chain_id", "step_order", name="uq_approval_chain_steps_order"),
    )
    op.create_index("ix_approval_chain_steps_chain_id", "approval_chain_steps", ["chain_id"])


def downgrade() -> None:
    op.drop_index("ix_approval_chain_steps_chain_id", table_name="approval_chain_steps")
    op.drop_table("approval_chain_steps")
    op.drop_index("ix_approval_chains_department_id", table_name="approval_chains")
    op.drop_table("approval_chains")
    op.drop_index("ix_policy_configs_key", table_name="policy_configs")
    op.drop_table("policy_configs")
    op.drop_index("ix_idempotency_records_expires_at", table_name="idempotency_records")
    op.drop_index("ix_idempotency_records_owner_id", table_name="idempotency_records")
    op.drop_index("ix_idempotency_records_idempotency_key", table_name="idempotency_records")
    op.drop_table("idempotency_records")
    op.drop_index("ix_audit_entries_action", table_name="audit_entries")
    op.drop_index("ix_audit_entries_entity", table_name="audit_entries")
    op.drop_table("audit_entries")
    op.drop_index("ix_approval_steps_status_due_at", table_name="approval_steps")
    op.drop_index("ix_approval_steps_request_id", table_name="approval_steps")
    op.drop_table("approval_steps")
    op.drop_index("ix_overtime_requests_owner_status", table_name="overtime_requests")
    op.drop_index("ix_overtime_requests_owner_window", table_name="overtime_requests")
    op.drop_index("ix_overtime_requests_created_at", table_name="overtime_requests")
    op.drop_index("ix_overtime_requests_status", table_name="overtime_requests")
    op.drop_index("ix_overtime_requests_department_id", table_name="overtime_requests")
    op.drop_index("ix_overtime_requests_owner_id", table_name="overtime_requests")
    op.drop_table("overtime_requests")
