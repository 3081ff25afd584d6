"""init shift scheduling tables

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ENUM


revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


ENUMS = {
    "shift_status_enum": ("open", "requested", "approved"),
    "shift_swap_request_status_enum": ("pending", "approved", "rejected", "withdrawn"),
    "shift_swap_type_enum": ("swap", "give_up", "coverage"),
    "shift_history_action_enum": ("created", "updated", "requested", "approved", "rejected", "withdrawn", "deleted"),
    "shift_notification_type_enum": ("approval", "rejection"),
}


def _enum(name: str) -> ENUM:
    return ENUM(*ENUMS[name], name=name, create_type=False)


def upgrade() -> None:
    for name, values in ENUMS.items():
        labels = ",".join(f"'{v}'" for v in values)
        op.execute(
            f"""
            DO $$ BEGIN
                CREATE TYPE {name} AS ENUM ({labels});
            EXCEPTION WHEN duplicate_object THEN NULL; END $$;
            """
        )

    op.create_table(
        "shifts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("department", sa.String(length=100), nullable=False),
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("start_time", sa.String(length=5), nullable=False),
        sa.Column("end_time", sa.String(length=5), nullable=False),
        sa.Column("posted_by_worker_id", sa.Integer(), nullable=False),
        sa.Column("assigned_worker_id", sa.Integer(), nullable=True),
        sa.Column("required_credential_ids", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("is_emergency", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("incentive_amount", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("incentive_description", sa.String(length=500), nullable=True),
        sa.Column("status", _enum("shift_status_enum"), nullable=False, server_default=sa.text("'open'")),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
        sa.CheckConstraint("incentive_amount >= 0", name="ck_shifts_incentive_non_negative"),
        sa.CheckConstraint(
            "assigned_worker_id IS NULL OR status = 'approved'", name="ck_shifts_assigned_requires_approved"
        ),
    )
    op.create_index("ix_shifts_posted_by_worker_id", "shifts", ["posted_by_worker_id"], unique=False)
    op.create_index("ix_shifts_assigned_worker_id_day", "shifts", ["assigned_worker_id", "day"], unique=False)
    op.create_index("ix_shifts_department_day", "shifts", ["department", "day"], unique=False)
    op.create_index("ix_shifts_status", "shifts", ["status"], unique=False)

    op.create_table(
        "shift_swap_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("shift_id", sa.Integer(), sa.ForeignKey("shifts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("requested_by_worker_id", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            _enum("shift_swap_request_status_enum"),
            nullable=False,
            server_default=sa.text("'pending'"),
        ),
        sa.Column("manager_worker_id", sa.Integer(), nullable=True),
        sa.Column("swap_type", _enum("shift_swap_type_enum"), nullable=False, server_default=sa.text("'coverage'")),
        sa.Column("reason", sa.String(length=1000), nullable=False),
        sa.Column("response_deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
        sa.UniqueConstraint("shift_id", "requested_by_worker_id", name="uq_shift_swap_requests_shift_worker"),
    )
    op.create_index("ix_shift_swap_requests_shift_id", "shift_swap_requests", ["shift_id"], unique=False)
    op.create_index(
        "ix_shift_swap_requests_requested_by_worker_id", "shift_swap_requests", ["requested_by_worker_id"], unique=False
    )
    op.create_index("ix_shift_swap_requests_status", "shift_swap_requests", ["status"], unique=False)

    op.create_table(
        "hours_ledger_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("worker_id", sa.Integer(), nullable=False),
        sa.Column("shift_id", sa.Integer(), nullable=False),
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("hours_worked", sa.Float(), nullable=False),
        sa.Column("week_start", sa.Date(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
        sa.UniqueConstraint("shift_id", "worker_id", name="uq_hours_ledger_entries_shift_worker"),
        sa.CheckConstraint("hours_worked >= 0", name="ck_hours_ledger_entries_hours_non_negative"),
    )
    op.create_index("ix_hours_ledger_entries_worker_week", "hours_ledger_entries", ["worker_id", "week_start"])
    op.create_index("ix_hours_ledger_entries_worker_month", "hours_ledger_entries", ["worker_id", "year", "month"])
    op.create_index("ix_hours_ledger_entries_worker_day", "hours_ledger_entries", ["worker_id", "day"])

    op.create_table(
        "shift_history",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("shift_id", sa.Integer(), nullable=False),
        sa.Column("action", _enum("shift_history_action_enum"), nullable=False),
        sa.Column("performed_by_worker_id", sa.Integer(), nullable=False),
        sa.Column("previous_value", sa.JSON(), nullable=True),
        sa.Column("new_value", sa.JSON(), nullable=True),
        sa.Column("description", sa.String(length=1000), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
    )
    op.create_index("ix_shift_history_shift_id_id", "shift_history", ["shift_id", "id"])
    op.create_index("ix_shift_history_performed_by", "shift_history", ["performed_by_worker_id", "id"])

    op.create_table(
        "shift_notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("recipient_worker_id", sa.Integer(), nullable=False),
        sa.Column("shift_id", sa.Integer(), sa.ForeignKey("shifts.id", ondelete="SET NULL"), nullable=True),
        sa.Column("type", _enum("shift_notification_type_enum"), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("requires_action", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("payload", sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
    )
    op.create_index(
        "ix_shift_notifications_recipient_worker_id", "shift_notifications", ["recipient_worker_id"], unique=False
    )

    op.create_table(
        "credentials",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("category", sa.String(length=50), nullable=False, server_default=sa.text("'certification'")),
        sa.Column("requires_expiration", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
        sa.UniqueConstraint("name", name="uq_credentials_name"),
    )

    op.create_table(
        "worker_credentials",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("worker_id", sa.Integer(), nullable=False),
        sa.Column(
            "credential_id", sa.Integer(), sa.ForeignKey("credentials.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("license_number", sa.String(length=100), nullable=True),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
        sa.UniqueConstraint("worker_id", "credential_id", name="uq_worker_credentials_worker_credential"),
    )
    op.create_index("ix_worker_credentials_worker_id", "worker_credentials", ["worker_id"], unique=False)

    for table, column in (
        ("shifts", "status"),
        ("shift_swap_requests", "status"),
        ("shift_swap_requests", "swap_type"),
    ):
        op.alter_column(table, column, server_default=None)


def downgrade() -> None:
    op.drop_index("ix_worker_credentials_worker_id", table_name="worker_credentials")
    op.drop_table("worker_credentials")
    op.drop_table("credentials")

    op.drop_index("ix_shift_notifications_recipient_worker_id", table_name="shift_notifications")
    op.drop_table("shift_notifications")

    op.drop_index("ix_shift_history_performed_by", table_name="shift_history")
    op.drop_index("ix_shift_history_shift_id_id", table_name="shift_history")
    op.drop_table("shift_history")

    op.drop_index("ix_hours_ledger_entries_worker_day", table_name="hours_ledger_entries")
    op.drop_index("ix_hours_ledger_entries_worker_month", table_name="hours_ledger_entries")
    op.drop_index("ix_hours_ledger_entries_worker_week", table_name="hours_ledger_entries")
    op.drop_table("hours_ledger_entries")

    op.drop_index("ix_shift_swap_requests_status", table_name="shift_swap_requests")
    op.drop_index("ix_shift_swap_requests_requested_by_worker_id", table_name="shift_swap_requests")
    op.drop_index("ix_shift_swap_requests_shift_id", table_name="shift_swap_requests")
    op.drop_table("shift_swap_requests")

    op.drop_index("ix_shifts_status", table_name="shifts")
    op.drop_index("ix_shifts_department_day", table_name="shifts")
    op.drop_index("ix_shifts_assigned_worker_id_day", table_name="shifts")
    op.drop_index("ix_shifts_posted_by_worker_id", table_name="shifts")
    op.drop_table("shifts")

    for name in reversed(list(ENUMS)):
        op.execute(f"DROP TYPE IF EXISTS {name} CASCADE")
