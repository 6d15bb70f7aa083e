"""init asset engine tables

Revision ID: 202610170001
Revises:
Create Date: 2026-10-17
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610170001"
down_revision = None
branch_labels = None
depends_on = None

_OPEN_TICKET = "reclone_completed_at IS NULL"
_PENDING_LOAN = "status = 'pending'"


def _pool_purchase_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("po_number", sa.String(length=100), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("used_count", sa.Integer(), nullable=False),
        sa.Column("expiry_date", sa.Date(), nullable=False),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    ]


def _pool_assignment_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("po_number", sa.String(), nullable=False),
        sa.Column("asset_tag", sa.String(), nullable=False),
        sa.Column("assigned_date", sa.Date(), nullable=False),
        sa.Column("assigned_by", sa.String(), nullable=False),
        sa.Column("reason", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "events",
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("correlation_id", sa.String(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("event_id"),
    )
    op.create_index("ix_events_event_type", "events", ["event_type"])
    op.create_index("ix_events_ts", "events", ["ts"])
    op.create_index("ix_events_actor_id", "events", ["actor_id"])
    op.create_index("ix_events_correlation_id", "events", ["correlation_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("resource", sa.String(), nullable=False),
        sa.Column("method", sa.String(), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("detail", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"])
    op.create_index("ix_audit_logs_ts", "audit_logs", ["ts"])

    op.create_table(
        "users",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("username", sa.String(length=100), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("password_hash", sa.String(), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)
    op.create_index("ix_users_created_at", "users", ["created_at"])

    op.create_table(
        "assets",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("tag", sa.String(length=50), nullable=False),
        sa.Column("serial_number", sa.String(length=100), nullable=True),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("tracking_status", sa.String(length=20), nullable=False),
        sa.Column("owner", sa.String(length=200), nullable=True),
        sa.Column("hoto_number", sa.String(length=100), nullable=True),
        sa.Column("location", sa.String(length=200), nullable=True),
        sa.Column("bin", sa.String(length=100), nullable=True),
        sa.Column("repair_status", sa.String(), nullable=False),
        sa.Column("needs_reclone", sa.Boolean(), nullable=False),
        sa.Column("available_for_loan", sa.Boolean(), nullable=False),
        sa.Column("loaned_to", sa.String(), nullable=True),
        sa.Column("loan_return_date", sa.Date(), nullable=True),
        sa.Column("last_verified", sa.DateTime(timezone=True), nullable=True),
        sa.Column("verified_by", sa.String(), nullable=True),
        sa.Column("row_version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_assets_tag", "assets", ["tag"], unique=True)
    op.create_index("ix_assets_serial_number", "assets", ["serial_number"])
    op.create_index("ix_assets_tracking_status", "assets", ["tracking_status"])
    op.create_index("ix_assets_owner", "assets", ["owner"])
    op.create_index("ix_assets_needs_reclone", "assets", ["needs_reclone"])
    op.create_index("ix_assets_available_for_loan", "assets", ["available_for_loan"])
    op.create_index("ix_assets_last_verified", "assets", ["last_verified"])
    op.create_index("ix_assets_created_at", "assets", ["created_at"])
    op.create_index("ix_assets_updated_at", "assets", ["updated_at"])

    op.create_table(
        "ticket_purchases",
        *_pool_purchase_columns(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "maintenance_contracts",
        *_pool_purchase_columns(),
        sa.Column("vendor", sa.String(length=200), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    for table in ("ticket_purchases", "maintenance_contracts"):
        op.create_index(f"ix_{table}_po_number", table, ["po_number"], unique=True)
        op.create_index(f"ix_{table}_expiry_date", table, ["expiry_date"])
        op.create_index(f"ix_{table}_created_at", table, ["created_at"])

    op.create_table(
        "ticket_assignments",
        *_pool_assignment_columns(),
        sa.Column("purchase_id", sa.String(), nullable=False),
        sa.Column("asset_id", sa.String(), nullable=True),
        sa.Column("reclone_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["purchase_id"], ["ticket_purchases.id"]),
        sa.ForeignKeyConstraint(["asset_id"], ["assets.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_ticket_assignments_purchase_id", "ticket_assignments", ["purchase_id"])
    op.create_index("ix_ticket_assignments_asset_id", "ticket_assignments", ["asset_id"])
    op.create_index("ix_ticket_assignments_assigned_date", "ticket_assignments", ["assigned_date"])
    op.create_index("ix_ticket_assignments_created_at", "ticket_assignments", ["created_at"])
    op.create_index(
        "ix_ticket_assignments_reclone_completed_at",
        "ticket_assignments",
        ["reclone_completed_at"],
    )
    op.create_index(
        "uq_ticket_assignments_open_asset",
        "ticket_assignments",
        ["asset_id"],
        unique=True,
        sqlite_where=sa.text(_OPEN_TICKET),
        postgresql_where=sa.text(_OPEN_TICKET),
    )

    op.create_table(
        "maintenance_assignments",
        *_pool_assignment_columns(),
        sa.Column("purchase_id", sa.String(), nullable=False),
        sa.Column("asset_id", sa.String(), nullable=False),
        sa.ForeignKeyConstraint(["purchase_id"], ["maintenance_contracts.id"]),
        sa.ForeignKeyConstraint(["asset_id"], ["assets.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("asset_id", name="uq_maintenance_assignments_asset"),
    )
    op.create_index("ix_maintenance_assignments_purchase_id", "maintenance_assignments", ["purchase_id"])
    op.create_index("ix_maintenance_assignments_asset_id", "maintenance_assignments", ["asset_id"])
    op.create_index("ix_maintenance_assignments_assigned_date", "maintenance_assignments", ["assigned_date"])
    op.create_index("ix_maintenance_assignments_created_at", "maintenance_assignments", ["created_at"])

    op.create_table(
        "reclone_progress",
        sa.Column("asset_id", sa.String(), nullable=False),
        sa.Column("step_id", sa.Integer(), nullable=False),
        sa.Column("completed", sa.Boolean(), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_by", sa.String(), nullable=True),
        sa.Column("ticket_assignment_id", sa.String(), nullable=True),
        sa.ForeignKeyConstraint(["asset_id"], ["assets.id"]),
        sa.ForeignKeyConstraint(["ticket_assignment_id"], ["ticket_assignments.id"]),
        sa.PrimaryKeyConstraint("asset_id", "step_id"),
    )

    op.create_table(
        "loan_requests",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("asset_id", sa.String(), nullable=False),
        sa.Column("asset_tag", sa.String(), nullable=False),
        sa.Column("requested_by", sa.String(), nullable=False),
        sa.Column("request_date", sa.Date(), nullable=False),
        sa.Column("reason", sa.String(), nullable=False),
        sa.Column("duration", sa.String(length=50), nullable=False),
        sa.Column("return_date", sa.Date(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("reviewed_by", sa.String(), nullable=True),
        sa.Column("review_date", sa.Date(), nullable=True),
        sa.Column("review_notes", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["asset_id"], ["assets.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_loan_requests_asset_id", "loan_requests", ["asset_id"])
    op.create_index("ix_loan_requests_status", "loan_requests", ["status"])
    op.create_index("ix_loan_requests_created_at", "loan_requests", ["created_at"])
    op.create_index(
        "uq_loan_requests_pending_asset",
        "loan_requests",
        ["asset_id"],
        unique=True,
        sqlite_where=sa.text(_PENDING_LOAN),
        postgresql_where=sa.text(_PENDING_LOAN),
    )


def downgrade() -> None:
    op.drop_index("uq_loan_requests_pending_asset", table_name="loan_requests")
    op.drop_index("ix_loan_requests_created_at", table_name="loan_requests")
    op.drop_index("ix_loan_requests_status", table_name="loan_requests")
    op.drop_index("ix_loan_requests_asset_id", table_name="loan_requests")
    op.drop_table("loan_requests")

    op.drop_table("reclone_progress")

    op.drop_index("ix_maintenance_assignments_created_at", table_name="maintenance_assignments")
    op.drop_index("ix_maintenance_assignments_assigned_date", table_name="maintenance_assignments")
    op.drop_index("ix_maintenance_assignments_asset_id", table_name="maintenance_assignments")
    op.drop_index("ix_maintenance_assignments_purchase_id", table_name="maintenance_assignments")
    op.drop_table("maintenance_assignments")

    op.drop_index("uq_ticket_assignments_open_asset", table_name="ticket_assignments")
    op.drop_index("ix_ticket_assignments_reclone_completed_at", table_name="ticket_assignments")
    op.drop_index("ix_ticket_assignments_created_at", table_name="ticket_assignments")
    op.drop_index("ix_ticket_assignments_assigned_date", table_name="ticket_assignments")
    op.drop_index("ix_ticket_assignments_asset_id", table_name="ticket_assignments")
    op.drop_index("ix_ticket_assignments_purchase_id", table_name="ticket_assignments")
    op.drop_table("ticket_assignments")

    for table in ("maintenance_contracts", "ticket_purchases"):
        op.drop_index(f"ix_{table}_created_at", table_name=table)
        op.drop_index(f"ix_{table}_expiry_date", table_name=table)
        op.drop_index(f"ix_{table}_po_number", table_name=table)
        op.drop_table(table)

    for column in (
        "updated_at",
        "created_at",
        "last_verified",
        "available_for_loan",
        "needs_reclone",
        "owner",
        "tracking_status",
        "serial_number",
        "tag",
    ):
        op.drop_index(f"ix_assets_{column}", table_name="assets")
    op.drop_table("assets")

    op.drop_index("ix_users_created_at", table_name="users")
    op.drop_index("ix_users_username", table_name="users")
    op.drop_table("users")

    op.drop_index("ix_audit_logs_ts", table_name="audit_logs")
    op.drop_index("ix_audit_logs_actor_id", table_name="audit_logs")
    op.drop_table("audit_logs")

    op.drop_index("ix_events_correlation_id", table_name="events")
    op.drop_index("ix_events_actor_id", table_name="events")
    op.drop_index("ix_events_ts", table_name="events")
    op.drop_index("ix_events_event_type", table_name="events")
    op.drop_table("events")
