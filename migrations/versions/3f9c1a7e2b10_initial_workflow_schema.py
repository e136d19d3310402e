"""initial_workflow_schema

Creates the workflow engine tables:
  - maintenance_schedules: work orders started once materials are ready
  - inventory_items: stock ledger heads (soft-deletable)
  - inventory_transactions: append-only ISSUE / RECEIPT / ADJUSTMENT rows
  - damaged_components: per-damage-level repair cost catalog
  - incidents: accident reports with claim sub-state
  - incident_approvals: append-only transition log
  - material_requests / material_request_items
  - purchase_requests / purchase_request_items
  - command_receipts: idempotent command replay store
  - audit_logs

Revision ID: 3f9c1a7e2b10
Revises:
Create Date: 2026-10-17 09:12:44.318210
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3f9c1a7e2b10'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ── Maintenance schedules ─────────────────────────────────────────────
    op.create_table(
        "maintenance_schedules",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(length=20), nullable=False, comment="MS-0001"),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("asset_reference", sa.String(length=60), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("scheduled_date", sa.Date(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("requested_by", sa.String(length=150), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('REQUESTED','STARTED','PAUSED','COMPLETED')",
            name="ck_maintenance_status",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
    )

    # ── Inventory ─────────────────────────────────────────────────────────
    op.create_table(
        "inventory_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(length=40), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("category", sa.String(length=60), nullable=True),
        sa.Column("unit_of_measure", sa.String(length=20), nullable=False),
        sa.Column("current_stock", sa.Integer(), nullable=False),
        sa.Column("initial_stock", sa.Integer(), nullable=False),
        sa.Column("minimum_threshold", sa.Integer(), nullable=False),
        sa.Column("unit_cost", sa.Numeric(12, 2), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("current_stock >= 0", name="ck_inventory_stock_non_negative"),
        sa.CheckConstraint("initial_stock >= 0", name="ck_inventory_initial_non_negative"),
        sa.CheckConstraint("minimum_threshold >= 0", name="ck_inventory_threshold_non_negative"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
    )
    op.create_index("ix_inventory_items_deleted_at", "inventory_items", ["deleted_at"])

    op.create_table(
        "inventory_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("item_id", sa.Integer(), nullable=False),
        sa.Column("item_code", sa.String(length=40), nullable=False),
        sa.Column("transaction_type", sa.String(length=12), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("stock_before", sa.Integer(), nullable=False),
        sa.Column("stock_after", sa.Integer(), nullable=False),
        sa.Column("actor", sa.String(length=150), nullable=False),
        sa.Column("reference_type", sa.String(length=30), nullable=True,
                  comment="material_request | purchase_request | stocktake"),
        sa.Column("reference_id", sa.String(length=36), nullable=True),
        sa.Column("idempotency_key", sa.String(length=120), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "transaction_type IN ('ISSUE','RECEIPT','ADJUSTMENT')",
            name="ck_inventory_txn_type",
        ),
        sa.CheckConstraint("stock_after >= 0", name="ck_inventory_txn_after_non_negative"),
        sa.ForeignKeyConstraint(["item_id"], ["inventory_items.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("idempotency_key"),
    )
    op.create_index("ix_inventory_transactions_item_id", "inventory_transactions", ["item_id"])
    op.create_index("idx_inventory_txn_ref", "inventory_transactions", ["reference_type", "reference_id"])

    # ── Incidents ─────────────────────────────────────────────────────────
    op.create_table(
        "damaged_components",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=150), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("minor_cost", sa.Numeric(12, 2), nullable=False),
        sa.Column("moderate_cost", sa.Numeric(12, 2), nullable=False),
        sa.Column("severe_cost", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_loss_cost", sa.Numeric(12, 2), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "incidents",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("incident_code", sa.String(length=20), nullable=False, comment="ACC-0001"),
        sa.Column("accident_type", sa.String(length=60), nullable=False),
        sa.Column("accident_date", sa.Date(), nullable=False),
        sa.Column("accident_time", sa.String(length=5), nullable=True, comment="HH:MM"),
        sa.Column("pole_code", sa.String(length=60), nullable=True, comment="Asset reference, free text"),
        sa.Column("location_description", sa.Text(), nullable=False),
        sa.Column("vehicle_plate_number", sa.String(length=20), nullable=True),
        sa.Column("driver_name", sa.String(length=150), nullable=True),
        sa.Column("insurance_company", sa.String(length=150), nullable=True),
        sa.Column("reported_by", sa.String(length=150), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("claim_status", sa.String(length=20), nullable=False),
        sa.Column("claim_reference_number", sa.String(length=60), nullable=True),
        sa.Column("damage_level", sa.String(length=20), nullable=True),
        sa.Column("damage_description", sa.Text(), nullable=True),
        sa.Column("safety_risk", sa.Boolean(), nullable=True),
        sa.Column("damaged_component_ids", sa.JSON(), nullable=True),
        sa.Column("cost_breakdown", sa.JSON(), nullable=True),
        sa.Column("estimated_cost", sa.Numeric(14, 2), nullable=True),
        sa.Column("inspected_by", sa.String(length=150), nullable=True),
        sa.Column("inspected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('REPORTED','INSPECTED','SUPERVISOR_REVIEW','FINANCE_REVIEW',"
            "'APPROVED','REJECTED','UNDER_REPAIR','COMPLETED')",
            name="ck_incident_status",
        ),
        sa.CheckConstraint(
            "claim_status IN ('NOT_SUBMITTED','SUBMITTED','APPROVED','REJECTED','PAID')",
            name="ck_incident_claim_status",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("incident_code"),
    )
    op.create_index("idx_incident_status", "incidents", ["status"])

    op.create_table(
        "incident_approvals",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("incident_id", sa.Integer(), nullable=False),
        sa.Column("stage", sa.String(length=20), nullable=False),
        sa.Column("action", sa.String(length=10), nullable=False),
        sa.Column("transition", sa.String(length=30), nullable=False),
        sa.Column("actor", sa.String(length=150), nullable=False),
        sa.Column("actor_role", sa.String(length=30), nullable=False),
        sa.Column("previous_status", sa.String(length=20), nullable=False),
        sa.Column("new_status", sa.String(length=20), nullable=False),
        sa.Column("comments", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("action IN ('APPROVE','REJECT')", name="ck_approval_action"),
        sa.CheckConstraint(
            "stage IN ('INSPECTION','SUPERVISOR_REVIEW','FINANCE_REVIEW','REPAIR')",
            name="ck_approval_stage",
        ),
        sa.ForeignKeyConstraint(["incident_id"], ["incidents.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_incident_approvals_incident_id", "incident_approvals", ["incident_id"])

    # ── Material requests ─────────────────────────────────────────────────
    op.create_table(
        "material_requests",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(length=20), nullable=False, comment="MR-0001"),
        sa.Column("requested_by", sa.String(length=150), nullable=False),
        sa.Column("maintenance_schedule_id", sa.Integer(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("approved_by", sa.String(length=150), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_by", sa.String(length=150), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("received_by", sa.String(length=150), nullable=True),
        sa.Column("receive_notes", sa.Text(), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('PENDING','AWAITING_DELIVERY','DELIVERED','REJECTED','FULFILLED')",
            name="ck_material_request_status",
        ),
        sa.ForeignKeyConstraint(["maintenance_schedule_id"], ["maintenance_schedules.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
    )
    op.create_index("ix_material_requests_maintenance_schedule_id", "material_requests", ["maintenance_schedule_id"])

    op.create_table(
        "material_request_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("material_request_id", sa.Integer(), nullable=False),
        sa.Column("inventory_item_id", sa.Integer(), nullable=False),
        sa.Column("item_code", sa.String(length=40), nullable=False),
        sa.Column("requested_quantity", sa.Integer(), nullable=False),
        sa.Column("available_quantity_snapshot", sa.Integer(), nullable=True),
        sa.Column("usage_quantity", sa.Integer(), nullable=False),
        sa.Column("purchase_quantity", sa.Integer(), nullable=False),
        sa.Column("request_type", sa.String(length=10), nullable=False),
        sa.Column("item_status", sa.String(length=20), nullable=False),
        sa.CheckConstraint("requested_quantity > 0", name="ck_material_item_qty_positive"),
        sa.CheckConstraint(
            "item_status IN ('PENDING','FULFILLED','PENDING_PURCHASE','DELIVERED','REJECTED')",
            name="ck_material_item_status",
        ),
        sa.ForeignKeyConstraint(["material_request_id"], ["material_requests.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["inventory_item_id"], ["inventory_items.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("material_request_id", "item_code", name="uq_material_request_item_code"),
    )
    op.create_index("ix_material_request_items_material_request_id", "material_request_items", ["material_request_id"])

    # ── Purchase requests ─────────────────────────────────────────────────
    op.create_table(
        "purchase_requests",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(length=20), nullable=False, comment="PR-0001"),
        sa.Column("material_request_id", sa.Integer(), nullable=True),
        sa.Column("requested_by", sa.String(length=150), nullable=False),
        sa.Column("supplier_name", sa.String(length=200), nullable=True),
        sa.Column("supplier_contact", sa.String(length=200), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("total_cost", sa.Numeric(14, 2), nullable=True),
        sa.Column("approved_by", sa.String(length=150), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_by", sa.String(length=150), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("ordered_by", sa.String(length=150), nullable=True),
        sa.Column("ordered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("arrived_by", sa.String(length=150), nullable=True),
        sa.Column("arrived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_by", sa.String(length=150), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('PENDING','APPROVED','REJECTED','ORDERED','ARRIVED_IN_STOCK','DELIVERED')",
            name="ck_purchase_request_status",
        ),
        sa.ForeignKeyConstraint(["material_request_id"], ["material_requests.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
    )
    op.create_index("ix_purchase_requests_material_request_id", "purchase_requests", ["material_request_id"])

    op.create_table(
        "purchase_request_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("purchase_request_id", sa.Integer(), nullable=False),
        sa.Column("inventory_item_id", sa.Integer(), nullable=False),
        sa.Column("material_request_item_id", sa.Integer(), nullable=True),
        sa.Column("item_code", sa.String(length=40), nullable=False),
        sa.Column("requested_quantity", sa.Integer(), nullable=False),
        sa.Column("unit_cost", sa.Numeric(12, 2), nullable=True),
        sa.Column("total_cost", sa.Numeric(14, 2), nullable=True),
        sa.Column("line_status", sa.String(length=12), nullable=False),
        sa.CheckConstraint("requested_quantity > 0", name="ck_purchase_item_qty_positive"),
        sa.ForeignKeyConstraint(["purchase_request_id"], ["purchase_requests.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["inventory_item_id"], ["inventory_items.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["material_request_item_id"], ["material_request_items.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_purchase_request_items_purchase_request_id", "purchase_request_items", ["purchase_request_id"])

    # ── Command receipts & audit ──────────────────────────────────────────
    op.create_table(
        "command_receipts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("request_id", sa.String(length=120), nullable=False),
        sa.Column("command", sa.String(length=60), nullable=False),
        sa.Column("actor", sa.String(length=150), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=False),
        sa.Column("response_json", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("request_id"),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("entity_type", sa.String(length=30), nullable=False),
        sa.Column("entity_id", sa.String(length=36), nullable=False),
        sa.Column("action", sa.String(length=60), nullable=False),
        sa.Column("actor", sa.String(length=150), nullable=False),
        sa.Column("actor_role", sa.String(length=30), nullable=True),
        sa.Column("request_id", sa.String(length=64), nullable=True),
        sa.Column("diff_json", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
    op.create_index("idx_audit_actor", "audit_logs", ["actor"])
    op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])


def downgrade():
    op.drop_table("audit_logs")
    op.drop_table("command_receipts")
    op.drop_table("purchase_request_items")
    op.drop_table("purchase_requests")
    op.drop_table("material_request_items")
    op.drop_table("material_requests")
    op.drop_table("incident_approvals")
    op.drop_table("incidents")
    op.drop_table("damaged_components")
    op.drop_table("inventory_transactions")
    op.drop_table("inventory_items")
    op.drop_table("maintenance_schedules")
