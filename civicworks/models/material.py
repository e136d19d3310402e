"""
CivicWorks Workflow Engine
Material request domain models.

Models:
    - MaterialRequest:      a field team's request for stock, owning its allocation snapshot
    - MaterialRequestItem:  one requested inventory line with its usage/purchase split

Architecture:
    MaintenanceSchedule ──1:N──▶ MaterialRequest ──1:N──▶ MaterialRequestItem
    MaterialRequest ──1:N──▶ PurchaseRequest   (shortfall orders, see models/purchase.py)

Lifecycle states:
    MaterialRequest:      PENDING → FULFILLED | AWAITING_DELIVERY → DELIVERED  |  PENDING → REJECTED
    MaterialRequestItem:  PENDING → FULFILLED | PENDING_PURCHASE → DELIVERED  |  PENDING → REJECTED
"""

from datetime import datetime, timezone

from civicworks.models import db
from civicworks.utils.helpers import iso


# ── Constants ────────────────────────────────────────────────────────────────

MATERIAL_REQUEST_STATUSES = ("PENDING", "AWAITING_DELIVERY", "DELIVERED", "REJECTED", "FULFILLED")

MATERIAL_ITEM_STATUSES = ("PENDING", "FULFILLED", "PENDING_PURCHASE", "DELIVERED", "REJECTED")

REQUEST_TYPES = ("USAGE", "PURCHASE")

# Statuses that signal the originating maintenance task
MATERIALS_READY_STATUSES = frozenset({"FULFILLED", "DELIVERED"})

MATERIAL_REQUEST_TRANSITIONS = {
    "approve": {"from": ["PENDING"], "to": None},   # FULFILLED or AWAITING_DELIVERY, decided by allocation
    "reject":  {"from": ["PENDING"], "to": "REJECTED"},
    "receive": {"from": ["AWAITING_DELIVERY"], "to": "DELIVERED"},
    "update":  {"from": ["PENDING"], "to": "PENDING"},
    "delete":  {"from": ["PENDING"], "to": None},    # row removed
}


class MaterialRequest(db.Model):
    """
    Request for inventory items.

    The allocation snapshot taken at approval (per-line
    ``available_quantity_snapshot``, ``usage_quantity``, ``purchase_quantity``)
    is never recomputed afterwards.
    """

    __tablename__ = "material_requests"
    __table_args__ = (
        db.CheckConstraint(
            "status IN ('PENDING','AWAITING_DELIVERY','DELIVERED','REJECTED','FULFILLED')",
            name="ck_material_request_status",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(20), nullable=False, unique=True, comment="MR-0001")
    requested_by = db.Column(db.String(150), nullable=False)
    maintenance_schedule_id = db.Column(
        db.Integer, db.ForeignKey("maintenance_schedules.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    description = db.Column(db.Text, default="")
    status = db.Column(db.String(20), nullable=False, default="PENDING")

    approved_by = db.Column(db.String(150), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_by = db.Column(db.String(150), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    received_by = db.Column(db.String(150), nullable=True)
    receive_notes = db.Column(db.Text, nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    items = db.relationship(
        "MaterialRequestItem", backref="material_request",
        cascade="all, delete-orphan", order_by="MaterialRequestItem.id",
    )
    purchase_requests = db.relationship(
        "PurchaseRequest", back_populates="material_request",
        order_by="PurchaseRequest.id",
    )

    __mapper_args__ = {"version_id_col": version}

    def to_dict(self, include_items=True):
        d = {
            "id": self.id,
            "code": self.code,
            "requested_by": self.requested_by,
            "maintenance_schedule_id": self.maintenance_schedule_id,
            "description": self.description,
            "status": self.status,
            "approved_by": self.approved_by,
            "approved_at": iso(self.approved_at),
            "rejected_by": self.rejected_by,
            "rejection_reason": self.rejection_reason,
            "received_by": self.received_by,
            "receive_notes": self.receive_notes,
            "delivered_at": iso(self.delivered_at),
            "purchase_request_ids": [pr.id for pr in self.purchase_requests],
            "version": self.version,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }
        if include_items:
            d["items"] = [i.to_dict() for i in self.items]
        return d

    def __repr__(self):
        return f"<MaterialRequest {self.code} [{self.status}]>"


class MaterialRequestItem(db.Model):
    """One requested line. ``usage_quantity + purchase_quantity == requested_quantity`` after approval."""

    __tablename__ = "material_request_items"
    __table_args__ = (
        db.UniqueConstraint("material_request_id", "item_code", name="uq_material_request_item_code"),
        db.CheckConstraint("requested_quantity > 0", name="ck_material_item_qty_positive"),
        db.CheckConstraint(
            "item_status IN ('PENDING','FULFILLED','PENDING_PURCHASE','DELIVERED','REJECTED')",
            name="ck_material_item_status",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    material_request_id = db.Column(
        db.Integer, db.ForeignKey("material_requests.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    inventory_item_id = db.Column(
        db.Integer, db.ForeignKey("inventory_items.id", ondelete="RESTRICT"),
        nullable=False,
    )
    item_code = db.Column(db.String(40), nullable=False)
    requested_quantity = db.Column(db.Integer, nullable=False)
    available_quantity_snapshot = db.Column(db.Integer, nullable=True)
    usage_quantity = db.Column(db.Integer, nullable=False, default=0)
    purchase_quantity = db.Column(db.Integer, nullable=False, default=0)
    request_type = db.Column(db.String(10), nullable=False, default="USAGE")
    item_status = db.Column(db.String(20), nullable=False, default="PENDING")

    def allocations(self) -> list[dict]:
        """Usage/purchase split as a list; empty before approval."""
        if self.available_quantity_snapshot is None:
            return []
        out = []
        if self.usage_quantity:
            out.append({"type": "USAGE", "quantity": self.usage_quantity, "status": "FULFILLED"})
        if self.purchase_quantity:
            status = "DELIVERED" if self.item_status == "DELIVERED" else "PENDING_PURCHASE"
            out.append({"type": "PURCHASE", "quantity": self.purchase_quantity, "status": status})
        return out

    def to_dict(self):
        return {
            "id": self.id,
            "inventory_item_code": self.item_code,
            "requested_quantity": self.requested_quantity,
            "available_quantity_snapshot": self.available_quantity_snapshot,
            "usage_quantity": self.usage_quantity,
            "purchase_quantity": self.purchase_quantity,
            "request_type": self.request_type,
            "item_status": self.item_status,
            "allocations": self.allocations(),
        }
