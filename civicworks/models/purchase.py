"""
CivicWorks Workflow Engine
Purchase request domain models.

Models:
    - PurchaseRequest:      procurement order, optionally spun off a MaterialRequest shortfall
    - PurchaseRequestItem:  one ordered inventory line with frozen unit cost

Lifecycle states:
    PurchaseRequest:  PENDING → APPROVED → ORDERED → ARRIVED_IN_STOCK → DELIVERED
                      PENDING → REJECTED
"""

from datetime import datetime, timezone

from civicworks.models import db
from civicworks.utils.helpers import as_float, iso


# ── Constants ────────────────────────────────────────────────────────────────

PURCHASE_STATUSES = ("PENDING", "APPROVED", "REJECTED", "ORDERED", "ARRIVED_IN_STOCK", "DELIVERED")

PURCHASE_LINE_STATUSES = ("PENDING", "RECEIVED", "DELIVERED")

PURCHASE_TRANSITIONS = {
    "approve":      {"from": ["PENDING"], "to": "APPROVED"},
    "reject":       {"from": ["PENDING"], "to": "REJECTED"},
    "order":        {"from": ["APPROVED"], "to": "ORDERED"},
    "mark_arrived": {"from": ["ORDERED"], "to": "ARRIVED_IN_STOCK"},
    "deliver":      {"from": ["ARRIVED_IN_STOCK"], "to": "DELIVERED"},
}


def purchase_transition_target(current: str, action: str) -> str | None:
    rule = PURCHASE_TRANSITIONS.get(action)
    if not rule or current not in rule["from"]:
        return None
    return rule["to"]


class PurchaseRequest(db.Model):
    """Procurement order. ``total_cost`` is computed at approval and frozen."""

    __tablename__ = "purchase_requests"
    __table_args__ = (
        db.CheckConstraint(
            "status IN ('PENDING','APPROVED','REJECTED','ORDERED','ARRIVED_IN_STOCK','DELIVERED')",
            name="ck_purchase_request_status",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(20), nullable=False, unique=True, comment="PR-0001")
    material_request_id = db.Column(
        db.Integer, db.ForeignKey("material_requests.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    requested_by = db.Column(db.String(150), nullable=False)
    supplier_name = db.Column(db.String(200), nullable=True)
    supplier_contact = db.Column(db.String(200), nullable=True)
    notes = db.Column(db.Text, default="")
    status = db.Column(db.String(20), nullable=False, default="PENDING")
    total_cost = db.Column(db.Numeric(14, 2), nullable=True)

    approved_by = db.Column(db.String(150), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_by = db.Column(db.String(150), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    ordered_by = db.Column(db.String(150), nullable=True)
    ordered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    arrived_by = db.Column(db.String(150), nullable=True)
    arrived_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_by = db.Column(db.String(150), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    items = db.relationship(
        "PurchaseRequestItem", backref="purchase_request",
        cascade="all, delete-orphan", order_by="PurchaseRequestItem.id",
    )
    material_request = db.relationship("MaterialRequest", back_populates="purchase_requests")

    __mapper_args__ = {"version_id_col": version}

    def to_dict(self, include_items=True):
        d = {
            "id": self.id,
            "code": self.code,
            "material_request_id": self.material_request_id,
            "requested_by": self.requested_by,
            "supplier_name": self.supplier_name,
            "supplier_contact": self.supplier_contact,
            "notes": self.notes,
            "status": self.status,
            "total_cost": as_float(self.total_cost),
            "approved_by": self.approved_by,
            "approved_at": iso(self.approved_at),
            "rejected_by": self.rejected_by,
            "rejected_at": iso(self.rejected_at),
            "rejection_reason": self.rejection_reason,
            "ordered_by": self.ordered_by,
            "ordered_at": iso(self.ordered_at),
            "arrived_by": self.arrived_by,
            "arrived_at": iso(self.arrived_at),
            "delivered_by": self.delivered_by,
            "delivered_at": iso(self.delivered_at),
            "version": self.version,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }
        if include_items:
            d["items"] = [i.to_dict() for i in self.items]
        return d

    def __repr__(self):
        return f"<PurchaseRequest {self.code} [{self.status}]>"


class PurchaseRequestItem(db.Model):
    __tablename__ = "purchase_request_items"
    __table_args__ = (
        db.CheckConstraint("requested_quantity > 0", name="ck_purchase_item_qty_positive"),
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_request_id = db.Column(
        db.Integer, db.ForeignKey("purchase_requests.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    inventory_item_id = db.Column(
        db.Integer, db.ForeignKey("inventory_items.id", ondelete="RESTRICT"),
        nullable=False,
    )
    material_request_item_id = db.Column(
        db.Integer, db.ForeignKey("material_request_items.id", ondelete="SET NULL"),
        nullable=True,
    )
    item_code = db.Column(db.String(40), nullable=False)
    requested_quantity = db.Column(db.Integer, nullable=False)
    unit_cost = db.Column(db.Numeric(12, 2), nullable=True)
    total_cost = db.Column(db.Numeric(14, 2), nullable=True)
    line_status = db.Column(db.String(12), nullable=False, default="PENDING")

    def to_dict(self):
        return {
            "id": self.id,
            "inventory_item_code": self.item_code,
            "requested_quantity": self.requested_quantity,
            "unit_cost": as_float(self.unit_cost),
            "total_cost": as_float(self.total_cost),
            "line_status": self.line_status,
            "material_request_item_id": self.material_request_item_id,
        }
