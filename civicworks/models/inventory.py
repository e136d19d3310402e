"""
CivicWorks Workflow Engine
Inventory domain models.

Models:
    - InventoryItem:         stock-keeping unit with its current balance
    - InventoryTransaction:  append-only ledger row (ISSUE | RECEIPT | ADJUSTMENT)

``current_stock`` is only ever written by services/inventory_ledger.py.
Balance invariant per item:

    initial_stock + Σ RECEIPT − Σ ISSUE + Σ ADJUSTMENT == current_stock
"""

from datetime import datetime, timezone
from decimal import Decimal

from civicworks.models import db
from civicworks.models.soft_delete import SoftDeleteMixin
from civicworks.utils.helpers import as_float, iso


# ── Constants ────────────────────────────────────────────────────────────────

TRANSACTION_TYPES = ("ISSUE", "RECEIPT", "ADJUSTMENT")

STOCK_STATUSES = ("IN_STOCK", "WARNING", "LOW_STOCK")

DEFAULT_WARNING_RATIO = 1.5


def stock_status(current_stock: int, minimum_threshold: int, warning_ratio: float = DEFAULT_WARNING_RATIO) -> str:
    """LOW_STOCK at or below threshold, WARNING within ``warning_ratio × threshold``."""
    if current_stock <= minimum_threshold:
        return "LOW_STOCK"
    if current_stock <= minimum_threshold * warning_ratio:
        return "WARNING"
    return "IN_STOCK"


class InventoryItem(SoftDeleteMixin, db.Model):
    """Stock-keeping unit, keyed by ``code`` (e.g. BULB-01)."""

    __tablename__ = "inventory_items"
    __table_args__ = (
        db.CheckConstraint("current_stock >= 0", name="ck_inventory_stock_non_negative"),
        db.CheckConstraint("initial_stock >= 0", name="ck_inventory_initial_non_negative"),
        db.CheckConstraint("minimum_threshold >= 0", name="ck_inventory_threshold_non_negative"),
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(40), nullable=False, unique=True)
    name = db.Column(db.String(200), nullable=False)
    category = db.Column(db.String(60), default="")
    unit_of_measure = db.Column(db.String(20), nullable=False, default="pcs")
    current_stock = db.Column(db.Integer, nullable=False, default=0)
    initial_stock = db.Column(db.Integer, nullable=False, default=0)
    minimum_threshold = db.Column(db.Integer, nullable=False, default=0)
    unit_cost = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    transactions = db.relationship(
        "InventoryTransaction", backref="item", lazy="dynamic",
        order_by="InventoryTransaction.id",
    )

    def stock_status(self, warning_ratio: float = DEFAULT_WARNING_RATIO) -> str:
        return stock_status(self.current_stock, self.minimum_threshold, warning_ratio)

    def to_dict(self, warning_ratio: float = DEFAULT_WARNING_RATIO):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "category": self.category,
            "unit_of_measure": self.unit_of_measure,
            "current_stock": self.current_stock,
            "initial_stock": self.initial_stock,
            "minimum_threshold": self.minimum_threshold,
            "unit_cost": as_float(self.unit_cost),
            "stock_status": self.stock_status(warning_ratio),
            "deleted_at": iso(self.deleted_at),
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<InventoryItem {self.code} stock={self.current_stock}>"


class InventoryTransaction(db.Model):
    """
    Immutable ledger row.

    ``quantity`` is positive for ISSUE and RECEIPT and signed for ADJUSTMENT.
    ``idempotency_key`` is unique so a replayed issue/receipt for the same
    request line is detected instead of applied twice.
    """

    __tablename__ = "inventory_transactions"
    __table_args__ = (
        db.CheckConstraint(
            "transaction_type IN ('ISSUE','RECEIPT','ADJUSTMENT')",
            name="ck_inventory_txn_type",
        ),
        db.CheckConstraint("stock_after >= 0", name="ck_inventory_txn_after_non_negative"),
        db.Index("idx_inventory_txn_ref", "reference_type", "reference_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(
        db.Integer, db.ForeignKey("inventory_items.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    item_code = db.Column(db.String(40), nullable=False)
    transaction_type = db.Column(db.String(12), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    stock_before = db.Column(db.Integer, nullable=False)
    stock_after = db.Column(db.Integer, nullable=False)
    actor = db.Column(db.String(150), nullable=False)
    reference_type = db.Column(db.String(30), nullable=True, comment="material_request | purchase_request | stocktake")
    reference_id = db.Column(db.String(36), nullable=True)
    idempotency_key = db.Column(db.String(120), nullable=True, unique=True)
    notes = db.Column(db.Text, default="")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "item_code": self.item_code,
            "transaction_type": self.transaction_type,
            "quantity": self.quantity,
            "stock_before": self.stock_before,
            "stock_after": self.stock_after,
            "actor": self.actor,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "notes": self.notes,
            "created_at": iso(self.created_at),
        }

    def __repr__(self):
        return f"<InventoryTransaction {self.id} {self.transaction_type} {self.item_code} {self.quantity}>"
