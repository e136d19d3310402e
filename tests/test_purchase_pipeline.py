"""
Purchase pipeline tests:

    PENDING → APPROVED → ORDERED → ARRIVED_IN_STOCK → DELIVERED
    PENDING → REJECTED

Arrival credits the ledger exactly once; delivery closes the originating
material request once every sibling purchase is delivered.
"""

from decimal import Decimal

import pytest

from civicworks.core.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from civicworks.models import db
from civicworks.models.audit import AuditLog
from civicworks.models.inventory import InventoryItem, InventoryTransaction
from civicworks.models.maintenance import MaintenanceSchedule
from civicworks.services import inventory_ledger as ledger
from civicworks.services import inventory_service
from civicworks.services import material_fulfillment as fulfillment
from civicworks.services import purchase_pipeline as pipeline


# ═════════════════════════════════════════════════════════════════════════════
# ORM Helper Factories
# ═════════════════════════════════════════════════════════════════════════════


def _item(code="BULB-01", stock=0, unit_cost="12.50") -> InventoryItem:
    item = InventoryItem(
        code=code, name=f"Item {code}", current_stock=stock, initial_stock=stock,
        minimum_threshold=2, unit_cost=Decimal(unit_cost),
    )
    db.session.add(item)
    db.session.commit()
    return item


def _direct_purchase(actor, *pairs):
    pr = pipeline.create_purchase_request({
        "items": [{"inventory_item_code": c, "requested_quantity": q} for c, q in pairs],
        "supplier_name": "Lumen Supply Co.",
    }, actor("ADMIN"))
    db.session.commit()
    return pr


def _advance_to(actor, run, pr, status):
    admin = actor("ADMIN")
    steps = [
        ("APPROVED", lambda: pipeline.approve_purchase(pr.id, admin)),
        ("ORDERED", lambda: pipeline.order_purchase(pr.id, admin)),
        ("ARRIVED_IN_STOCK", lambda: pipeline.mark_purchase_arrived(pr.id, admin)),
        ("DELIVERED", lambda: pipeline.deliver_purchase(pr.id, admin)),
    ]
    for target, step in steps:
        run(admin, step)
        if target == status:
            return pr
    return pr


# ═════════════════════════════════════════════════════════════════════════════
# Creation
# ═════════════════════════════════════════════════════════════════════════════


class TestCreate:
    def test_direct_purchase_prices_lines(self, actor):
        _item("BULB-01", unit_cost="12.50")
        _item("CABLE-02", unit_cost="3.20")
        pr = _direct_purchase(actor, ("BULB-01", 4), ("CABLE-02", 10))
        assert pr.code == "PR-0001"
        assert pr.status == "PENDING"
        assert pr.material_request_id is None
        assert [i.total_cost for i in pr.items] == [Decimal("50.00"), Decimal("32.00")]
        assert pr.total_cost is None

    def test_requires_admin(self, actor):
        _item()
        with pytest.raises(PermissionDenied):
            pipeline.create_purchase_request(
                {"items": [{"inventory_item_code": "BULB-01", "requested_quantity": 1}]},
                actor("SUPERVISOR"),
            )

    def test_unknown_item(self, actor):
        with pytest.raises(NotFoundError):
            pipeline.create_purchase_request(
                {"items": [{"inventory_item_code": "GHOST", "requested_quantity": 1}]},
                actor("ADMIN"),
            )


# ═════════════════════════════════════════════════════════════════════════════
# Transitions
# ═════════════════════════════════════════════════════════════════════════════


class TestTransitions:
    def test_approval_freezes_total_at_current_unit_cost(self, actor, run):
        _item("BULB-01", unit_cost="12.50")
        pr = _direct_purchase(actor, ("BULB-01", 4))

        run(actor("ADMIN"), lambda: inventory_service.update_item("BULB-01", {"unit_cost": "15.00"}, actor("ADMIN")))
        _advance_to(actor, run, pr, "APPROVED")
        assert pr.total_cost == Decimal("60.00")

        run(actor("ADMIN"), lambda: inventory_service.update_item("BULB-01", {"unit_cost": "99.00"}, actor("ADMIN")))
        run(actor("ADMIN"), lambda: pipeline.order_purchase(pr.id, actor("ADMIN")))
        assert pr.total_cost == Decimal("60.00")
        assert pr.items[0].unit_cost == Decimal("15.00")

    def test_supplier_recorded_on_approval(self, actor, run):
        _item()
        pr = _direct_purchase(actor, ("BULB-01", 1))
        run(actor("ADMIN"), lambda: pipeline.approve_purchase(pr.id, actor("ADMIN"), "Bright Parts Ltd", "+90 555"))
        assert pr.supplier_name == "Bright Parts Ltd"
        assert pr.supplier_contact == "+90 555"

    def test_arrival_credits_stock_once(self, actor, run):
        bulb = _item("BULB-01", stock=3)
        pr = _direct_purchase(actor, ("BULB-01", 6))
        _advance_to(actor, run, pr, "ARRIVED_IN_STOCK")

        assert pr.status == "ARRIVED_IN_STOCK"
        assert bulb.current_stock == 9
        receipts = InventoryTransaction.query.filter_by(transaction_type="RECEIPT").all()
        assert len(receipts) == 1
        assert receipts[0].idempotency_key == f"PR-0001:BULB-01:{pr.items[0].id}:RECEIPT"
        assert pr.items[0].line_status == "RECEIVED"

        with pytest.raises(InvalidTransitionError):
            pipeline.mark_purchase_arrived(pr.id, actor("ADMIN"))
        assert ledger.get_stock("BULB-01") == 9

    def test_delivery_does_not_move_stock(self, actor, run):
        _item("BULB-01", stock=0)
        pr = _direct_purchase(actor, ("BULB-01", 6))
        _advance_to(actor, run, pr, "DELIVERED")
        assert pr.status == "DELIVERED"
        assert pr.delivered_by == "admin-1"
        assert ledger.get_stock("BULB-01") == 6
        assert InventoryTransaction.query.count() == 1
        assert ledger.verify_item_balance("BULB-01")["balanced"] is True

    def test_cannot_skip_ordering(self, actor, run):
        _item()
        pr = _direct_purchase(actor, ("BULB-01", 1))
        _advance_to(actor, run, pr, "APPROVED")
        with pytest.raises(InvalidTransitionError):
            pipeline.mark_purchase_arrived(pr.id, actor("ADMIN"))
        assert InventoryTransaction.query.count() == 0

    def test_reject_requires_reason(self, actor):
        _item()
        pr = _direct_purchase(actor, ("BULB-01", 1))
        with pytest.raises(ValidationError):
            pipeline.reject_purchase(pr.id, actor("ADMIN"), None)
        assert pr.status == "PENDING"

    def test_rejected_is_terminal(self, actor, run):
        _item()
        pr = _direct_purchase(actor, ("BULB-01", 1))
        run(actor("ADMIN"), lambda: pipeline.reject_purchase(pr.id, actor("ADMIN"), "Too expensive"))
        assert pr.rejection_reason == "Too expensive"
        with pytest.raises(InvalidTransitionError):
            pipeline.approve_purchase(pr.id, actor("ADMIN"))

    def test_every_step_is_audited(self, actor, run):
        _item()
        pr = _direct_purchase(actor, ("BULB-01", 2))
        _advance_to(actor, run, pr, "DELIVERED")
        actions = [a.action for a in AuditLog.query.filter_by(entity_type="purchase_request").order_by(AuditLog.id)]
        assert actions == [
            "purchase_request.approve",
            "purchase_request.order",
            "purchase_request.mark_arrived",
            "purchase_request.deliver",
        ]


# ═════════════════════════════════════════════════════════════════════════════
# Delivery closes the material request
# ═════════════════════════════════════════════════════════════════════════════


class TestDeliveryHook:
    def test_delivery_closes_request_and_starts_schedule(self, actor, run):
        _item("BULB-01", stock=4)
        schedule = MaintenanceSchedule(code="MS-0001", title="Relamp Elm St.", status="PAUSED",
                                       requested_by="supervisor-1")
        db.session.add(schedule)
        db.session.commit()

        mr = fulfillment.submit_material_request({
            "items": [{"inventory_item_code": "BULB-01", "requested_quantity": 10}],
            "maintenance_schedule_id": schedule.id,
        }, actor("SUPERVISOR"))
        db.session.commit()
        run(actor("ADMIN"), lambda: fulfillment.approve_material_request(mr.id, actor("ADMIN")))
        pr = mr.purchase_requests[0]
        assert schedule.status == "PAUSED"

        _advance_to(actor, run, pr, "ARRIVED_IN_STOCK")
        assert mr.status == "AWAITING_DELIVERY"
        assert ledger.get_stock("BULB-01") == 6

        run(actor("ADMIN"), lambda: pipeline.deliver_purchase(pr.id, actor("ADMIN")))

        assert pr.status == "DELIVERED"
        assert mr.status == "DELIVERED"
        assert mr.items[0].item_status == "DELIVERED"
        assert mr.items[0].allocations()[-1] == {"type": "PURCHASE", "quantity": 6, "status": "DELIVERED"}
        assert schedule.status == "STARTED"

    def test_rejected_purchase_keeps_request_waiting(self, actor, run):
        _item("BULB-01", stock=0)
        mr = fulfillment.submit_material_request({
            "items": [{"inventory_item_code": "BULB-01", "requested_quantity": 2}],
        }, actor("SUPERVISOR"))
        db.session.commit()
        run(actor("ADMIN"), lambda: fulfillment.approve_material_request(mr.id, actor("ADMIN")))
        pr = mr.purchase_requests[0]
        run(actor("ADMIN"), lambda: pipeline.reject_purchase(pr.id, actor("ADMIN"), "Discontinued"))
        assert mr.status == "AWAITING_DELIVERY"

    def test_item_deleted_while_on_order_still_arrives(self, actor, run):
        bulb = _item("BULB-01", stock=1)
        mr = fulfillment.submit_material_request({
            "items": [{"inventory_item_code": "BULB-01", "requested_quantity": 4}],
        }, actor("SUPERVISOR"))
        db.session.commit()
        run(actor("ADMIN"), lambda: fulfillment.approve_material_request(mr.id, actor("ADMIN")))
        pr = mr.purchase_requests[0]
        _advance_to(actor, run, pr, "ORDERED")

        run(actor("ADMIN"), lambda: inventory_service.delete_item("BULB-01", actor("ADMIN")))
        run(actor("ADMIN"), lambda: pipeline.mark_purchase_arrived(pr.id, actor("ADMIN")))

        db.session.refresh(bulb)
        assert pr.status == "ARRIVED_IN_STOCK"
        assert bulb.deleted_at is not None
        assert bulb.current_stock == 3
        receipt = InventoryTransaction.query.filter_by(transaction_type="RECEIPT").one()
        assert (receipt.stock_before, receipt.stock_after) == (0, 3)

        run(actor("ADMIN"), lambda: pipeline.deliver_purchase(pr.id, actor("ADMIN")))
        assert mr.status == "DELIVERED"

    def test_direct_receipt_on_deleted_item_is_refused(self, actor, run):
        _item("BULB-01", stock=0)
        run(actor("ADMIN"), lambda: inventory_service.delete_item("BULB-01", actor("ADMIN")))
        with pytest.raises(NotFoundError):
            ledger.receive("BULB-01", 2, "admin-1")
