"""
Inventory ledger tests: conditional issue, receipts, stocktake, idempotent
replay and the balance invariant:

    initial_stock + Σ RECEIPT − Σ ISSUE + Σ ADJUSTMENT == current_stock
"""

from decimal import Decimal

import pytest

from civicworks.core.exceptions import (
    ConflictError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from civicworks.models import db
from civicworks.models.inventory import InventoryItem, InventoryTransaction, stock_status
from civicworks.services import inventory_ledger as ledger
from civicworks.services import inventory_service


# ═════════════════════════════════════════════════════════════════════════════
# ORM Helper Factories
# ═════════════════════════════════════════════════════════════════════════════


def _item(code="BULB-01", stock=5, threshold=2, unit_cost="12.50") -> InventoryItem:
    item = InventoryItem(
        code=code, name=f"Item {code}", current_stock=stock, initial_stock=stock,
        minimum_threshold=threshold, unit_cost=Decimal(unit_cost),
    )
    db.session.add(item)
    db.session.commit()
    return item


# ═════════════════════════════════════════════════════════════════════════════
# Issue
# ═════════════════════════════════════════════════════════════════════════════


class TestReserveAndIssue:
    def test_issue_decrements_and_appends_row(self):
        _item(stock=5)
        result = ledger.reserve_and_issue("BULB-01", 3, "admin-1", reference_type="material_request", reference_id=1)
        assert result.applied is True
        assert (result.stock_before, result.new_stock) == (5, 2)
        txn = db.session.get(InventoryTransaction, result.transaction_id)
        assert txn.transaction_type == "ISSUE"
        assert txn.quantity == 3
        assert (txn.stock_before, txn.stock_after) == (5, 2)
        assert txn.reference_id == "1"

    def test_issue_more_than_stock_raises_and_changes_nothing(self):
        item = _item(stock=2)
        with pytest.raises(InsufficientStockError) as exc:
            ledger.reserve_and_issue("BULB-01", 3, "admin-1")
        assert exc.value.details == {"item_code": "BULB-01", "requested": 3, "available": 2}
        assert item.current_stock == 2
        assert InventoryTransaction.query.count() == 0

    def test_issue_exact_stock_reaches_zero(self):
        _item(stock=4)
        assert ledger.reserve_and_issue("BULB-01", 4, "admin-1").new_stock == 0

    @pytest.mark.parametrize("qty", [0, -1, "abc", True, None])
    def test_non_positive_quantity_rejected(self, qty):
        _item()
        with pytest.raises(ValidationError):
            ledger.reserve_and_issue("BULB-01", qty, "admin-1")

    def test_unknown_item(self):
        with pytest.raises(NotFoundError) as exc:
            ledger.reserve_and_issue("NOPE", 1, "admin-1")
        assert exc.value.code == "ITEM_NOT_FOUND"

    def test_deleted_item_is_invisible(self):
        item = _item()
        item.soft_delete()
        db.session.commit()
        with pytest.raises(NotFoundError):
            ledger.reserve_and_issue("BULB-01", 1, "admin-1")


class TestIssueAvailable:
    def test_issues_up_to_balance(self):
        _item(stock=4)
        result = ledger.issue_available("BULB-01", 10, "admin-1")
        assert result.quantity == 4
        assert result.stock_before == 4
        assert result.new_stock == 0

    def test_issues_full_request_when_stock_suffices(self):
        _item(stock=9)
        result = ledger.issue_available("BULB-01", 3, "admin-1")
        assert (result.quantity, result.new_stock) == (3, 6)

    def test_zero_stock_issues_nothing_and_writes_no_row(self):
        _item(stock=0)
        result = ledger.issue_available("BULB-01", 3, "admin-1")
        assert result.applied is False
        assert result.quantity == 0
        assert InventoryTransaction.query.count() == 0

    def test_gives_up_with_conflict_when_stock_keeps_moving(self, monkeypatch):
        _item(stock=5)

        def _always_short(code, qty, actor, **kwargs):
            raise InsufficientStockError(code, qty, 0)

        monkeypatch.setattr(ledger, "reserve_and_issue", _always_short)
        with pytest.raises(ConflictError):
            ledger.issue_available("BULB-01", 3, "admin-1", max_retries=2)


# ═════════════════════════════════════════════════════════════════════════════
# Receive / adjust
# ═════════════════════════════════════════════════════════════════════════════


class TestReceiveAndAdjust:
    def test_receive_increments(self):
        _item(stock=1)
        result = ledger.receive("BULB-01", 6, "admin-1", reference_type="purchase_request", reference_id=3)
        assert (result.stock_before, result.new_stock) == (1, 7)
        txn = InventoryTransaction.query.one()
        assert txn.transaction_type == "RECEIPT"

    def test_adjust_records_signed_delta(self):
        _item(stock=10)
        result = ledger.adjust("BULB-01", 7, "admin-1", "broken in storage")
        assert result.quantity == -3
        txn = InventoryTransaction.query.one()
        assert txn.transaction_type == "ADJUSTMENT"
        assert txn.quantity == -3
        assert txn.notes == "broken in storage"

    def test_adjust_requires_reason(self):
        _item()
        with pytest.raises(ValidationError):
            ledger.adjust("BULB-01", 3, "admin-1", "  ")

    def test_adjust_to_same_value_is_noop(self):
        _item(stock=5)
        result = ledger.adjust("BULB-01", 5, "admin-1", "count matches")
        assert result.applied is False
        assert InventoryTransaction.query.count() == 0

    def test_adjust_negative_rejected(self):
        _item()
        with pytest.raises(ValidationError):
            ledger.adjust("BULB-01", -1, "admin-1", "oops")


# ═════════════════════════════════════════════════════════════════════════════
# Idempotency & invariant
# ═════════════════════════════════════════════════════════════════════════════


class TestIdempotency:
    def test_same_key_issues_once(self):
        item = _item(stock=5)
        first = ledger.reserve_and_issue("BULB-01", 2, "admin-1", idempotency_key="MR-0001:BULB-01:ISSUE")
        second = ledger.reserve_and_issue("BULB-01", 2, "admin-1", idempotency_key="MR-0001:BULB-01:ISSUE")
        assert second.replayed is True
        assert second.transaction_id == first.transaction_id
        assert second.new_stock == 3
        assert item.current_stock == 3
        assert InventoryTransaction.query.count() == 1

    def test_same_key_receives_once(self):
        _item(stock=0)
        ledger.receive("BULB-01", 4, "admin-1", idempotency_key="PR-0001:BULB-01:1:RECEIPT")
        ledger.receive("BULB-01", 4, "admin-1", idempotency_key="PR-0001:BULB-01:1:RECEIPT")
        assert ledger.get_stock("BULB-01") == 4


class TestBalanceInvariant:
    def test_mixed_history_balances(self):
        _item(stock=10)
        ledger.reserve_and_issue("BULB-01", 4, "admin-1")
        ledger.receive("BULB-01", 6, "admin-1")
        ledger.issue_available("BULB-01", 20, "admin-1")
        ledger.adjust("BULB-01", 3, "admin-1", "found spare box")
        report = ledger.verify_item_balance("BULB-01")
        assert report["balanced"] is True
        assert report["issued"] == 16
        assert report["received"] == 6
        assert report["adjusted"] == 3
        assert report["current_stock"] == 3

    def test_out_of_band_edit_is_detected(self):
        item = _item(stock=5)
        item.current_stock = 9
        db.session.commit()
        assert ledger.verify_item_balance("BULB-01")["balanced"] is False


# ═════════════════════════════════════════════════════════════════════════════
# Read side
# ═════════════════════════════════════════════════════════════════════════════


class TestAvailabilityAndStatus:
    def test_check_availability_reports_shortfall(self):
        _item("BULB-01", stock=4)
        _item("POLE-01", stock=20)
        rows = ledger.check_availability([
            {"inventory_item_code": "BULB-01", "requested_quantity": 10},
            {"inventory_item_code": "POLE-01", "requested_quantity": 3},
        ])
        assert rows[0]["available"] is False
        assert rows[0]["available_quantity"] == 4
        assert rows[0]["needs_purchase"] == 6
        assert rows[1]["available"] is True
        assert rows[1]["needs_purchase"] == 0
        assert ledger.get_stock("BULB-01") == 4

    def test_check_availability_requires_lines(self):
        with pytest.raises(ValidationError):
            ledger.check_availability([])

    @pytest.mark.parametrize("stock,expected", [
        (0, "LOW_STOCK"), (10, "LOW_STOCK"), (11, "WARNING"), (15, "WARNING"), (16, "IN_STOCK"),
    ])
    def test_stock_status_bands(self, stock, expected):
        assert stock_status(stock, 10, 1.5) == expected


class TestRegistry:
    def test_register_sets_opening_balance(self, actor):
        item = inventory_service.register_item(
            {"code": "CABLE-02", "name": "Cable 2mm", "initial_stock": 40, "unit_cost": "3.20"},
            actor("ADMIN"),
        )
        assert item.current_stock == 40
        assert item.initial_stock == 40
        assert item.unit_cost == Decimal("3.20")

    def test_register_duplicate_code_conflicts(self, actor):
        _item("CABLE-02")
        with pytest.raises(ConflictError):
            inventory_service.register_item({"code": "CABLE-02", "name": "dup"}, actor("ADMIN"))

    def test_update_rejects_stock_fields(self, actor):
        _item()
        with pytest.raises(ValidationError) as exc:
            inventory_service.update_item("BULB-01", {"current_stock": 99}, actor("ADMIN"))
        assert exc.value.details == {"current_stock": "read-only"}

    def test_deleted_item_keeps_its_history(self, actor):
        _item(stock=5)
        ledger.reserve_and_issue("BULB-01", 1, "admin-1")
        inventory_service.delete_item("BULB-01", actor("ADMIN"))
        assert len(ledger.list_transactions("BULB-01")) == 1
        assert [i.code for i in inventory_service.list_items()] == []
        assert [i.code for i in inventory_service.list_items(include_deleted=True)] == ["BULB-01"]
