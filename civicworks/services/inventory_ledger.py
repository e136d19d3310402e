"""
Inventory Ledger: the only writer of ``InventoryItem.current_stock``.

Operations:
  - reserve_and_issue:  decrement by exactly ``quantity`` or raise INSUFFICIENT_STOCK
  - issue_available:    decrement by min(stock, max_quantity); optimistic retry
  - receive:            increment, append RECEIPT (optionally onto a soft-deleted item)
  - adjust:             stocktake correction to an absolute figure, append ADJUSTMENT
  - get_stock / check_availability / verify_item_balance: read-side helpers

Concurrency:
  Every stock change is a single conditional UPDATE executed inside the
  caller's transaction:

      UPDATE inventory_items SET current_stock = current_stock - :q
       WHERE id = :id AND deleted_at IS NULL AND current_stock >= :q

  On PostgreSQL the row lock serialises concurrent writers on one item and the
  WHERE clause is re-evaluated after the lock is granted, so two approvals can
  never oversell. On SQLite every transaction starts with BEGIN IMMEDIATE
  (see civicworks/__init__.py), which serialises writers database-wide.

Idempotency:
  Callers pass ``idempotency_key`` (e.g. ``MR-0004:BULB-01:ISSUE``). The key is
  UNIQUE on inventory_transactions; if it already exists the original result
  is returned with ``replayed=True`` and nothing is changed.

Usage:
    from civicworks.services import inventory_ledger as ledger

    result = ledger.reserve_and_issue("BULB-01", 4, actor="admin-1",
                                      reference_type="material_request", reference_id=7)
    result.new_stock
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import and_, func, select, update

from civicworks.core.exceptions import (
    ConflictError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from civicworks.models import db
from civicworks.models.inventory import InventoryItem, InventoryTransaction
from civicworks.utils.helpers import non_negative_int, positive_int, require_text

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerResult:
    applied: bool
    item_code: str
    quantity: int
    stock_before: int
    new_stock: int
    replayed: bool = False
    transaction_id: int | None = None

    def to_dict(self) -> dict:
        return {
            "applied": self.applied,
            "item_code": self.item_code,
            "quantity": self.quantity,
            "stock_before": self.stock_before,
            "new_stock": self.new_stock,
            "replayed": self.replayed,
            "transaction_id": self.transaction_id,
        }


# ── Lookups ──────────────────────────────────────────────────────────────────


def get_active_item(item_code: str) -> InventoryItem:
    """Return the non-deleted item with ``item_code`` or raise ITEM_NOT_FOUND."""
    item = InventoryItem.query_active().filter_by(code=item_code).first()
    if item is None:
        raise NotFoundError("InventoryItem", item_code)
    return item


def _current_stock(item: InventoryItem) -> int:
    # Re-read inside the current transaction; the session copy may be stale.
    db.session.expire(item, ["current_stock", "deleted_at", "updated_at"])
    return item.current_stock


def _replay(idempotency_key: str | None) -> LedgerResult | None:
    if not idempotency_key:
        return None
    txn = InventoryTransaction.query.filter_by(idempotency_key=idempotency_key).first()
    if txn is None:
        return None
    logger.info("Ledger replay key=%s item=%s", idempotency_key, txn.item_code)
    return LedgerResult(
        applied=True,
        item_code=txn.item_code,
        quantity=abs(txn.quantity),
        stock_before=txn.stock_before,
        new_stock=txn.stock_after,
        replayed=True,
        transaction_id=txn.id,
    )


def _append(item, txn_type, quantity, before, after, actor, reference_type, reference_id,
            idempotency_key, notes) -> InventoryTransaction:
    txn = InventoryTransaction(
        item_id=item.id,
        item_code=item.code,
        transaction_type=txn_type,
        quantity=quantity,
        stock_before=before,
        stock_after=after,
        actor=actor,
        reference_type=reference_type,
        reference_id=str(reference_id) if reference_id is not None else None,
        idempotency_key=idempotency_key,
        notes=notes or "",
    )
    db.session.add(txn)
    db.session.flush()
    logger.info(
        "Ledger %s item=%s qty=%s stock %s→%s ref=%s:%s",
        txn_type, item.code, quantity, before, after, reference_type, reference_id,
        extra={"entity_type": "inventory_item", "entity_id": item.code,
               "action": txn_type.lower(), "actor": actor},
    )
    return txn


# ── Mutations ────────────────────────────────────────────────────────────────


def reserve_and_issue(
    item_code: str,
    quantity: int,
    actor: str,
    *,
    reference_type: str | None = None,
    reference_id=None,
    idempotency_key: str | None = None,
    notes: str = "",
) -> LedgerResult:
    """
    Issue exactly ``quantity`` units, only if that much stock is on hand.

    Raises:
        ValidationError: quantity is not a positive integer.
        NotFoundError: no active item with that code.
        InsufficientStockError: stock < quantity; nothing is changed.
    """
    quantity = positive_int(quantity, "quantity")
    replayed = _replay(idempotency_key)
    if replayed:
        return replayed

    item = get_active_item(item_code)
    result = db.session.execute(
        update(InventoryItem)
        .where(
            InventoryItem.id == item.id,
            InventoryItem.not_deleted(),
            InventoryItem.current_stock >= quantity,
        )
        .values(
            current_stock=InventoryItem.current_stock - quantity,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    after = _current_stock(item)
    if result.rowcount != 1:
        if item.is_deleted:
            raise NotFoundError("InventoryItem", item_code)
        raise InsufficientStockError(item.code, quantity, after)

    before = after + quantity
    txn = _append(item, "ISSUE", quantity, before, after, actor,
                  reference_type, reference_id, idempotency_key, notes)
    return LedgerResult(True, item.code, quantity, before, after, transaction_id=txn.id)


def issue_available(
    item_code: str,
    max_quantity: int,
    actor: str,
    *,
    reference_type: str | None = None,
    reference_id=None,
    idempotency_key: str | None = None,
    notes: str = "",
    max_retries: int | None = None,
) -> LedgerResult:
    """
    Issue as much of ``max_quantity`` as is on hand (possibly zero).

    Reads the balance, then issues ``min(balance, max_quantity)`` through the
    conditional update. If another writer drained the item between read and
    write, retries with the fresh balance; gives up with CONFLICT after
    ``LEDGER_MAX_RETRIES`` attempts.

    A zero-quantity result has ``applied=False`` and appends no transaction.
    """
    max_quantity = positive_int(max_quantity, "quantity")
    replayed = _replay(idempotency_key)
    if replayed:
        return replayed

    if max_retries is None:
        max_retries = current_app.config.get("LEDGER_MAX_RETRIES", 5)

    item = get_active_item(item_code)
    for attempt in range(1, max_retries + 1):
        on_hand = _current_stock(item)
        if item.is_deleted:
            raise NotFoundError("InventoryItem", item_code)
        qty = min(on_hand, max_quantity)
        if qty <= 0:
            return LedgerResult(False, item.code, 0, on_hand, on_hand)
        try:
            return reserve_and_issue(
                item.code, qty, actor,
                reference_type=reference_type, reference_id=reference_id,
                idempotency_key=idempotency_key, notes=notes,
            )
        except InsufficientStockError as exc:
            logger.warning(
                "Stock moved under issue item=%s wanted=%s now=%s attempt=%s/%s",
                item.code, qty, exc.available, attempt, max_retries,
            )
    raise ConflictError(
        f"Stock for {item_code} kept changing; retry the command",
        details={"item_code": item_code, "attempts": max_retries},
    )


def receive(
    item_code: str,
    quantity: int,
    actor: str,
    *,
    reference_type: str | None = None,
    reference_id=None,
    idempotency_key: str | None = None,
    notes: str = "",
    include_deleted: bool = False,
) -> LedgerResult:
    """
    Increment stock by ``quantity`` and append a RECEIPT row.

    ``include_deleted`` lets goods already on order land on an item that was
    soft-deleted after the order was placed. The item stays deleted.
    """
    quantity = positive_int(quantity, "quantity")
    replayed = _replay(idempotency_key)
    if replayed:
        return replayed

    if include_deleted:
        item = InventoryItem.query.filter_by(code=item_code).first()
        if item is None:
            raise NotFoundError("InventoryItem", item_code)
        row_filter = InventoryItem.id == item.id
    else:
        item = get_active_item(item_code)
        row_filter = and_(InventoryItem.id == item.id, InventoryItem.not_deleted())
    result = db.session.execute(
        update(InventoryItem)
        .where(row_filter)
        .values(
            current_stock=InventoryItem.current_stock + quantity,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    after = _current_stock(item)
    if result.rowcount != 1:
        raise NotFoundError("InventoryItem", item_code)

    before = after - quantity
    txn = _append(item, "RECEIPT", quantity, before, after, actor,
                  reference_type, reference_id, idempotency_key, notes)
    return LedgerResult(True, item.code, quantity, before, after, transaction_id=txn.id)


def adjust(item_code: str, new_stock, actor: str, reason: str) -> LedgerResult:
    """
    Stocktake correction: set the balance to ``new_stock``.

    Appends one ADJUSTMENT row with the signed delta. Compare-and-swap on the
    observed balance; a concurrent change raises CONFLICT.
    """
    new_stock = non_negative_int(new_stock, "new_stock")
    reason = require_text(reason, "reason")

    item = get_active_item(item_code)
    observed = _current_stock(item)
    delta = new_stock - observed
    if delta == 0:
        return LedgerResult(False, item.code, 0, observed, observed)

    result = db.session.execute(
        update(InventoryItem)
        .where(
            InventoryItem.id == item.id,
            InventoryItem.not_deleted(),
            InventoryItem.current_stock == observed,
        )
        .values(current_stock=new_stock, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError(
            f"Stock for {item_code} changed during adjustment",
            details={"item_code": item_code, "observed": observed},
        )
    _current_stock(item)
    txn = _append(item, "ADJUSTMENT", delta, observed, new_stock, actor,
                  "stocktake", None, None, reason)
    return LedgerResult(True, item.code, delta, observed, new_stock, transaction_id=txn.id)


# ── Queries ──────────────────────────────────────────────────────────────────


def get_stock(item_code: str) -> int:
    return _current_stock(get_active_item(item_code))


def check_availability(lines: list[dict]) -> list[dict]:
    """
    Preview whether requested quantities can be issued right now.

    Args:
        lines: ``[{"inventory_item_code": str, "requested_quantity": int}, ...]``

    Returns:
        One dict per line: code, requested quantity, ``available`` (bool),
        ``available_quantity`` (current balance) and ``needs_purchase``
        (shortfall, 0 if none). Reads only; nothing is reserved.
    """
    if not isinstance(lines, list) or not lines:
        raise ValidationError("items must be a non-empty list", details={"items": "required"})

    out = []
    for idx, line in enumerate(lines):
        if not isinstance(line, dict):
            raise ValidationError(f"items[{idx}] must be an object", details={f"items[{idx}]": "invalid"})
        code = require_text(line.get("inventory_item_code"), f"items[{idx}].inventory_item_code")
        requested = positive_int(line.get("requested_quantity"), f"items[{idx}].requested_quantity")
        item = get_active_item(code)
        on_hand = item.current_stock
        out.append({
            "inventory_item_code": item.code,
            "name": item.name,
            "requested_quantity": requested,
            "available_quantity": on_hand,
            "available": on_hand >= requested,
            "needs_purchase": max(requested - on_hand, 0),
        })
    return out


def list_transactions(item_code: str) -> list[InventoryTransaction]:
    """Ledger rows for an item (deleted items included), oldest first."""
    item = InventoryItem.query.filter_by(code=item_code).first()
    if item is None:
        raise NotFoundError("InventoryItem", item_code)
    return item.transactions.all()


def verify_item_balance(item_code: str) -> dict:
    """
    Recompute the balance from the ledger and compare it with ``current_stock``.

        initial_stock + Σ RECEIPT − Σ ISSUE + Σ ADJUSTMENT == current_stock
    """
    item = InventoryItem.query.filter_by(code=item_code).first()
    if item is None:
        raise NotFoundError("InventoryItem", item_code)

    rows = db.session.execute(
        select(InventoryTransaction.transaction_type, func.coalesce(func.sum(InventoryTransaction.quantity), 0))
        .where(InventoryTransaction.item_id == item.id)
        .group_by(InventoryTransaction.transaction_type)
    ).all()
    totals = {t: int(q) for t, q in rows}
    issued = totals.get("ISSUE", 0)
    received = totals.get("RECEIPT", 0)
    adjusted = totals.get("ADJUSTMENT", 0)
    expected = item.initial_stock + received - issued + adjusted
    actual = _current_stock(item)
    return {
        "item_code": item.code,
        "initial_stock": item.initial_stock,
        "issued": issued,
        "received": received,
        "adjusted": adjusted,
        "expected_stock": expected,
        "current_stock": actual,
        "balanced": expected == actual,
    }
