"""
Inventory registry: item registration, descriptive edits and soft delete.

Stock figures are not editable here: the opening balance is fixed at
registration (``initial_stock``) and every later change goes through
services/inventory_ledger.py.
"""

import logging

from civicworks.core.exceptions import ConflictError, NotFoundError, ValidationError
from civicworks.models import db
from civicworks.models.audit import write_audit
from civicworks.models.inventory import InventoryItem
from civicworks.services import inventory_ledger as ledger
from civicworks.services.permission import Actor, check_permission
from civicworks.utils.helpers import money, non_negative_int, require_text

logger = logging.getLogger(__name__)

_UPDATABLE_TEXT = ("name", "category", "unit_of_measure")


def list_items(include_deleted: bool = False) -> list[InventoryItem]:
    q = InventoryItem.query if include_deleted else InventoryItem.query_active()
    return q.order_by(InventoryItem.code).all()


def get_item(item_code: str, include_deleted: bool = False) -> InventoryItem:
    q = InventoryItem.query if include_deleted else InventoryItem.query_active()
    item = q.filter_by(code=item_code).first()
    if item is None:
        raise NotFoundError("InventoryItem", item_code)
    return item


def register_item(data: dict, actor: Actor) -> InventoryItem:
    """Create an item with its opening balance.

    Args:
        data: ``code``, ``name`` required; ``initial_stock``,
              ``minimum_threshold``, ``unit_cost``, ``unit_of_measure``,
              ``category`` optional.
    """
    check_permission(actor, "register_inventory_item")

    code = require_text(data.get("code"), "code")
    name = require_text(data.get("name"), "name")
    if InventoryItem.query.filter_by(code=code).first():
        raise ConflictError(f"InventoryItem {code} already exists", details={"code": code})

    opening = non_negative_int(data.get("initial_stock", 0), "initial_stock")
    item = InventoryItem(
        code=code,
        name=name,
        category=data.get("category") or "",
        unit_of_measure=data.get("unit_of_measure") or "pcs",
        initial_stock=opening,
        current_stock=opening,
        minimum_threshold=non_negative_int(data.get("minimum_threshold", 0), "minimum_threshold"),
        unit_cost=money(data.get("unit_cost", 0), "unit_cost"),
    )
    db.session.add(item)
    db.session.flush()
    write_audit(
        entity_type="inventory_item", entity_id=item.code, action="inventory_item.register",
        actor=actor.id, actor_role=actor.role, diff={"initial_stock": opening},
    )
    logger.info("InventoryItem registered code=%s stock=%s", item.code, opening)
    return item


def update_item(item_code: str, data: dict, actor: Actor) -> InventoryItem:
    """Edit descriptive fields, threshold and unit cost. Stock fields are rejected."""
    check_permission(actor, "update_inventory_item")
    item = get_item(item_code)

    forbidden = {"current_stock", "initial_stock", "code"} & set(data)
    if forbidden:
        raise ValidationError(
            "Stock and code cannot be edited; use a stock adjustment",
            details={f: "read-only" for f in sorted(forbidden)},
        )

    diff = {}
    for field in _UPDATABLE_TEXT:
        if field in data:
            value = require_text(data[field], field)
            if value != getattr(item, field):
                diff[field] = {"old": getattr(item, field), "new": value}
                setattr(item, field, value)
    if "minimum_threshold" in data:
        value = non_negative_int(data["minimum_threshold"], "minimum_threshold")
        if value != item.minimum_threshold:
            diff["minimum_threshold"] = {"old": item.minimum_threshold, "new": value}
            item.minimum_threshold = value
    if "unit_cost" in data:
        value = money(data["unit_cost"], "unit_cost")
        if value != item.unit_cost:
            diff["unit_cost"] = {"old": item.unit_cost, "new": value}
            item.unit_cost = value

    db.session.flush()
    if diff:
        write_audit(
            entity_type="inventory_item", entity_id=item.code, action="inventory_item.update",
            actor=actor.id, actor_role=actor.role, diff=diff,
        )
        logger.info("InventoryItem updated code=%s fields=%s", item.code, sorted(diff))
    return item


def delete_item(item_code: str, actor: Actor) -> InventoryItem:
    """Soft-delete: history stays, new allocations can no longer see the item."""
    check_permission(actor, "delete_inventory_item")
    item = get_item(item_code)
    item.soft_delete()
    db.session.flush()
    write_audit(
        entity_type="inventory_item", entity_id=item.code, action="inventory_item.delete",
        actor=actor.id, actor_role=actor.role,
    )
    logger.info("InventoryItem soft-deleted code=%s", item.code)
    return item


def adjust_stock(item_code: str, data: dict, actor: Actor) -> ledger.LedgerResult:
    """Stocktake correction to an absolute ``new_stock``; ``reason`` is mandatory."""
    check_permission(actor, "adjust_inventory_stock")
    return ledger.adjust(item_code, data.get("new_stock"), actor.id, data.get("reason"))
