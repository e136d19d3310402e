"""
Purchase Pipeline

Drives a purchase request from approval to hand-over (all steps ADMIN):

    approve       PENDING → APPROVED            unit costs refreshed, total frozen
    reject        PENDING → REJECTED            reason mandatory
    order         APPROVED → ORDERED            timestamp only
    mark_arrived  ORDERED → ARRIVED_IN_STOCK    ledger RECEIPT per line
    deliver       ARRIVED_IN_STOCK → DELIVERED  no ledger call; emits purchase_delivered

Arrival credits stock exactly once: each line's receipt carries the key
``{PR code}:{item code}:{line id}:RECEIPT`` and a second arrival is refused
by the transition table before the ledger is reached.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal

from civicworks.core.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from civicworks.models import db
from civicworks.models.audit import write_audit
from civicworks.models.purchase import (
    PurchaseRequest,
    PurchaseRequestItem,
    purchase_transition_target,
)
from civicworks.services import inventory_ledger as ledger
from civicworks.services.code_generator import generate_purchase_request_code
from civicworks.services.events import purchase_delivered
from civicworks.services.permission import Actor, check_permission
from civicworks.utils.helpers import positive_int, require_text

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")


def get_purchase_request(purchase_id: int) -> PurchaseRequest:
    pr = db.session.get(PurchaseRequest, purchase_id)
    if pr is None:
        raise NotFoundError("PurchaseRequest", purchase_id)
    return pr


def _line_total(unit_cost, quantity: int) -> Decimal:
    return (Decimal(unit_cost or 0) * quantity).quantize(_CENT)


def _advance(pr: PurchaseRequest, guard_action: str, action: str, actor: Actor) -> tuple[str, str]:
    check_permission(actor, guard_action, pr.status)
    target = purchase_transition_target(pr.status, action)
    if target is None:
        raise InvalidTransitionError("purchase request", pr.code, action, pr.status)
    return pr.status, target


def _audit(pr: PurchaseRequest, action: str, actor: Actor, old_status: str, **extra) -> None:
    diff = {"status": {"old": old_status, "new": pr.status}}
    diff.update(extra)
    write_audit(
        entity_type="purchase_request", entity_id=pr.id, action=f"purchase_request.{action}",
        actor=actor.id, actor_role=actor.role, diff=diff,
    )
    logger.info(
        "PurchaseRequest %s code=%s %s→%s actor=%s", action, pr.code, old_status, pr.status, actor.id,
        extra={"entity_type": "purchase_request", "entity_id": pr.code, "action": action, "actor": actor.id},
    )


# ── Creation ─────────────────────────────────────────────────────────────────


def open_shortfall_purchase(material_request, shortfalls, actor: Actor) -> PurchaseRequest:
    """
    One PENDING purchase covering every shortfall of an approved material request.

    Args:
        shortfalls: ``[(MaterialRequestItem, InventoryItem), ...]`` with
                    ``purchase_quantity`` already set on each line.
    """
    pr = PurchaseRequest(
        code=generate_purchase_request_code(),
        requested_by=actor.id,
        status="PENDING",
        notes=f"Shortfall for {material_request.code}",
    )
    for line, item in shortfalls:
        pr.items.append(PurchaseRequestItem(
            inventory_item_id=item.id,
            material_request_item_id=line.id,
            item_code=item.code,
            requested_quantity=line.purchase_quantity,
            unit_cost=item.unit_cost,
            total_cost=_line_total(item.unit_cost, line.purchase_quantity),
        ))
    material_request.purchase_requests.append(pr)
    db.session.flush()
    logger.info("PurchaseRequest opened code=%s for material_request=%s lines=%s",
                pr.code, material_request.code, len(shortfalls))
    return pr


def create_purchase_request(data: dict, actor: Actor) -> PurchaseRequest:
    """Direct (restock) purchase with no originating material request."""
    check_permission(actor, "create_purchase_request")
    raw_items = data.get("items")
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("items must be a non-empty list", details={"items": "required"})

    pr = PurchaseRequest(
        code=generate_purchase_request_code(),
        requested_by=actor.id,
        supplier_name=data.get("supplier_name"),
        supplier_contact=data.get("supplier_contact"),
        notes=data.get("notes") or "",
        status="PENDING",
    )
    seen = set()
    for idx, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{idx}] must be an object", details={f"items[{idx}]": "invalid"})
        code = require_text(raw.get("inventory_item_code"), f"items[{idx}].inventory_item_code")
        qty = positive_int(raw.get("requested_quantity"), f"items[{idx}].requested_quantity")
        if code in seen:
            raise ValidationError(f"Item {code} is listed twice", details={f"items[{idx}]": "duplicate"})
        seen.add(code)
        item = ledger.get_active_item(code)
        pr.items.append(PurchaseRequestItem(
            inventory_item_id=item.id,
            item_code=item.code,
            requested_quantity=qty,
            unit_cost=item.unit_cost,
            total_cost=_line_total(item.unit_cost, qty),
        ))
    db.session.add(pr)
    db.session.flush()
    logger.info("PurchaseRequest created code=%s lines=%s by=%s", pr.code, len(pr.items), actor.id)
    return pr


# ── Transitions ──────────────────────────────────────────────────────────────


def approve_purchase(purchase_id: int, actor: Actor, supplier_name: str | None = None,
                     supplier_contact: str | None = None) -> PurchaseRequest:
    """PENDING → APPROVED. Unit costs are re-read from the items and the total frozen."""
    pr = get_purchase_request(purchase_id)
    old, target = _advance(pr, "approve_purchase", "approve", actor)

    total = Decimal("0")
    for line in pr.items:
        line.unit_cost = ledger.get_active_item(line.item_code).unit_cost
        line.total_cost = _line_total(line.unit_cost, line.requested_quantity)
        total += line.total_cost

    if supplier_name:
        pr.supplier_name = supplier_name
    if supplier_contact:
        pr.supplier_contact = supplier_contact
    pr.total_cost = total
    pr.status = target
    pr.approved_by = actor.id
    pr.approved_at = datetime.now(timezone.utc)
    db.session.flush()
    _audit(pr, "approve", actor, old, total_cost=total)
    return pr


def reject_purchase(purchase_id: int, actor: Actor, reason: str | None) -> PurchaseRequest:
    pr = get_purchase_request(purchase_id)
    old, target = _advance(pr, "reject_purchase", "reject", actor)
    reason = require_text(reason, "reason")

    pr.status = target
    pr.rejected_by = actor.id
    pr.rejected_at = datetime.now(timezone.utc)
    pr.rejection_reason = reason
    db.session.flush()
    _audit(pr, "reject", actor, old, reason=reason)
    return pr


def order_purchase(purchase_id: int, actor: Actor) -> PurchaseRequest:
    pr = get_purchase_request(purchase_id)
    old, target = _advance(pr, "order_purchase", "order", actor)
    pr.status = target
    pr.ordered_by = actor.id
    pr.ordered_at = datetime.now(timezone.utc)
    db.session.flush()
    _audit(pr, "order", actor, old)
    return pr


def mark_purchase_arrived(purchase_id: int, actor: Actor) -> PurchaseRequest:
    """
    ORDERED → ARRIVED_IN_STOCK, crediting every line to the ledger.

    Goods on order still arrive when their item was soft-deleted meanwhile.
    """
    pr = get_purchase_request(purchase_id)
    old, target = _advance(pr, "mark_purchase_arrived", "mark_arrived", actor)

    for line in pr.items:
        ledger.receive(
            line.item_code, line.requested_quantity, actor.id,
            reference_type="purchase_request", reference_id=pr.id,
            idempotency_key=f"{pr.code}:{line.item_code}:{line.id}:RECEIPT",
            include_deleted=True,
        )
        line.line_status = "RECEIVED"

    pr.status = target
    pr.arrived_by = actor.id
    pr.arrived_at = datetime.now(timezone.utc)
    db.session.flush()
    _audit(pr, "mark_arrived", actor, old)
    return pr


def deliver_purchase(purchase_id: int, actor: Actor) -> PurchaseRequest:
    """ARRIVED_IN_STOCK → DELIVERED. Stock is not touched again."""
    pr = get_purchase_request(purchase_id)
    old, target = _advance(pr, "deliver_purchase", "deliver", actor)

    for line in pr.items:
        line.line_status = "DELIVERED"
    pr.status = target
    pr.delivered_by = actor.id
    pr.delivered_at = datetime.now(timezone.utc)
    db.session.flush()
    _audit(pr, "deliver", actor, old)
    purchase_delivered.send(pr, actor=actor)
    return pr
