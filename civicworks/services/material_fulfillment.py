"""
Material Fulfillment Pipeline

Turns a material request into per-line allocations against shared stock:

    submit   → PENDING                         (any role; nothing reserved)
    approve  PENDING → FULFILLED               (ADMIN; every line issued in full)
             PENDING → AWAITING_DELIVERY       (ADMIN; ≥1 shortfall, one PurchaseRequest opened)
    reject   PENDING → REJECTED                (ADMIN; reason mandatory, no stock touched)
    receive  AWAITING_DELIVERY → DELIVERED     (MAINTENANCE_ENGINEER; every purchase DELIVERED)
    update   PENDING → PENDING                 (ADMIN; lines, description, schedule)
    delete   PENDING → removed                 (ADMIN; audit row kept)

Approval, per line (in submission order):
  1. read the balance → ``available_quantity_snapshot``
  2. issue min(balance, requested) through the ledger as USAGE
  3. any remainder becomes a PURCHASE line on a single shortfall PurchaseRequest

Every item is resolved before any stock is touched, so a line referencing a
deleted item fails the whole approval with ITEM_NOT_FOUND.

Partial-fulfillment tie-break: the approval that commits first takes stock
first. A later approval sees the reduced balance and buys the remainder.

Listens to ``purchase_delivered`` and closes the request once every sibling
purchase is DELIVERED. Emits ``materials_ready`` on FULFILLED / DELIVERED.
"""

import logging
from datetime import datetime, timezone

from civicworks.core.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from civicworks.models import db
from civicworks.models.audit import write_audit
from civicworks.models.inventory import InventoryItem
from civicworks.models.maintenance import MaintenanceSchedule
from civicworks.models.material import (
    MATERIAL_REQUEST_TRANSITIONS,
    MaterialRequest,
    MaterialRequestItem,
)
from civicworks.models.purchase import PurchaseRequest
from civicworks.services import inventory_ledger as ledger
from civicworks.services import purchase_pipeline
from civicworks.services.code_generator import generate_material_request_code
from civicworks.services.events import materials_ready, purchase_delivered
from civicworks.services.permission import Actor, check_permission
from civicworks.utils.helpers import positive_int, require_text

logger = logging.getLogger(__name__)


def get_material_request(request_id: int) -> MaterialRequest:
    mr = db.session.get(MaterialRequest, request_id)
    if mr is None:
        raise NotFoundError("MaterialRequest", request_id)
    return mr


def _require_transition(mr: MaterialRequest, action: str) -> None:
    if mr.status not in MATERIAL_REQUEST_TRANSITIONS[action]["from"]:
        raise InvalidTransitionError("material request", mr.code, action, mr.status)


def _audit(mr: MaterialRequest, action: str, actor: Actor, old_status: str, **extra) -> None:
    diff = {"status": {"old": old_status, "new": mr.status}}
    diff.update(extra)
    write_audit(
        entity_type="material_request", entity_id=mr.id, action=f"material_request.{action}",
        actor=actor.id, actor_role=actor.role, diff=diff,
    )
    logger.info(
        "MaterialRequest %s code=%s %s→%s actor=%s", action, mr.code, old_status, mr.status, actor.id,
        extra={"entity_type": "material_request", "entity_id": mr.code, "action": action, "actor": actor.id},
    )


# ── Submit ───────────────────────────────────────────────────────────────────


def _parse_lines(raw_items) -> list[tuple[InventoryItem, int]]:
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("items must be a non-empty list", details={"items": "required"})
    seen = set()
    lines = []
    for idx, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{idx}] must be an object", details={f"items[{idx}]": "invalid"})
        code = require_text(raw.get("inventory_item_code"), f"items[{idx}].inventory_item_code")
        qty = positive_int(raw.get("requested_quantity"), f"items[{idx}].requested_quantity")
        if code in seen:
            raise ValidationError(f"Item {code} is listed twice", details={f"items[{idx}]": "duplicate"})
        seen.add(code)
        lines.append((ledger.get_active_item(code), qty))
    return lines


def _new_line(item: InventoryItem, qty: int) -> MaterialRequestItem:
    return MaterialRequestItem(
        inventory_item_id=item.id,
        item_code=item.code,
        requested_quantity=qty,
        request_type="USAGE",
        item_status="PENDING",
    )


def _check_schedule(schedule_id) -> None:
    if schedule_id is not None and db.session.get(MaintenanceSchedule, schedule_id) is None:
        raise NotFoundError("MaintenanceSchedule", schedule_id)


def submit_material_request(data: dict, actor: Actor) -> MaterialRequest:
    """Create a PENDING request; nothing is reserved or snapshotted."""
    check_permission(actor, "submit_material_request")
    lines = _parse_lines(data.get("items"))

    schedule_id = data.get("maintenance_schedule_id")
    _check_schedule(schedule_id)

    mr = MaterialRequest(
        code=generate_material_request_code(),
        requested_by=actor.id,
        maintenance_schedule_id=schedule_id,
        description=data.get("description") or "",
        status="PENDING",
    )
    for item, qty in lines:
        mr.items.append(_new_line(item, qty))
    db.session.add(mr)
    db.session.flush()
    logger.info("MaterialRequest submitted code=%s lines=%s by=%s", mr.code, len(lines), actor.id)
    return mr


# ── Approve ──────────────────────────────────────────────────────────────────


def approve_material_request(request_id: int, actor: Actor) -> MaterialRequest:
    """Allocate every line against current stock; open one purchase for all shortfalls."""
    mr = get_material_request(request_id)
    check_permission(actor, "approve_material_request", mr.status)
    _require_transition(mr, "approve")

    # Resolve every item first: a deleted item aborts before any stock moves.
    resolved = [(line, ledger.get_active_item(line.item_code)) for line in mr.items]

    shortfalls = []
    for line, item in resolved:
        result = ledger.issue_available(
            item.code, line.requested_quantity, actor.id,
            reference_type="material_request", reference_id=mr.id,
            idempotency_key=f"{mr.code}:{item.code}:ISSUE",
        )
        line.available_quantity_snapshot = result.stock_before
        line.usage_quantity = result.quantity
        line.purchase_quantity = line.requested_quantity - result.quantity
        if line.purchase_quantity:
            line.request_type = "PURCHASE"
            line.item_status = "PENDING_PURCHASE"
            shortfalls.append((line, item))
        else:
            line.request_type = "USAGE"
            line.item_status = "FULFILLED"

    old_status = mr.status
    mr.approved_by = actor.id
    mr.approved_at = datetime.now(timezone.utc)
    purchase = None
    if shortfalls:
        purchase = purchase_pipeline.open_shortfall_purchase(mr, shortfalls, actor)
        mr.status = "AWAITING_DELIVERY"
    else:
        mr.status = "FULFILLED"
    db.session.flush()

    _audit(mr, "approve", actor, old_status,
           purchase_request=purchase.code if purchase else None)
    if mr.status == "FULFILLED":
        materials_ready.send(mr, actor=actor)
    return mr


# ── Reject ───────────────────────────────────────────────────────────────────


def reject_material_request(request_id: int, actor: Actor, reason: str | None) -> MaterialRequest:
    mr = get_material_request(request_id)
    check_permission(actor, "reject_material_request", mr.status)
    _require_transition(mr, "reject")
    reason = require_text(reason, "reason")

    old_status = mr.status
    mr.status = "REJECTED"
    mr.rejected_by = actor.id
    mr.rejection_reason = reason
    for line in mr.items:
        line.item_status = "REJECTED"
    db.session.flush()
    _audit(mr, "reject", actor, old_status, reason=reason)
    return mr


# ── Update / delete (PENDING only) ───────────────────────────────────────────

_EDITABLE_FIELDS = ("items", "description", "maintenance_schedule_id")


def update_material_request(request_id: int, data: dict, actor: Actor) -> MaterialRequest:
    """
    Edit a PENDING request before anything is allocated.

    ``items`` replaces every line; ``description`` and
    ``maintenance_schedule_id`` are set as given.
    """
    mr = get_material_request(request_id)
    check_permission(actor, "update_material_request", mr.status)
    _require_transition(mr, "update")

    changes = {k: data[k] for k in _EDITABLE_FIELDS if k in data}
    if not changes:
        raise ValidationError(
            "Nothing to update", details={"fields": f"one of {', '.join(_EDITABLE_FIELDS)}"},
        )
    lines = _parse_lines(changes["items"]) if "items" in changes else None
    if "maintenance_schedule_id" in changes:
        _check_schedule(changes["maintenance_schedule_id"])

    diff = {}
    if lines is not None:
        diff["items"] = {
            "old": [[line.item_code, line.requested_quantity] for line in mr.items],
            "new": [[item.code, qty] for item, qty in lines],
        }
        mr.items.clear()
        # Old rows must be gone before re-adding the same item codes.
        db.session.flush()
        for item, qty in lines:
            mr.items.append(_new_line(item, qty))
    if "description" in changes:
        diff["description"] = {"old": mr.description, "new": changes["description"] or ""}
        mr.description = changes["description"] or ""
    if "maintenance_schedule_id" in changes:
        diff["maintenance_schedule_id"] = {
            "old": mr.maintenance_schedule_id, "new": changes["maintenance_schedule_id"],
        }
        mr.maintenance_schedule_id = changes["maintenance_schedule_id"]
    db.session.flush()

    write_audit(
        entity_type="material_request", entity_id=mr.id, action="material_request.update",
        actor=actor.id, actor_role=actor.role, diff=diff,
    )
    logger.info(
        "MaterialRequest updated code=%s fields=%s actor=%s", mr.code, sorted(diff), actor.id,
        extra={"entity_type": "material_request", "entity_id": mr.code, "action": "update", "actor": actor.id},
    )
    return mr


def delete_material_request(request_id: int, actor: Actor) -> dict:
    """Remove a PENDING request and its lines. The audit trail keeps its history."""
    mr = get_material_request(request_id)
    check_permission(actor, "delete_material_request", mr.status)
    _require_transition(mr, "delete")

    summary = {"id": mr.id, "code": mr.code, "deleted": True}
    write_audit(
        entity_type="material_request", entity_id=mr.id, action="material_request.delete",
        actor=actor.id, actor_role=actor.role,
        diff={
            "status": {"old": mr.status, "new": None},
            "items": [[line.item_code, line.requested_quantity] for line in mr.items],
        },
    )
    db.session.delete(mr)
    db.session.flush()
    logger.info(
        "MaterialRequest deleted code=%s actor=%s", summary["code"], actor.id,
        extra={"entity_type": "material_request", "entity_id": summary["code"], "action": "delete", "actor": actor.id},
    )
    return summary


# ── Receive / delivery ───────────────────────────────────────────────────────


def _undelivered_purchases(mr: MaterialRequest) -> list[PurchaseRequest]:
    return [pr for pr in mr.purchase_requests if pr.status != "DELIVERED"]


def _mark_delivered(mr: MaterialRequest, actor: Actor, notes: str | None) -> None:
    old_status = mr.status
    mr.status = "DELIVERED"
    mr.delivered_at = datetime.now(timezone.utc)
    mr.received_by = actor.id
    if notes:
        mr.receive_notes = notes
    for line in mr.items:
        if line.item_status == "PENDING_PURCHASE":
            line.item_status = "DELIVERED"
    db.session.flush()
    _audit(mr, "receive", actor, old_status)
    materials_ready.send(mr, actor=actor)


def receive_material_request(request_id: int, actor: Actor, notes: str | None = None) -> MaterialRequest:
    """
    AWAITING_DELIVERY → DELIVERED once every linked purchase is DELIVERED.

    A rejected shortfall purchase never counts as delivered: the request keeps
    waiting and its PENDING_PURCHASE lines are not touched.
    """
    mr = get_material_request(request_id)
    check_permission(actor, "receive_material_request", mr.status)
    _require_transition(mr, "receive")

    pending = _undelivered_purchases(mr)
    if pending:
        raise InvalidTransitionError(
            "material request", mr.code, "receive", mr.status,
            f"waiting on purchase(s) {', '.join(pr.code for pr in pending)}",
        )
    _mark_delivered(mr, actor, notes)
    return mr


@purchase_delivered.connect
def _on_purchase_delivered(purchase: PurchaseRequest, actor: Actor, **extra) -> None:
    """Close the originating request when its last purchase is delivered."""
    mr = purchase.material_request
    if mr is None or mr.status != "AWAITING_DELIVERY":
        return
    siblings = mr.purchase_requests
    if all(pr.status == "DELIVERED" for pr in siblings):
        _mark_delivered(mr, actor, None)
