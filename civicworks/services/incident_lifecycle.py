"""
Incident Lifecycle Service

Manages accident-report transitions with:
  - Role/state authorization (services/permission.py)
  - Transition validation (INCIDENT_TRANSITIONS)
  - Inspection payload validation and catalog pricing
  - One ApprovalRecord per main-axis transition, in the same transaction
  - Insurance-claim sub-state, gated on approval, audited in AuditLog

Main axis:
    submit            → REPORTED
    inspect           REPORTED → INSPECTED                (INSPECTOR)
    review APPROVE    INSPECTED → SUPERVISOR_REVIEW       (SUPERVISOR)
    review REJECT     INSPECTED → REJECTED                (SUPERVISOR)
    begin finance     SUPERVISOR_REVIEW → FINANCE_REVIEW  (FINANCE)
    review APPROVE    SUPERVISOR_REVIEW | FINANCE_REVIEW → APPROVED  (FINANCE)
    review REJECT     SUPERVISOR_REVIEW | FINANCE_REVIEW → REJECTED  (FINANCE)
    start repair      APPROVED → UNDER_REPAIR             (SUPERVISOR, INSPECTOR)
    complete repair   UNDER_REPAIR → COMPLETED            (SUPERVISOR, INSPECTOR)

Check order for every command: guard → transition → payload. Nothing is
written before all three pass.

Usage:
    from civicworks.services import incident_lifecycle as lifecycle

    incident = lifecycle.review_incident(incident_id=3, actor=actor, decision="APPROVE")
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal

from civicworks.core.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from civicworks.models import db
from civicworks.models.audit import write_audit
from civicworks.models.incident import (
    CLAIM_OPEN_STATUSES,
    CLAIM_STATUSES,
    DAMAGE_LEVELS,
    STAGE_BY_SOURCE,
    ApprovalRecord,
    DamagedComponent,
    Incident,
    next_incident_status,
    validate_claim_transition,
)
from civicworks.services.code_generator import generate_incident_code
from civicworks.services.permission import Actor, check_permission
from civicworks.utils.helpers import parse_date, require_text

logger = logging.getLogger(__name__)

_REVIEW_DECISIONS = {"APPROVE": "approve", "REJECT": "reject"}


def get_incident(incident_id: int) -> Incident:
    incident = db.session.get(Incident, incident_id)
    if incident is None:
        raise NotFoundError("Incident", incident_id)
    return incident


# ── Core transition ──────────────────────────────────────────────────────────


def _target_status(incident: Incident, action: str) -> str:
    target = next_incident_status(incident.status, action)
    if target is None:
        raise InvalidTransitionError("incident", incident.incident_code, action, incident.status)
    return target


def _apply(incident: Incident, action: str, target: str, actor: Actor, comments: str | None) -> ApprovalRecord:
    """Move ``incident`` to ``target`` and append its approval record."""
    previous = incident.status
    record = ApprovalRecord(
        stage=STAGE_BY_SOURCE[previous],
        action="REJECT" if action == "reject" else "APPROVE",
        transition=action,
        actor=actor.id,
        actor_role=actor.role,
        previous_status=previous,
        new_status=target,
        comments=comments or None,
    )
    incident.status = target
    incident.approvals.append(record)
    db.session.flush()
    logger.info(
        "Incident transition code=%s %s→%s action=%s actor=%s",
        incident.incident_code, previous, target, action, actor.id,
        extra={"entity_type": "incident", "entity_id": incident.incident_code,
               "action": action, "actor": actor.id},
    )
    return record


def _transition(incident_id: int, guard_action: str, action: str, actor: Actor,
                comments: str | None = None) -> Incident:
    incident = get_incident(incident_id)
    check_permission(actor, guard_action, incident.status)
    target = _target_status(incident, action)
    _apply(incident, action, target, actor, comments)
    return incident


# ── Commands ─────────────────────────────────────────────────────────────────


def submit_incident(data: dict, actor: Actor) -> Incident:
    """Create a REPORTED incident.

    Required: ``accident_type``, ``accident_date``, ``location_description``.
    """
    check_permission(actor, "submit_incident")

    accident_type = require_text(data.get("accident_type"), "accident_type")
    accident_date = parse_date(data.get("accident_date"), "accident_date")
    if accident_date is None:
        raise ValidationError("accident_date is required", details={"accident_date": "required"})
    location = require_text(data.get("location_description"), "location_description")

    incident = Incident(
        incident_code=generate_incident_code(),
        accident_type=accident_type,
        accident_date=accident_date,
        accident_time=data.get("accident_time"),
        pole_code=data.get("pole_code"),
        location_description=location,
        vehicle_plate_number=data.get("vehicle_plate_number"),
        driver_name=data.get("driver_name"),
        insurance_company=data.get("insurance_company"),
        claim_reference_number=data.get("claim_reference_number"),
        reported_by=actor.id,
        status="REPORTED",
        claim_status="NOT_SUBMITTED",
    )
    db.session.add(incident)
    db.session.flush()
    logger.info("Incident submitted code=%s by=%s", incident.incident_code, actor.id)
    return incident


def _price_components(component_ids, damage_level: str) -> tuple[list[int], list[dict], Decimal]:
    if not isinstance(component_ids, list) or not component_ids:
        raise ValidationError(
            "damaged_components must be a non-empty list",
            details={"damaged_components": "required"},
        )
    try:
        ids = sorted({int(c) for c in component_ids})
    except (TypeError, ValueError):
        raise ValidationError(
            "damaged_components must contain component ids",
            details={"damaged_components": "invalid id"},
        ) from None

    components = (
        DamagedComponent.query
        .filter(DamagedComponent.id.in_(ids), DamagedComponent.is_active.is_(True))
        .order_by(DamagedComponent.id)
        .all()
    )
    missing = sorted(set(ids) - {c.id for c in components})
    if missing:
        raise ValidationError(
            "Unknown or inactive damaged components",
            details={"damaged_components": missing},
        )

    breakdown = []
    total = Decimal("0")
    for c in components:
        cost = c.cost_for(damage_level)
        total += cost
        breakdown.append({"component_id": c.id, "name": c.name, "cost": float(cost)})
    return ids, breakdown, total


def inspect_incident(incident_id: int, data: dict, actor: Actor) -> Incident:
    """REPORTED → INSPECTED, recording the damage assessment atomically.

    Required payload: ``damage_level`` (MINOR | MODERATE | SEVERE | TOTAL_LOSS),
    ``damage_description``, ``safety_risk`` (bool), ``damaged_components``
    (non-empty list of active catalog ids). ``estimated_cost`` is priced from
    the catalog at the given damage level.
    """
    incident = get_incident(incident_id)
    check_permission(actor, "inspect_incident", incident.status)
    target = _target_status(incident, "inspect")

    damage_level = data.get("damage_level")
    if damage_level not in DAMAGE_LEVELS:
        raise ValidationError(
            f"damage_level must be one of {', '.join(DAMAGE_LEVELS)}",
            details={"damage_level": "invalid"},
        )
    description = require_text(data.get("damage_description"), "damage_description")
    safety_risk = data.get("safety_risk")
    if not isinstance(safety_risk, bool):
        raise ValidationError("safety_risk must be true or false", details={"safety_risk": "required"})
    ids, breakdown, total = _price_components(data.get("damaged_components"), damage_level)

    incident.damage_level = damage_level
    incident.damage_description = description
    incident.safety_risk = safety_risk
    incident.damaged_component_ids = ids
    incident.cost_breakdown = breakdown
    incident.estimated_cost = total
    incident.inspected_by = actor.id
    incident.inspected_at = datetime.now(timezone.utc)
    _apply(incident, "inspect", target, actor, data.get("comments"))
    return incident


def review_incident(incident_id: int, actor: Actor, decision: str, comments: str | None = None) -> Incident:
    """APPROVE or REJECT at the current review stage (supervisor or finance)."""
    incident = get_incident(incident_id)
    check_permission(actor, "review_incident", incident.status)
    if next_incident_status(incident.status, "approve") is None:
        raise InvalidTransitionError("incident", incident.incident_code, "review", incident.status)

    action = _REVIEW_DECISIONS.get(str(decision or "").upper())
    if action is None:
        raise ValidationError("action must be APPROVE or REJECT", details={"action": "invalid"})
    _apply(incident, action, _target_status(incident, action), actor, comments)
    return incident


def begin_finance_review(incident_id: int, actor: Actor, comments: str | None = None) -> Incident:
    return _transition(incident_id, "begin_finance_review", "begin_finance_review", actor, comments)


def start_repair(incident_id: int, actor: Actor, comments: str | None = None) -> Incident:
    return _transition(incident_id, "start_repair", "start_repair", actor, comments)


def complete_repair(incident_id: int, actor: Actor, comments: str | None = None) -> Incident:
    return _transition(incident_id, "complete_repair", "complete_repair", actor, comments)


def update_claim_status(incident_id: int, actor: Actor, claim_status: str,
                        claim_reference_number: str | None = None) -> Incident:
    """
    Move the insurance-claim sub-state.

    Only allowed once the incident is APPROVED, UNDER_REPAIR or COMPLETED.
    Never touches ``status`` or the approvals log; recorded in AuditLog.
    """
    incident = get_incident(incident_id)
    check_permission(actor, "update_claim_status", incident.status)

    if incident.status not in CLAIM_OPEN_STATUSES:
        raise InvalidTransitionError(
            "incident", incident.incident_code, "update_claim_status", incident.status,
            "claim cannot progress before the incident is approved",
        )
    if claim_status not in CLAIM_STATUSES:
        raise ValidationError(
            f"claim_status must be one of {', '.join(CLAIM_STATUSES)}",
            details={"claim_status": "invalid"},
        )
    if not validate_claim_transition(incident.claim_status, claim_status):
        raise InvalidTransitionError(
            "incident claim", incident.incident_code, f"claim→{claim_status}", incident.claim_status,
        )

    diff = {"claim_status": {"old": incident.claim_status, "new": claim_status}}
    incident.claim_status = claim_status
    if claim_reference_number:
        diff["claim_reference_number"] = {"old": incident.claim_reference_number, "new": claim_reference_number}
        incident.claim_reference_number = claim_reference_number
    db.session.flush()
    write_audit(
        entity_type="incident", entity_id=incident.id, action="incident.claim_status",
        actor=actor.id, actor_role=actor.role, diff=diff,
    )
    logger.info("Incident claim code=%s %s→%s", incident.incident_code,
                diff["claim_status"]["old"], claim_status)
    return incident
