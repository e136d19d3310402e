"""
Authorization Guard: role × action × entity-state rules.

One table (ACTION_RULES) answers every "may this role do that, now?" question
the engine asks. ``can_perform`` is pure: no I/O, no session access.

Resolution:
  - ADMIN passes every known action.
  - If the entity is in a state the action is defined for, the role must be
    listed for that state.
  - If the entity is in any other state, a role that holds the action in some
    state passes; the state machine then reports INVALID_TRANSITION instead of
    the guard masking it as PERMISSION_DENIED.
  - Unknown roles and unknown actions are refused.

Usage:
    from civicworks.services.permission import check_permission, can_perform

    # Raises PermissionDenied if not allowed
    check_permission(actor, "review_incident", incident.status)

    # Boolean check
    if can_perform("FINANCE", "update_claim_status", "APPROVED"):
        ...
"""

from dataclasses import dataclass

from civicworks.core.exceptions import PermissionDenied

# ── Roles ────────────────────────────────────────────────────────────────────

ADMIN = "ADMIN"
INSPECTOR = "INSPECTOR"
SUPERVISOR = "SUPERVISOR"
FINANCE = "FINANCE"
MAINTENANCE_ENGINEER = "MAINTENANCE_ENGINEER"

ROLES = frozenset({ADMIN, INSPECTOR, SUPERVISOR, FINANCE, MAINTENANCE_ENGINEER})

# Key for actions that have no prior entity state (creation, registry edits)
NO_STATE = None

_EVERYONE = ROLES
_ADMIN_ONLY = frozenset()       # ADMIN is implied everywhere
_REPAIR_CREW = frozenset({SUPERVISOR, INSPECTOR})


# ── Rules: action → {entity state: roles allowed in that state} ──────────────

ACTION_RULES: dict[str, dict[str | None, frozenset]] = {
    # Incident lifecycle
    "submit_incident":       {NO_STATE: _EVERYONE},
    "inspect_incident":      {"REPORTED": frozenset({INSPECTOR})},
    "review_incident":       {"INSPECTED": frozenset({SUPERVISOR}),
                              "SUPERVISOR_REVIEW": frozenset({FINANCE}),
                              "FINANCE_REVIEW": frozenset({FINANCE})},
    "begin_finance_review":  {"SUPERVISOR_REVIEW": frozenset({FINANCE})},
    "start_repair":          {"APPROVED": _REPAIR_CREW},
    "complete_repair":       {"UNDER_REPAIR": _REPAIR_CREW},
    "update_claim_status":   {"APPROVED": frozenset({FINANCE}),
                              "UNDER_REPAIR": frozenset({FINANCE}),
                              "COMPLETED": frozenset({FINANCE})},
    "manage_damaged_components": {NO_STATE: _ADMIN_ONLY},

    # Inventory registry
    "register_inventory_item": {NO_STATE: _ADMIN_ONLY},
    "update_inventory_item":   {NO_STATE: _ADMIN_ONLY},
    "adjust_inventory_stock":  {NO_STATE: _ADMIN_ONLY},
    "delete_inventory_item":   {NO_STATE: _ADMIN_ONLY},

    # Material fulfillment
    "submit_material_request":  {NO_STATE: _EVERYONE},
    "approve_material_request": {"PENDING": _ADMIN_ONLY},
    "reject_material_request":  {"PENDING": _ADMIN_ONLY},
    "receive_material_request": {"AWAITING_DELIVERY": frozenset({MAINTENANCE_ENGINEER})},
    "update_material_request":  {"PENDING": _ADMIN_ONLY},
    "delete_material_request":  {"PENDING": _ADMIN_ONLY},

    # Purchase pipeline
    "create_purchase_request": {NO_STATE: _ADMIN_ONLY},
    "approve_purchase":        {"PENDING": _ADMIN_ONLY},
    "reject_purchase":         {"PENDING": _ADMIN_ONLY},
    "order_purchase":          {"APPROVED": _ADMIN_ONLY},
    "mark_purchase_arrived":   {"ORDERED": _ADMIN_ONLY},
    "deliver_purchase":        {"ARRIVED_IN_STOCK": _ADMIN_ONLY},

    # Maintenance
    "create_maintenance_schedule": {NO_STATE: frozenset({SUPERVISOR})},
}


@dataclass(frozen=True)
class Actor:
    """Resolved caller identity: who is acting and under which role."""

    id: str
    role: str


def can_perform(role: str, action: str, entity_state: str | None = None) -> bool:
    """
    Check whether ``role`` may perform ``action`` on an entity in ``entity_state``.

    Args:
        role: One of ROLES.
        action: Key of ACTION_RULES (e.g. 'review_incident').
        entity_state: Current status of the target entity; None for creation
                      and registry actions.

    Returns:
        True if permitted, False otherwise (never raises).
    """
    if role not in ROLES:
        return False
    rule = ACTION_RULES.get(action)
    if rule is None:
        return False
    if role == ADMIN:
        return True
    if entity_state in rule:
        return role in rule[entity_state]
    return any(role in roles for roles in rule.values())


def check_permission(actor: Actor, action: str, entity_state: str | None = None) -> None:
    """Raise PermissionDenied unless ``actor`` may perform ``action``."""
    if not can_perform(actor.role, action, entity_state):
        raise PermissionDenied(actor.id, actor.role, action, entity_state)
