"""Damaged-component catalog: the price list inspections are costed against."""

import logging

from civicworks.core.exceptions import ConflictError, NotFoundError
from civicworks.models import db
from civicworks.models.audit import write_audit
from civicworks.models.incident import DAMAGE_LEVELS, DamagedComponent
from civicworks.services.permission import Actor, check_permission
from civicworks.utils.helpers import money, require_text

logger = logging.getLogger(__name__)

_COST_FIELDS = tuple(DAMAGE_LEVELS.values())


def list_components(active_only: bool = False) -> list[DamagedComponent]:
    q = DamagedComponent.query
    if active_only:
        q = q.filter(DamagedComponent.is_active.is_(True))
    return q.order_by(DamagedComponent.name).all()


def _get(component_id: int) -> DamagedComponent:
    component = db.session.get(DamagedComponent, component_id)
    if component is None:
        raise NotFoundError("DamagedComponent", component_id)
    return component


def create_component(data: dict, actor: Actor) -> DamagedComponent:
    check_permission(actor, "manage_damaged_components")
    name = require_text(data.get("name"), "name")
    if DamagedComponent.query.filter_by(name=name).first():
        raise ConflictError(f"DamagedComponent {name!r} already exists", details={"name": name})

    component = DamagedComponent(
        name=name,
        description=data.get("description") or "",
        is_active=bool(data.get("is_active", True)),
        **{f: money(data.get(f, 0), f) for f in _COST_FIELDS},
    )
    db.session.add(component)
    db.session.flush()
    write_audit(entity_type="damaged_component", entity_id=component.id,
                action="damaged_component.create", actor=actor.id, actor_role=actor.role)
    logger.info("DamagedComponent created id=%s name=%s", component.id, name)
    return component


def update_component(component_id: int, data: dict, actor: Actor) -> DamagedComponent:
    check_permission(actor, "manage_damaged_components")
    component = _get(component_id)
    diff = {}
    if "name" in data:
        name = require_text(data["name"], "name")
        clash = DamagedComponent.query.filter(
            DamagedComponent.name == name, DamagedComponent.id != component.id,
        ).first()
        if clash:
            raise ConflictError(f"DamagedComponent {name!r} already exists", details={"name": name})
        diff["name"] = {"old": component.name, "new": name}
        component.name = name
    if "description" in data:
        component.description = data["description"] or ""
    for f in _COST_FIELDS:
        if f in data:
            value = money(data[f], f)
            diff[f] = {"old": getattr(component, f), "new": value}
            setattr(component, f, value)
    db.session.flush()
    write_audit(entity_type="damaged_component", entity_id=component.id,
                action="damaged_component.update", actor=actor.id, actor_role=actor.role, diff=diff)
    return component


def toggle_component(component_id: int, actor: Actor) -> DamagedComponent:
    """Flip ``is_active``. Inactive components cannot be selected at inspection."""
    check_permission(actor, "manage_damaged_components")
    component = _get(component_id)
    component.is_active = not component.is_active
    db.session.flush()
    write_audit(entity_type="damaged_component", entity_id=component.id,
                action="damaged_component.toggle", actor=actor.id, actor_role=actor.role,
                diff={"is_active": {"old": not component.is_active, "new": component.is_active}})
    return component


def delete_component(component_id: int, actor: Actor) -> dict:
    """
    Remove a component from the catalog.

    Inspections already costed against it keep their frozen breakdown.
    """
    check_permission(actor, "manage_damaged_components")
    component = _get(component_id)
    summary = {"id": component.id, "name": component.name, "deleted": True}
    write_audit(entity_type="damaged_component", entity_id=component.id,
                action="damaged_component.delete", actor=actor.id, actor_role=actor.role,
                diff={"name": component.name,
                      **{f: str(getattr(component, f)) for f in _COST_FIELDS}})
    db.session.delete(component)
    db.session.flush()
    logger.info("DamagedComponent deleted id=%s name=%s", summary["id"], summary["name"])
    return summary
