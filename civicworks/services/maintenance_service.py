"""
Maintenance schedules: the tasks material requests are raised for.

The only status change the engine drives is the start signal: when a linked
material request becomes FULFILLED or DELIVERED (``materials_ready``), a
REQUESTED or PAUSED schedule moves to STARTED.
"""

import logging
from datetime import datetime, timezone

from civicworks.core.exceptions import NotFoundError
from civicworks.models import db
from civicworks.models.audit import write_audit
from civicworks.models.maintenance import STARTABLE_STATUSES, MaintenanceSchedule
from civicworks.services.code_generator import generate_maintenance_code
from civicworks.services.events import materials_ready
from civicworks.services.permission import Actor, check_permission
from civicworks.utils.helpers import parse_date, require_text

logger = logging.getLogger(__name__)


def get_schedule(schedule_id: int) -> MaintenanceSchedule:
    schedule = db.session.get(MaintenanceSchedule, schedule_id)
    if schedule is None:
        raise NotFoundError("MaintenanceSchedule", schedule_id)
    return schedule


def create_schedule(data: dict, actor: Actor) -> MaintenanceSchedule:
    check_permission(actor, "create_maintenance_schedule")
    schedule = MaintenanceSchedule(
        code=generate_maintenance_code(),
        title=require_text(data.get("title"), "title"),
        asset_reference=data.get("asset_reference"),
        description=data.get("description") or "",
        scheduled_date=parse_date(data.get("scheduled_date"), "scheduled_date"),
        status="REQUESTED",
        requested_by=actor.id,
    )
    db.session.add(schedule)
    db.session.flush()
    logger.info("MaintenanceSchedule created code=%s by=%s", schedule.code, actor.id)
    return schedule


@materials_ready.connect
def _on_materials_ready(material_request, actor: Actor, **extra) -> None:
    schedule = material_request.maintenance_schedule
    if schedule is None or schedule.status not in STARTABLE_STATUSES:
        return
    old_status = schedule.status
    schedule.status = "STARTED"
    schedule.started_at = datetime.now(timezone.utc)
    db.session.flush()
    write_audit(
        entity_type="maintenance_schedule", entity_id=schedule.id, action="maintenance_schedule.start",
        actor=actor.id, actor_role=actor.role,
        diff={"status": {"old": old_status, "new": "STARTED"}, "material_request": material_request.code},
    )
    logger.info("MaintenanceSchedule started code=%s by material_request=%s",
                schedule.code, material_request.code)
