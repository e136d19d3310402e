"""
Auto-Code Generator Service

Generates sequential, globally unique codes:
  - Incidents:              ACC-{seq}  (e.g. ACC-0001)
  - Material requests:      MR-{seq}   (e.g. MR-0007)
  - Purchase requests:      PR-{seq}   (e.g. PR-0012)
  - Maintenance schedules:  MS-{seq}   (e.g. MS-0003)

Every code column is UNIQUE; two writers racing for the same number fail
one insert with IntegrityError, which the command runner reports as CONFLICT.
"""

from civicworks.models import db
from civicworks.models.incident import Incident
from civicworks.models.maintenance import MaintenanceSchedule
from civicworks.models.material import MaterialRequest
from civicworks.models.purchase import PurchaseRequest


def _next_code(model_class, code_attr: str, prefix: str) -> str:
    """
    Next sequential code for ``model_class``: highest existing number + 1.

    Uses SELECT ... FOR UPDATE where the backend supports it.
    """
    column = getattr(model_class, code_attr)
    full_prefix = prefix + "-"
    last = (
        db.session.query(column)
        .filter(column.like(f"{full_prefix}%"))
        .order_by(model_class.id.desc())
        .with_for_update()
        .first()
    )
    num = 1
    if last and last[0]:
        try:
            num = int(last[0].split("-")[1]) + 1
        except (IndexError, ValueError):
            num = 1
    return f"{full_prefix}{num:04d}"


def generate_incident_code() -> str:
    return _next_code(Incident, "incident_code", "ACC")


def generate_material_request_code() -> str:
    return _next_code(MaterialRequest, "code", "MR")


def generate_purchase_request_code() -> str:
    return _next_code(PurchaseRequest, "code", "PR")


def generate_maintenance_code() -> str:
    return _next_code(MaintenanceSchedule, "code", "MS")
